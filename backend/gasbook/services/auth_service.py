# Overview: Service-layer operations for accounts; registration, login, email and password flows.

"""
Authentication Service

WHY: Every booking must be attributable to a verified customer. Uses bcrypt
for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12 unless BCRYPT_ROUNDS says otherwise)
- Minimum 8 characters; upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- Verification / reset tokens are single-use and stored hashed
- forgot_password and resend_verification never reveal whether an
  email is registered
"""

import logging
import re
from datetime import timedelta

import bcrypt
from flask import current_app, has_app_context

from ..errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db, outbox
from ..models import User, UserToken
from ..models.users import ROLE_ADMIN, ROLE_USER, TOKEN_RESET_PASSWORD, TOKEN_VERIFY_EMAIL
from ..time_utils import utcnow
from ..validation import (
    validate_address,
    validate_email,
    validate_name,
    validate_phone,
    validate_token,
    validate_user_handle,
)
from . import mail_service, session_service

logger = logging.getLogger(__name__)

VERIFY_EMAIL_TTL = timedelta(hours=24)
RESET_PASSWORD_TTL = timedelta(hours=1)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    error_code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters (maximum 128)
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if len(password) > 128:
        raise PasswordValidationError("Password must be at most 128 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.?'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return 12


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison via bcrypt.checkpw; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


# =============================================================================
# SINGLE-USE TOKENS
# =============================================================================

def _issue_user_token(user: User, purpose: str, ttl: timedelta) -> str:
    """
    Replace any unused token of the same purpose and return the plaintext.

    Does not commit.
    """
    db.session.query(UserToken).filter(
        UserToken.user_id == user.id,
        UserToken.purpose == purpose,
        UserToken.used_at.is_(None),
    ).delete(synchronize_session=False)

    plaintext = session_service.generate_token()
    db.session.add(UserToken(
        user_id=user.id,
        purpose=purpose,
        token_hash=session_service.hash_token(plaintext),
        expires_at=utcnow() + ttl,
    ))
    return plaintext


def _find_live_token(token: str, purpose: str) -> UserToken:
    token = validate_token(token)
    record = db.session.query(UserToken).filter_by(
        token_hash=session_service.hash_token(token),
        purpose=purpose,
    ).first()
    if not record or record.used_at is not None:
        raise ValidationError("Invalid or already used token")
    if record.expires_at < utcnow():
        raise ValidationError("Token has expired")
    return record


def _link(path: str, token: str) -> str:
    return f"{outbox.base_url}{path}?token={token}"


# =============================================================================
# REGISTRATION / VERIFICATION
# =============================================================================

def create_user(
    *,
    name: str,
    user_id: str,
    email: str,
    phone: str,
    address: str,
    password: str,
    role: str = ROLE_USER,
    verified: bool = False,
    remaining_quota: int | None = None,
) -> User:
    """
    Validate and insert a user. Raises ConflictError on duplicate email/user_id.

    Does not commit.
    """
    name = validate_name(name)
    handle = validate_user_handle(user_id)
    email = validate_email(email)
    phone = validate_phone(phone)
    address = validate_address(address)
    password_hash = hash_password(password)

    existing = db.session.query(User).filter(
        db.or_(User.email == email, User.user_id == handle)
    ).first()
    if existing:
        field = "Email" if existing.email == email else "User ID"
        raise ConflictError(f"{field} is already registered")

    if remaining_quota is None:
        remaining_quota = int(current_app.config.get("DEFAULT_ANNUAL_QUOTA", 12))

    user = User(
        name=name,
        user_id=handle,
        email=email,
        phone=phone,
        address=address,
        password_hash=password_hash,
        role=role,
        remaining_quota=remaining_quota,
        is_active=True,
        email_verified_at=utcnow() if verified else None,
    )
    db.session.add(user)
    db.session.flush()
    return user


def register(data: dict) -> User:
    """Self-service registration. Queues a verification email after commit."""
    user = create_user(
        name=data.get("name"),
        user_id=data.get("user_id"),
        email=data.get("email"),
        phone=data.get("phone"),
        address=data.get("address"),
        password=data.get("password"),
    )
    token = _issue_user_token(user, TOKEN_VERIFY_EMAIL, VERIFY_EMAIL_TTL)
    db.session.commit()

    logger.info("Registered user %s", user.user_id)
    outbox.enqueue(mail_service.verification_email(user.email, user.name, _link("/verify-email", token)))
    return user


def verify_email(token: str) -> User:
    record = _find_live_token(token, TOKEN_VERIFY_EMAIL)
    user = record.user
    record.used_at = utcnow()
    if user.email_verified_at is None:
        user.email_verified_at = utcnow()
    db.session.commit()
    return user


def resend_verification(email: str) -> bool:
    """Returns True if an email was queued. Callers answer success either way."""
    email = validate_email(email)
    user = db.session.query(User).filter_by(email=email).first()
    if not user or user.is_verified or not user.is_active:
        return False

    token = _issue_user_token(user, TOKEN_VERIFY_EMAIL, VERIFY_EMAIL_TTL)
    db.session.commit()
    return outbox.enqueue(mail_service.verification_email(user.email, user.name, _link("/verify-email", token)))


# =============================================================================
# LOGIN
# =============================================================================

def authenticate(identifier: str, password: str) -> User:
    """
    Check credentials. The identifier is an email or a user_id handle.

    Raises AuthenticationError on bad credentials or an inactive account,
    AuthorizationError (403) for an unverified customer when verification
    is required. Admins may always log in.
    """
    if not identifier or not password:
        raise ValidationError("Identifier and password are required")

    ident = str(identifier).strip().lower()
    user = db.session.query(User).filter(
        db.or_(User.email == ident, User.user_id == ident)
    ).first()

    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    if (
        user.role != ROLE_ADMIN
        and not user.is_verified
        and current_app.config.get("REQUIRE_EMAIL_VERIFICATION", True)
    ):
        raise AuthorizationError("Please verify your email before logging in")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def login(identifier: str, password: str, *, user_agent: str | None = None, ip_address: str | None = None) -> dict:
    user = authenticate(identifier, password)
    session, token = session_service.create_session(user.id, user_agent=user_agent, ip_address=ip_address)
    return {
        "token": token,
        "user": user.to_dict(),
        "session": session.to_dict(),
    }


# =============================================================================
# PASSWORDS
# =============================================================================

def forgot_password(email: str) -> bool:
    """Returns True if a reset email was queued. Callers answer success either way."""
    email = validate_email(email)
    user = db.session.query(User).filter_by(email=email).first()
    if not user or not user.is_active:
        return False

    token = _issue_user_token(user, TOKEN_RESET_PASSWORD, RESET_PASSWORD_TTL)
    db.session.commit()
    return outbox.enqueue(mail_service.password_reset_email(user.email, user.name, _link("/reset-password", token)))


def validate_reset_token(token: str) -> dict:
    record = _find_live_token(token, TOKEN_RESET_PASSWORD)
    return {"valid": True, "email": record.user.email}


def reset_password(token: str, new_password: str) -> User:
    """Set a new password and revoke every session of the user."""
    record = _find_live_token(token, TOKEN_RESET_PASSWORD)
    user = record.user
    user.password_hash = hash_password(new_password)
    record.used_at = utcnow()
    session_service.revoke_all_user_sessions(user.id, "Password reset", commit=False)
    db.session.commit()
    logger.info("Password reset for user %s", user.user_id)
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    if current_password == new_password:
        raise ValidationError("New password must be different from the current password")
    user.password_hash = hash_password(new_password)
    db.session.commit()


# =============================================================================
# PROFILE
# =============================================================================

def get_profile(user: User) -> dict:
    return user.to_dict()


def update_profile(user: User, data: dict) -> User:
    """Customers may edit name, phone and address only."""
    allowed = {"name", "phone", "address"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    if not data:
        raise ValidationError("No fields to update")

    if "name" in data:
        user.name = validate_name(data["name"])
    if "phone" in data:
        user.phone = validate_phone(data["phone"])
    if "address" in data:
        user.address = validate_address(data["address"])
    db.session.commit()
    return user


def get_quota(user: User) -> dict:
    annual = int(current_app.config.get("DEFAULT_ANNUAL_QUOTA", 12))
    return {
        "remaining_quota": user.remaining_quota,
        "annual_quota": annual,
        "used": max(0, annual - user.remaining_quota),
    }


def get_user_or_404(user_pk: int) -> User:
    user = db.session.get(User, user_pk)
    if not user:
        raise NotFoundError("User not found")
    return user
