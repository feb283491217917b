# Overview: Service-layer operations for admin user management; listing, edits, actions and stats.

"""
Admin User Management

GUARDRAILS:
- An admin cannot deactivate, demote or delete their own account.
- Users with bookings are never deleted (bookings reference them); deactivate instead.
- remaining_quota stays within 0..2x the annual quota.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Booking, User
from ..models.users import ROLE_ADMIN, ROLE_USER, VALID_ROLES
from ..time_utils import utcnow
from ..validation import pagination_meta, to_int, validate_address, validate_choice, validate_name, validate_phone
from . import auth_service, booking_lifecycle as lifecycle, session_service

logger = logging.getLogger(__name__)

USER_ACTIONS = ("reset-quota", "activate", "deactivate", "verify-email", "make-admin", "make-user")


def _annual_quota() -> int:
    return int(current_app.config.get("DEFAULT_ANNUAL_QUOTA", 12))


def get_user(user_pk: int) -> User:
    return auth_service.get_user_or_404(user_pk)


def list_users(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    role: str | None = None,
    verified: str | None = None,
) -> dict:
    query = db.session.query(User)
    if search:
        like = f"%{search.strip()[:100]}%"
        query = query.filter(or_(
            User.name.ilike(like),
            User.email.ilike(like),
            User.user_id.ilike(like),
            User.phone.ilike(like),
        ))
    if role:
        query = query.filter(User.role == validate_choice(role, VALID_ROLES, "role"))
    if verified is not None and verified != "":
        flag = str(verified).strip().lower()
        if flag not in ("true", "false"):
            raise ValidationError("verified must be true or false")
        if flag == "true":
            query = query.filter(User.email_verified_at.isnot(None))
        else:
            query = query.filter(User.email_verified_at.is_(None))

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": [u.to_dict() for u in users], "pagination": pagination_meta(page, limit, total)}


def user_detail(user_pk: int) -> dict:
    user = get_user(user_pk)
    counts = dict(
        db.session.query(Booking.status, func.count(Booking.id))
        .filter(Booking.user_id == user.id)
        .group_by(Booking.status)
        .all()
    )
    return {
        **user.to_dict(),
        "booking_counts": {s: int(counts.get(s, 0)) for s in sorted(lifecycle.VALID_STATUSES)},
        "total_bookings": sum(int(v) for v in counts.values()),
    }


def create_user(data: dict) -> User:
    """Admin-created accounts are pre-verified."""
    role = validate_choice(data.get("role") or ROLE_USER, VALID_ROLES, "role")
    user = auth_service.create_user(
        name=data.get("name"),
        user_id=data.get("user_id"),
        email=data.get("email"),
        phone=data.get("phone"),
        address=data.get("address"),
        password=data.get("password"),
        role=role,
        verified=True,
    )
    db.session.commit()
    logger.info("Admin created user %s (%s)", user.user_id, user.role)
    return user


def update_user(admin: User, user_pk: int, data: dict) -> User:
    allowed = {"name", "phone", "address", "role", "remaining_quota"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    if not data:
        raise ValidationError("No fields to update")

    user = get_user(user_pk)
    if "name" in data:
        user.name = validate_name(data["name"])
    if "phone" in data:
        user.phone = validate_phone(data["phone"])
    if "address" in data:
        user.address = validate_address(data["address"])
    if "role" in data:
        role = validate_choice(data["role"], VALID_ROLES, "role")
        if user.id == admin.id and role != ROLE_ADMIN:
            raise ConflictError("You cannot remove your own admin role")
        user.role = role
    if "remaining_quota" in data:
        quota = to_int(data["remaining_quota"], "remaining_quota")
        ceiling = _annual_quota() * 2
        if quota < 0 or quota > ceiling:
            raise ValidationError(f"remaining_quota must be between 0 and {ceiling}")
        user.remaining_quota = quota
    db.session.commit()
    return user


def apply_user_action(admin: User, user_pk: int, action) -> User:
    if action not in USER_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(USER_ACTIONS)}")
    user = get_user(user_pk)

    if user.id == admin.id and action in ("deactivate", "make-user"):
        raise ConflictError("You cannot deactivate or demote your own account")

    if action == "reset-quota":
        user.remaining_quota = _annual_quota()
    elif action == "activate":
        user.is_active = True
    elif action == "deactivate":
        user.is_active = False
        session_service.revoke_all_user_sessions(user.id, "User account deactivated", commit=False)
    elif action == "verify-email":
        user.email_verified_at = user.email_verified_at or utcnow()
    elif action == "make-admin":
        user.role = ROLE_ADMIN
    elif action == "make-user":
        user.role = ROLE_USER

    db.session.commit()
    logger.info("Admin %s applied %s to user %s", admin.id, action, user.id)
    return user


def delete_user(admin: User, user_pk: int) -> None:
    user = get_user(user_pk)
    if user.id == admin.id:
        raise ConflictError("You cannot delete your own account")
    if db.session.query(Booking.id).filter_by(user_id=user.id).first() is not None:
        raise ConflictError("User has bookings and cannot be deleted; deactivate instead")
    if user.contact_messages.first() is not None:
        raise ConflictError("User has support messages and cannot be deleted; deactivate instead")
    db.session.delete(user)
    db.session.commit()


def user_stats() -> dict:
    total = db.session.query(func.count(User.id)).scalar() or 0
    admins = db.session.query(func.count(User.id)).filter(User.role == ROLE_ADMIN).scalar() or 0
    active = db.session.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
    verified = db.session.query(func.count(User.id)).filter(User.email_verified_at.isnot(None)).scalar() or 0
    exhausted = db.session.query(func.count(User.id)).filter(
        User.role == ROLE_USER, User.remaining_quota == 0
    ).scalar() or 0
    return {
        "total": int(total),
        "admins": int(admins),
        "customers": int(total - admins),
        "active": int(active),
        "inactive": int(total - active),
        "verified": int(verified),
        "unverified": int(total - verified),
        "quota_exhausted": int(exhausted),
    }


def reset_all_quotas() -> int:
    """Reset every customer to the annual quota (CLI, start of year)."""
    quota = _annual_quota()
    count = db.session.query(User).filter(User.role == ROLE_USER).update(
        {User.remaining_quota: quota}, synchronize_session=False
    )
    db.session.commit()
    return count
