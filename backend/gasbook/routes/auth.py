# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/gasbook/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration, reset and change
- Login throttled per client IP (5 per 15 minutes)
- Verification/reset emails throttled per client IP (3 per hour)
- Forgot-password and resend-verification answer the same way whether
  or not the email exists
"""

from flask import Blueprint, request, g

from ..decorators import rate_limit, require_auth
from ..errors import ValidationError, ok
from ..services import auth_service, session_service
from ..services.rate_limit_service import client_identifier
from ..validation import get_json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

GENERIC_EMAIL_MESSAGE = "If an account exists for that email, a message has been sent."


@auth_bp.post("/register")
def register_route():
    """
    Self-service registration for customers.

    The account starts unverified; a verification link is emailed.
    """
    data = get_json_body(request)
    user = auth_service.register(data)
    return ok(
        {"user": user.to_dict()},
        message="Registration successful. Please check your email to verify your account.",
        status=201,
    )


@auth_bp.post("/login")
@rate_limit("login")
def login_route():
    """
    Authenticate and create a session token.

    Accepts `identifier` (email or user id) or `email`, plus `password`.
    The token goes in `Authorization: Bearer <token>` on protected routes.
    """
    data = get_json_body(request)
    identifier = data.get("identifier") or data.get("email") or data.get("user_id")
    password = data.get("password")
    if not identifier or not password:
        raise ValidationError("identifier and password are required")

    result = auth_service.login(
        str(identifier),
        str(password),
        user_agent=request.headers.get("User-Agent"),
        ip_address=client_identifier(request),
    )
    return ok(result, message="Login successful")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token, "User logout")
    return ok(message="Logged out")


@auth_bp.post("/verify-email")
def verify_email_route():
    data = get_json_body(request)
    user = auth_service.verify_email(data.get("token"))
    return ok({"user": user.to_dict()}, message="Email verified")


@auth_bp.post("/resend-verification")
@rate_limit("email")
def resend_verification_route():
    data = get_json_body(request)
    auth_service.resend_verification(data.get("email"))
    return ok(message=GENERIC_EMAIL_MESSAGE)


@auth_bp.post("/forgot-password")
@rate_limit("email")
def forgot_password_route():
    data = get_json_body(request)
    auth_service.forgot_password(data.get("email"))
    return ok(message=GENERIC_EMAIL_MESSAGE)


@auth_bp.post("/validate-reset-token")
def validate_reset_token_route():
    data = get_json_body(request)
    return ok(auth_service.validate_reset_token(data.get("token")))


@auth_bp.post("/reset-password")
def reset_password_route():
    """Set a new password from a reset token. Every existing session is revoked."""
    data = get_json_body(request)
    auth_service.reset_password(data.get("token"), data.get("password"))
    return ok(message="Password has been reset. Please log in.")


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    data = get_json_body(request)
    auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))
    return ok(message="Password changed")


@auth_bp.get("/me")
@require_auth
def me():
    context = g.session_context
    return ok({"user": context.user.to_dict(), "session": context.session.to_dict()})
