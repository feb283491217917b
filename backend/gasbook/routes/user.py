# Overview: Flask API routes for the signed-in customer's profile and quota.

# backend/gasbook/routes/user.py
from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import ok
from ..services import auth_service
from ..validation import get_json_body

user_bp = Blueprint("user", __name__, url_prefix="/api/user")


@user_bp.get("/profile")
@require_auth
def get_profile():
    return ok(auth_service.get_profile(g.current_user))


@user_bp.put("/profile")
@require_auth
def update_profile():
    """Only name, phone and address are editable; anything else is a 400."""
    user = auth_service.update_profile(g.current_user, get_json_body(request))
    return ok(user.to_dict(), message="Profile updated")


@user_bp.get("/quota")
@require_auth
def get_quota():
    return ok(auth_service.get_quota(g.current_user))
