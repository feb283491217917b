# Overview: Flask API routes for admin user management.

# backend/gasbook/routes/admin_users.py
"""
Admin user routes.

SECURITY: ADMIN only. Self-protection (no self-deactivate, self-demote or
self-delete) is enforced in user_admin_service.
"""

from flask import Blueprint, request, g

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import user_admin_service
from ..validation import get_json_body, parse_pagination

admin_users_bp = Blueprint("admin_users", __name__, url_prefix="/api/admin/users")


@admin_users_bp.get("")
@require_auth
@require_admin
def list_users():
    """Query params: page, limit, search, role, verified (true|false)."""
    page, limit = parse_pagination(request.args)
    result = user_admin_service.list_users(
        page=page,
        limit=limit,
        search=request.args.get("search"),
        role=request.args.get("role"),
        verified=request.args.get("verified"),
    )
    return ok(result)


@admin_users_bp.post("")
@require_auth
@require_admin
def create_user():
    user = user_admin_service.create_user(get_json_body(request))
    return ok(user.to_dict(), message="User created", status=201)


@admin_users_bp.get("/stats")
@require_auth
@require_admin
def stats():
    return ok(user_admin_service.user_stats())


@admin_users_bp.get("/<int:user_pk>")
@require_auth
@require_admin
def get_user(user_pk: int):
    return ok(user_admin_service.user_detail(user_pk))


@admin_users_bp.put("/<int:user_pk>")
@require_auth
@require_admin
def update_user(user_pk: int):
    user = user_admin_service.update_user(g.current_user, user_pk, get_json_body(request))
    return ok(user.to_dict(), message="User updated")


@admin_users_bp.delete("/<int:user_pk>")
@require_auth
@require_admin
def delete_user(user_pk: int):
    user_admin_service.delete_user(g.current_user, user_pk)
    return ok({"id": user_pk, "deleted": True}, message="User deleted")


@admin_users_bp.post("/<int:user_pk>/action")
@require_auth
@require_admin
def user_action(user_pk: int):
    """Body: action (reset-quota|activate|deactivate|verify-email|make-admin|make-user)."""
    data = get_json_body(request)
    user = user_admin_service.apply_user_action(g.current_user, user_pk, data.get("action"))
    return ok(user.to_dict(), message="Action applied")
