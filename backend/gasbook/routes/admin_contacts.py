# Overview: Flask API routes for the admin support inbox.

# backend/gasbook/routes/admin_contacts.py
from flask import Blueprint, request, g

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import contact_service
from ..validation import get_json_body, parse_pagination

admin_contacts_bp = Blueprint("admin_contacts", __name__, url_prefix="/api/admin/contacts")


@admin_contacts_bp.get("")
@require_auth
@require_admin
def list_messages():
    page, limit = parse_pagination(request.args)
    result = contact_service.list_messages(
        status=request.args.get("status"),
        page=page,
        limit=limit,
        search=request.args.get("search"),
    )
    return ok(result)


@admin_contacts_bp.get("/stats")
@require_auth
@require_admin
def stats():
    return ok(contact_service.contact_stats())


@admin_contacts_bp.get("/<int:message_id>")
@require_auth
@require_admin
def get_message(message_id: int):
    message = contact_service.get_message(g.current_user, message_id)
    return ok(message.to_dict(include_replies=True))


@admin_contacts_bp.put("/<int:message_id>")
@require_auth
@require_admin
def update_message(message_id: int):
    """Body: status?, priority?"""
    message = contact_service.update_message_status(message_id, get_json_body(request))
    return ok(message.to_dict(), message="Message updated")


@admin_contacts_bp.post("/<int:message_id>/reply")
@require_auth
@require_admin
def reply(message_id: int):
    created = contact_service.admin_reply(g.current_user, message_id, get_json_body(request))
    return ok(created.to_dict(), message="Reply sent", status=201)
