# Overview: Flask API routes for customer support messages.

# backend/gasbook/routes/contacts.py
from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import ok
from ..services import contact_service
from ..validation import get_json_body, parse_pagination

contacts_bp = Blueprint("contacts", __name__, url_prefix="/api/contact")


@contacts_bp.post("")
@require_auth
def create_message():
    message = contact_service.create_contact_message(g.current_user, get_json_body(request))
    return ok(message.to_dict(), message="Message sent", status=201)


@contacts_bp.get("")
@require_auth
def list_my_messages():
    page, limit = parse_pagination(request.args)
    return ok(contact_service.list_my_messages(g.current_user, page=page, limit=limit))


@contacts_bp.get("/<int:message_id>")
@require_auth
def get_message(message_id: int):
    message = contact_service.get_message(g.current_user, message_id)
    return ok(message.to_dict(include_replies=True))


@contacts_bp.post("/<int:message_id>/reply")
@require_auth
def reply(message_id: int):
    """Follow-up from the customer. Reopens a RESOLVED thread."""
    created = contact_service.add_user_reply(g.current_user, message_id, get_json_body(request))
    return ok(created.to_dict(), message="Reply added", status=201)
