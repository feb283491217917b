# Overview: Service-layer operations for support tickets and their threaded replies.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db, outbox
from ..models import Booking, ContactMessage, ContactReply, User
from ..models.contacts import (
    CONTACT_ARCHIVED,
    CONTACT_NEW,
    CONTACT_OPEN,
    CONTACT_RESOLVED,
    VALID_CONTACT_STATUSES,
)
from ..time_utils import utcnow
from ..validation import pagination_meta, require_text, to_int, validate_choice, validate_phone
from . import mail_service

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {"GENERAL", "BOOKING", "PAYMENT", "DELIVERY", "ACCOUNT", "COMPLAINT", "OTHER"}
VALID_CONTACT_PRIORITIES = {"LOW", "NORMAL", "HIGH", "URGENT"}
VALID_PREFERRED_CONTACT = {"EMAIL", "PHONE"}


def create_contact_message(user: User, data: dict) -> ContactMessage:
    subject = require_text(data, "subject", min_len=3, max_len=200)
    body = require_text(data, "message", min_len=10, max_len=5000)

    category = validate_choice(data["category"], VALID_CATEGORIES, "category") if data.get("category") else "GENERAL"
    priority = validate_choice(data["priority"], VALID_CONTACT_PRIORITIES, "priority") if data.get("priority") else "NORMAL"
    preferred = (
        validate_choice(data["preferred_contact"], VALID_PREFERRED_CONTACT, "preferred_contact")
        if data.get("preferred_contact") else "EMAIL"
    )
    phone = validate_phone(data["phone"]) if data.get("phone") else None
    if preferred == "PHONE" and not phone:
        phone = user.phone

    related_booking_id = None
    if data.get("related_booking_id") is not None:
        related_booking_id = to_int(data["related_booking_id"], "related_booking_id")
        booking = db.session.get(Booking, related_booking_id)
        if not booking or booking.user_id != user.id:
            raise ValidationError("related_booking_id does not match one of your bookings")

    message = ContactMessage(
        user_id=user.id,
        subject=subject,
        message=body,
        category=category,
        priority=priority,
        related_booking_id=related_booking_id,
        preferred_contact=preferred,
        phone=phone,
        status=CONTACT_NEW,
    )
    db.session.add(message)
    db.session.commit()
    logger.info("Contact message %s opened by user %s", message.id, user.id)
    return message


def list_my_messages(user: User, page: int = 1, limit: int = 10) -> dict:
    query = db.session.query(ContactMessage).filter_by(user_id=user.id)
    total = query.count()
    items = query.order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": [m.to_dict() for m in items], "pagination": pagination_meta(page, limit, total)}


def get_message(user: User, message_id: int) -> ContactMessage:
    """Owner or admin; anyone else gets 404."""
    message = db.session.get(ContactMessage, message_id)
    if not message or (not user.is_admin and message.user_id != user.id):
        raise NotFoundError("Message not found")
    return message


def add_user_reply(user: User, message_id: int, data: dict) -> ContactReply:
    message = get_message(user, message_id)
    if message.user_id != user.id:
        raise NotFoundError("Message not found")
    if message.status == CONTACT_ARCHIVED:
        raise ValidationError("Archived messages cannot receive replies")
    body = require_text(data, "message", min_len=1, max_len=5000)

    reply = ContactReply(message_id=message.id, author_id=user.id, body=body, is_admin=False)
    db.session.add(reply)
    if message.status == CONTACT_RESOLVED:
        message.status = CONTACT_OPEN
    db.session.commit()
    return reply


def list_messages(status: str | None = None, page: int = 1, limit: int = 10, search: str | None = None) -> dict:
    query = db.session.query(ContactMessage)
    if status:
        query = query.filter(ContactMessage.status == validate_choice(status, VALID_CONTACT_STATUSES, "status"))
    if search:
        like = f"%{search.strip()[:100]}%"
        query = query.filter(db.or_(ContactMessage.subject.ilike(like), ContactMessage.message.ilike(like)))
    total = query.count()
    items = query.order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"items": [m.to_dict() for m in items], "pagination": pagination_meta(page, limit, total)}


def admin_reply(admin: User, message_id: int, data: dict) -> ContactReply:
    message = db.session.get(ContactMessage, message_id)
    if not message:
        raise NotFoundError("Message not found")
    body = require_text(data, "message", min_len=1, max_len=5000)

    reply = ContactReply(message_id=message.id, author_id=admin.id, body=body, is_admin=True)
    db.session.add(reply)
    if message.status == CONTACT_NEW:
        message.status = CONTACT_OPEN
    message.last_replied_at = utcnow()
    db.session.commit()

    outbox.enqueue(mail_service.contact_reply_email(message, body))
    return reply


def update_message_status(message_id: int, data: dict) -> ContactMessage:
    message = db.session.get(ContactMessage, message_id)
    if not message:
        raise NotFoundError("Message not found")
    if "status" not in data and "priority" not in data:
        raise ValidationError("No fields to update")
    if "status" in data:
        message.status = validate_choice(data["status"], VALID_CONTACT_STATUSES, "status")
    if "priority" in data:
        message.priority = validate_choice(data["priority"], VALID_CONTACT_PRIORITIES, "priority")
    db.session.commit()
    return message


def contact_stats() -> dict:
    counts = dict(
        db.session.query(ContactMessage.status, func.count(ContactMessage.id))
        .group_by(ContactMessage.status)
        .all()
    )
    by_status = {s: int(counts.get(s, 0)) for s in sorted(VALID_CONTACT_STATUSES)}
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "open": by_status[CONTACT_NEW] + by_status[CONTACT_OPEN],
    }
