# Overview: Bulk admin actions over many bookings with per-item success/skip reporting.

"""
Bulk Booking Actions

Each id goes through the same single-item service (and therefore the same
preconditions and the same transaction) as the one-booking endpoints.
A domain error on one id becomes a skip entry; it never aborts the batch.

Result shape:
    {"action", "updated_count", "updated_ids", "skipped": [{"booking_id", "reason"}]}
"""

from __future__ import annotations

import logging

from ..errors import AppError, ValidationError
from ..models import User
from ..validation import require_text, to_int
from . import booking_service, delivery_service

logger = logging.getLogger(__name__)

ACTION_APPROVE = "approve"
ACTION_CANCEL = "cancel"
ACTION_ASSIGN_DELIVERY = "assign-delivery"
VALID_ACTIONS = (ACTION_APPROVE, ACTION_CANCEL, ACTION_ASSIGN_DELIVERY)

MAX_BULK_IDS = 100


def normalize_ids(raw) -> list[int]:
    """1..MAX_BULK_IDS integer ids, de-duplicated with order preserved."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("booking_ids must be a non-empty list")
    ids: list[int] = []
    seen = set()
    for value in raw:
        booking_id = to_int(value, "booking_ids")
        if booking_id < 1:
            raise ValidationError("booking_ids must be positive integers")
        if booking_id not in seen:
            seen.add(booking_id)
            ids.append(booking_id)
    if len(ids) > MAX_BULK_IDS:
        raise ValidationError(f"At most {MAX_BULK_IDS} bookings per bulk action")
    return ids


def run_bulk_action(action, booking_ids, data: dict | None, actor: User) -> dict:
    if action not in VALID_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(VALID_ACTIONS)}")
    ids = normalize_ids(booking_ids)
    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")

    if action == ACTION_APPROVE:
        def apply(booking_id):
            booking_service.approve_booking(booking_id, actor)
    elif action == ACTION_CANCEL:
        reason = require_text(data, "reason", max_len=500)

        def apply(booking_id):
            booking_service.cancel_booking(booking_id, reason, actor)
    else:
        if data.get("partner_id") is None:
            raise ValidationError("partner_id is required")
        partner = delivery_service.get_active_partner(data["partner_id"])
        schedule = {k: data[k] for k in ("scheduled_date", "scheduled_time", "priority", "notes") if k in data}

        def apply(booking_id):
            delivery_service.assign_delivery(booking_id, partner.id, schedule, actor_id=actor.id)

    updated_ids: list[int] = []
    skipped: list[dict] = []
    for booking_id in ids:
        try:
            apply(booking_id)
        except AppError as exc:
            skipped.append({"booking_id": booking_id, "reason": exc.message})
        else:
            updated_ids.append(booking_id)

    logger.info("Bulk %s: %s updated, %s skipped", action, len(updated_ids), len(skipped))
    return {
        "action": action,
        "updated_count": len(updated_ids),
        "updated_ids": updated_ids,
        "skipped": skipped,
    }
