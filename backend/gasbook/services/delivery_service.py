# Overview: Service-layer operations for deliveries; partner roster, assignments and status mirroring.

"""
Delivery Assignment Service

ASSIGNMENT STATES:
    ASSIGNED < PICKED_UP < OUT_FOR_DELIVERY < DELIVERED     (monotonic, skips allowed)
    any non-DELIVERED state --> FAILED                      (sink)

RULES:
- A booking gets an assignment only while APPROVED and only if it has none
  (unique booking_id enforces at most one row per booking).
- Reaching OUT_FOR_DELIVERY or DELIVERED mirrors into Booking.status through
  the same helpers the booking service uses, so the two cannot disagree.
- FAILED does not cancel the booking; an admin reassigns (reusing the row)
  or cancels separately.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db, outbox
from ..models import Booking, DeliveryAssignment, DeliveryPartner
from ..models.deliveries import (
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_DELIVERED,
    ASSIGNMENT_FAILED,
    ASSIGNMENT_OUT_FOR_DELIVERY,
    ASSIGNMENT_PICKED_UP,
    VALID_ASSIGNMENT_STATUSES,
    VALID_PRIORITIES,
)
from ..time_utils import parse_iso_datetime, start_of_day, utcnow
from ..validation import (
    optional_text,
    pagination_meta,
    to_int,
    validate_choice,
    validate_email,
    validate_name,
    validate_phone,
)
from . import booking_lifecycle as lifecycle
from . import mail_service
from .booking_service import (
    lock_booking,
    mark_delivered_locked,
    mark_out_for_delivery_locked,
    record_event_locked,
)
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

ASSIGNMENT_RANK = {
    ASSIGNMENT_ASSIGNED: 0,
    ASSIGNMENT_PICKED_UP: 1,
    ASSIGNMENT_OUT_FOR_DELIVERY: 2,
    ASSIGNMENT_DELIVERED: 3,
}
ACTIVE_ASSIGNMENT_STATUSES = (ASSIGNMENT_ASSIGNED, ASSIGNMENT_PICKED_UP, ASSIGNMENT_OUT_FOR_DELIVERY)
SCHEDULED_TIME_MAX = 16
RECENT_ASSIGNMENTS_LIMIT = 10


# =============================================================================
# PARTNERS
# =============================================================================

def _partner_fields(data: dict, *, partial: bool) -> dict:
    allowed = {"name", "phone", "email", "vehicle_number", "service_area", "capacity_per_day", "is_active"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    fields: dict = {}
    if not partial or "name" in data:
        fields["name"] = validate_name(data.get("name"))
    if not partial or "phone" in data:
        fields["phone"] = validate_phone(data.get("phone"))
    if data.get("email"):
        fields["email"] = validate_email(data["email"])
    elif "email" in data:
        fields["email"] = None
    if "vehicle_number" in data:
        fields["vehicle_number"] = optional_text(data, "vehicle_number", max_len=32)
    if "service_area" in data:
        fields["service_area"] = optional_text(data, "service_area", max_len=200)
    if "capacity_per_day" in data:
        capacity = to_int(data["capacity_per_day"], "capacity_per_day")
        if capacity < 1 or capacity > 500:
            raise ValidationError("capacity_per_day must be between 1 and 500")
        fields["capacity_per_day"] = capacity
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be true or false")
        fields["is_active"] = data["is_active"]
    return fields


def create_partner(data: dict) -> DeliveryPartner:
    fields = _partner_fields(data, partial=False)
    if db.session.query(DeliveryPartner.id).filter_by(phone=fields["phone"]).first():
        raise ConflictError("A delivery partner with this phone already exists")
    partner = DeliveryPartner(**fields)
    db.session.add(partner)
    db.session.commit()
    logger.info("Delivery partner %s created", partner.id)
    return partner


def get_partner(partner_id: int) -> DeliveryPartner:
    partner = db.session.get(DeliveryPartner, partner_id)
    if not partner:
        raise NotFoundError("Delivery partner not found")
    return partner


def partner_detail(partner_id: int) -> dict:
    partner = get_partner(partner_id)
    counts = dict(
        db.session.query(DeliveryAssignment.status, func.count(DeliveryAssignment.id))
        .filter(DeliveryAssignment.partner_id == partner.id)
        .group_by(DeliveryAssignment.status)
        .all()
    )
    return {
        **partner.to_dict(),
        "assignment_counts": {s: int(counts.get(s, 0)) for s in sorted(VALID_ASSIGNMENT_STATUSES)},
        "active_assignments": sum(int(counts.get(s, 0)) for s in ACTIVE_ASSIGNMENT_STATUSES),
    }


def update_partner(partner_id: int, data: dict) -> DeliveryPartner:
    partner = get_partner(partner_id)
    fields = _partner_fields(data, partial=True)
    if not fields:
        raise ValidationError("No fields to update")
    if "phone" in fields and fields["phone"] != partner.phone:
        clash = db.session.query(DeliveryPartner.id).filter(
            DeliveryPartner.phone == fields["phone"], DeliveryPartner.id != partner.id
        ).first()
        if clash:
            raise ConflictError("A delivery partner with this phone already exists")
    for key, value in fields.items():
        setattr(partner, key, value)
    db.session.commit()
    return partner


def deactivate_partner(partner_id: int) -> dict:
    """Partners with history are deactivated; partners without any are deleted."""
    partner = get_partner(partner_id)
    has_assignments = db.session.query(DeliveryAssignment.id).filter_by(partner_id=partner.id).first() is not None
    if has_assignments:
        partner.is_active = False
        db.session.commit()
        return {"id": partner.id, "deleted": False, "deactivated": True}
    db.session.delete(partner)
    db.session.commit()
    return {"id": partner_id, "deleted": True, "deactivated": False}


def list_partners(active_only: bool = False) -> list[DeliveryPartner]:
    query = db.session.query(DeliveryPartner)
    if active_only:
        query = query.filter(DeliveryPartner.is_active.is_(True))
    return query.order_by(DeliveryPartner.name.asc(), DeliveryPartner.id.asc()).all()


def list_partner_deliveries(partner_id: int, status: str | None = None) -> list[dict]:
    partner = get_partner(partner_id)
    query = db.session.query(DeliveryAssignment).filter_by(partner_id=partner.id)
    if status:
        query = query.filter(
            DeliveryAssignment.status == validate_choice(status, VALID_ASSIGNMENT_STATUSES, "status")
        )
    return [_assignment_summary(a) for a in query.order_by(DeliveryAssignment.assigned_at.desc()).all()]


# =============================================================================
# ASSIGNMENTS
# =============================================================================

def _assignment_summary(assignment: DeliveryAssignment) -> dict:
    booking = assignment.booking
    return {
        **assignment.to_dict(),
        "booking": {
            "id": booking.id,
            "status": booking.status,
            "quantity": booking.quantity,
            "user_name": booking.user_name,
            "user_phone": booking.user_phone,
            "receiver_name": booking.receiver_name,
            "receiver_phone": booking.receiver_phone,
            "user_address": booking.user_address,
        } if booking else None,
    }


def _schedule_fields(data: dict) -> dict:
    fields: dict = {
        "priority": "normal",
        "scheduled_date": None,
        "scheduled_time": optional_text(data, "scheduled_time", max_len=SCHEDULED_TIME_MAX),
        "notes": optional_text(data, "notes", max_len=500),
    }
    if data.get("priority"):
        priority = str(data["priority"]).strip().lower()
        if priority not in VALID_PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}")
        fields["priority"] = priority
    if data.get("scheduled_date"):
        try:
            scheduled = parse_iso_datetime(data["scheduled_date"])
        except (TypeError, ValueError, AttributeError):
            raise ValidationError("scheduled_date must be an ISO-8601 date")
        if scheduled is not None and scheduled < start_of_day(utcnow()):
            raise ValidationError("scheduled_date cannot be in the past")
        fields["scheduled_date"] = scheduled
    return fields


def _lock_assignment(booking_id: int) -> DeliveryAssignment | None:
    return lock_for_update(db.session.query(DeliveryAssignment).filter_by(booking_id=booking_id)).first()


def _active_partner(partner_id) -> DeliveryPartner:
    partner_id = to_int(partner_id, "partner_id")
    partner = db.session.get(DeliveryPartner, partner_id)
    if not partner:
        raise NotFoundError("Delivery partner not found")
    if not partner.is_active:
        raise ConflictError("Delivery partner is inactive")
    return partner


def get_active_partner(partner_id) -> DeliveryPartner:
    return _active_partner(partner_id)


def _scheduled_label(assignment: DeliveryAssignment) -> str | None:
    if not assignment.scheduled_date:
        return assignment.scheduled_time
    label = assignment.scheduled_date.strftime("%d %b %Y")
    return f"{label} {assignment.scheduled_time}" if assignment.scheduled_time else label


def assign_delivery(booking_id: int, partner_id, data: dict | None = None, *, actor_id: int | None = None) -> DeliveryAssignment:
    """Attach an active partner to an APPROVED booking with no assignment."""
    fields = _schedule_fields(data or {})

    def _op():
        booking = lock_booking(booking_id)
        if booking.status != lifecycle.APPROVED:
            raise ConflictError(
                f"Only approved bookings can be assigned for delivery (booking is {booking.status})"
            )
        if _lock_assignment(booking.id) is not None:
            raise ConflictError("Booking already has a delivery assignment")
        partner = _active_partner(partner_id)

        assignment = DeliveryAssignment(
            booking_id=booking.id,
            partner_id=partner.id,
            status=ASSIGNMENT_ASSIGNED,
            assigned_at=utcnow(),
            **fields,
        )
        db.session.add(assignment)
        booking.delivery_date = fields["scheduled_date"] or booking.delivery_date
        db.session.flush()

        record_event_locked(
            booking,
            "Delivery Assigned",
            f"Assigned to {partner.name} ({partner.phone})",
            actor_id=actor_id,
        )
        db.session.commit()
        return assignment

    assignment = run_with_retry(_op)
    logger.info("Booking %s assigned to partner %s", assignment.booking_id, assignment.partner_id)
    outbox.enqueue(mail_service.delivery_assigned_email(
        assignment.booking, assignment.partner, _scheduled_label(assignment)
    ))
    return assignment


def reassign_delivery(booking_id: int, partner_id, data: dict | None = None, *, actor_id: int | None = None) -> DeliveryAssignment:
    """
    Point a FAILED assignment at a new partner.

    The assignment restarts at ASSIGNED, or at OUT_FOR_DELIVERY when the
    booking is already out for delivery, so the two records stay in step.
    """
    fields = _schedule_fields(data or {})

    def _op():
        booking = lock_booking(booking_id)
        if lifecycle.is_terminal(booking.status):
            raise ConflictError(f"Cannot reassign delivery for a {booking.status.lower()} booking")
        assignment = _lock_assignment(booking.id)
        if assignment is None:
            raise NotFoundError("Booking has no delivery assignment")
        if assignment.status != ASSIGNMENT_FAILED:
            raise ConflictError("Only failed deliveries can be reassigned")
        partner = _active_partner(partner_id)

        previous = assignment.partner
        now = utcnow()
        assignment.partner_id = partner.id
        assignment.assigned_at = now
        # A booking already out for delivery keeps its assignment on the road
        if booking.status == lifecycle.OUT_FOR_DELIVERY:
            assignment.status = ASSIGNMENT_OUT_FOR_DELIVERY
            assignment.picked_up_at = now
        else:
            assignment.status = ASSIGNMENT_ASSIGNED
            assignment.picked_up_at = None
        assignment.delivered_at = None
        assignment.failed_at = None
        for key, value in fields.items():
            setattr(assignment, key, value)
        if fields["scheduled_date"]:
            booking.delivery_date = fields["scheduled_date"]

        record_event_locked(
            booking,
            "Delivery Reassigned",
            f"Reassigned from {previous.name if previous else 'unknown'} to {partner.name}",
            actor_id=actor_id,
        )
        db.session.commit()
        return assignment

    assignment = run_with_retry(_op)
    outbox.enqueue(mail_service.delivery_assigned_email(
        assignment.booking, assignment.partner, _scheduled_label(assignment)
    ))
    return assignment


def get_assignment(booking_id: int) -> DeliveryAssignment:
    if db.session.get(Booking, booking_id) is None:
        raise NotFoundError("Booking not found")
    assignment = db.session.query(DeliveryAssignment).filter_by(booking_id=booking_id).first()
    if assignment is None:
        raise NotFoundError("Booking has no delivery assignment")
    return assignment


def check_assignment_transition(current: str, new_status: str) -> None:
    if current == ASSIGNMENT_DELIVERED:
        raise ConflictError("Delivery is already completed")
    if current == ASSIGNMENT_FAILED:
        raise ConflictError("Delivery has failed; reassign it first")
    if new_status == ASSIGNMENT_FAILED:
        return
    if ASSIGNMENT_RANK[new_status] <= ASSIGNMENT_RANK[current]:
        raise ConflictError(f"Cannot move delivery from {current} to {new_status}")


def update_delivery_status(booking_id: int, new_status, notes=None, *, actor_id: int | None = None) -> DeliveryAssignment:
    """
    Advance an assignment and mirror OUT_FOR_DELIVERY / DELIVERED into the booking.

    A DELIVERED update on an APPROVED booking walks it through
    OUT_FOR_DELIVERY first so the booking never skips an edge.
    """
    new_status = validate_choice(new_status, VALID_ASSIGNMENT_STATUSES, "status")
    note = optional_text({"notes": notes}, "notes", max_len=500)

    def _op():
        booking = lock_booking(booking_id)
        assignment = _lock_assignment(booking.id)
        if assignment is None:
            raise NotFoundError("Booking has no delivery assignment")
        if booking.status == lifecycle.CANCELLED:
            raise ConflictError("Booking is cancelled")
        check_assignment_transition(assignment.status, new_status)

        now = utcnow()
        if new_status == ASSIGNMENT_FAILED:
            assignment.status = ASSIGNMENT_FAILED
            assignment.failed_at = now
            record_event_locked(booking, "Delivery Failed", note, actor_id=actor_id)
        else:
            if new_status in (ASSIGNMENT_OUT_FOR_DELIVERY, ASSIGNMENT_DELIVERED) and booking.status == lifecycle.APPROVED:
                mark_out_for_delivery_locked(booking, actor_id, note if new_status == ASSIGNMENT_OUT_FOR_DELIVERY else None)
            if new_status in (ASSIGNMENT_PICKED_UP, ASSIGNMENT_OUT_FOR_DELIVERY, ASSIGNMENT_DELIVERED):
                assignment.picked_up_at = assignment.picked_up_at or now
            assignment.status = new_status
            if new_status == ASSIGNMENT_PICKED_UP:
                record_event_locked(booking, "Picked Up", note, actor_id=actor_id)
            elif new_status == ASSIGNMENT_DELIVERED:
                assignment.delivered_at = now
                mark_delivered_locked(booking, actor_id, note)

        if note:
            assignment.notes = note
        db.session.commit()
        return assignment

    assignment = run_with_retry(_op)
    logger.info("Delivery for booking %s -> %s", assignment.booking_id, assignment.status)
    if assignment.status == ASSIGNMENT_OUT_FOR_DELIVERY:
        outbox.enqueue(mail_service.out_for_delivery_email(assignment.booking, assignment.partner))
    elif assignment.status == ASSIGNMENT_DELIVERED:
        outbox.enqueue(mail_service.delivered_email(assignment.booking))
    return assignment


def list_active_assignments() -> list[dict]:
    rows = (
        db.session.query(DeliveryAssignment)
        .filter(DeliveryAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES))
        .order_by(DeliveryAssignment.assigned_at.asc(), DeliveryAssignment.id.asc())
        .all()
    )
    return [_assignment_summary(a) for a in rows]


def list_assignments(
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    partner_id=None,
) -> dict:
    """Every assignment, newest first, with optional status/partner filters."""
    query = db.session.query(DeliveryAssignment)
    if status:
        query = query.filter(
            DeliveryAssignment.status == validate_choice(status, VALID_ASSIGNMENT_STATUSES, "status")
        )
    if partner_id not in (None, ""):
        query = query.filter(DeliveryAssignment.partner_id == to_int(partner_id, "partner_id"))

    total = query.count()
    rows = (
        query.order_by(DeliveryAssignment.assigned_at.desc(), DeliveryAssignment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [_assignment_summary(a) for a in rows],
        "pagination": pagination_meta(page, limit, total),
    }


def list_recent_assignments(limit: int = RECENT_ASSIGNMENTS_LIMIT) -> list[dict]:
    rows = (
        db.session.query(DeliveryAssignment)
        .order_by(DeliveryAssignment.assigned_at.desc(), DeliveryAssignment.id.desc())
        .limit(limit)
        .all()
    )
    return [_assignment_summary(a) for a in rows]


def delivery_stats() -> dict:
    counts = dict(
        db.session.query(DeliveryAssignment.status, func.count(DeliveryAssignment.id))
        .group_by(DeliveryAssignment.status)
        .all()
    )
    today = start_of_day(utcnow())
    delivered_today = db.session.query(func.count(DeliveryAssignment.id)).filter(
        DeliveryAssignment.status == ASSIGNMENT_DELIVERED,
        DeliveryAssignment.delivered_at >= today,
    ).scalar()
    partners_total = db.session.query(func.count(DeliveryPartner.id)).scalar()
    partners_active = db.session.query(func.count(DeliveryPartner.id)).filter(
        DeliveryPartner.is_active.is_(True)
    ).scalar()
    return {
        "by_status": {s: int(counts.get(s, 0)) for s in sorted(VALID_ASSIGNMENT_STATUSES)},
        "active": sum(int(counts.get(s, 0)) for s in ACTIVE_ASSIGNMENT_STATUSES),
        "delivered_today": int(delivered_today or 0),
        "partners": {"total": int(partners_total or 0), "active": int(partners_active or 0)},
    }
