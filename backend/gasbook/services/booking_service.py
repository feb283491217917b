# Overview: Service-layer operations for bookings; creation, status changes and cancellation.

"""
Booking Service

Every mutation here runs as one transaction: the status change, its
BookingEvent, the quota movement on the owning user, payment rows and the
stock ledger either all land or none do.

PRECONDITIONS are checked before any write and raise typed errors:
- Edge not on the graph (booking_lifecycle.TRANSITIONS)   -> 400
- Terminal booking (DELIVERED / CANCELLED)                -> 409
- UPI booking whose latest payment is not SUCCESS         -> 409 "UPI payment pending"
- Not enough quota / stock                                -> 409

Emails are queued only after commit and never affect the outcome.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db, outbox
from ..models import Booking, BookingEvent, DeliveryAssignment, Payment, User
from ..models.bookings import (
    PAYMENT_CANCELLED,
    PAYMENT_COD,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
    PAYMENT_UPI,
    VALID_PAYMENT_METHODS,
)
from ..models.deliveries import ASSIGNMENT_DELIVERED, ASSIGNMENT_FAILED
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    optional_text,
    pagination_meta,
    require_text,
    sanitize_text,
    validate_choice,
    validate_future_date,
    validate_name,
    validate_phone,
    validate_address,
    validate_quantity,
    validate_upi_txn_id,
)
from . import booking_lifecycle as lifecycle
from . import inventory_service, mail_service, settings_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def record_event_locked(
    booking: Booking,
    title: str,
    description: str | None = None,
    *,
    status: str | None = None,
    actor_id: int | None = None,
) -> BookingEvent:
    """Append a timeline entry at the booking's current status. Does not commit."""
    event = BookingEvent(
        booking_id=booking.id,
        status=status or booking.status,
        title=title,
        description=description,
        actor_user_id=actor_id,
    )
    db.session.add(event)
    db.session.flush()
    return event


def latest_payment_locked(booking_id: int) -> Payment | None:
    """
    Highest-id payment for the booking, queried fresh.

    The Booking.payments collection can be stale inside a transaction that
    has just added a row, so always query.
    """
    return lock_for_update(
        db.session.query(Payment).filter_by(booking_id=booking_id).order_by(Payment.id.desc())
    ).first()


def upi_txn_in_use(upi_txn_id: str, *, exclude_payment_id: int | None = None) -> bool:
    query = db.session.query(Payment.id).filter(
        Payment.upi_txn_id == upi_txn_id,
        Payment.status.in_([PAYMENT_PENDING, PAYMENT_SUCCESS]),
    )
    if exclude_payment_id is not None:
        query = query.filter(Payment.id != exclude_payment_id)
    return query.first() is not None


def lock_booking(booking_id: int) -> Booking:
    booking = lock_for_update(db.session.query(Booking).filter_by(id=booking_id)).first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _lock_user(user_pk: int) -> User:
    user = lock_for_update(db.session.query(User).filter_by(id=user_pk)).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def _append_note(booking: Booking, line: str) -> None:
    booking.notes = f"{booking.notes}\n{line}" if booking.notes else line


def get_booking(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_booking_for(user: User, booking_id: int) -> Booking:
    """Owners see their own bookings, admins see all; others get 404."""
    booking = db.session.get(Booking, booking_id)
    if not booking or (not user.is_admin and booking.user_id != user.id):
        raise NotFoundError("Booking not found")
    return booking


# =============================================================================
# CREATE
# =============================================================================

def _parse_create_payload(data: dict) -> dict:
    method = validate_choice(data.get("payment_method"), VALID_PAYMENT_METHODS, "payment_method")
    parsed = {
        "payment_method": method,
        "quantity": validate_quantity(data.get("quantity", 1)),
        "receiver_name": validate_name(data["receiver_name"], "receiver_name") if data.get("receiver_name") else None,
        "receiver_phone": validate_phone(data["receiver_phone"], "receiver_phone") if data.get("receiver_phone") else None,
        "expected_date": validate_future_date(data.get("expected_date")),
        "notes": optional_text(data, "notes", max_len=500),
        "upi_txn_id": None,
    }
    if data.get("upi_txn_id"):
        if method != PAYMENT_UPI:
            raise ValidationError("upi_txn_id is only accepted for UPI bookings")
        parsed["upi_txn_id"] = validate_upi_txn_id(data["upi_txn_id"])
    return parsed


def create_booking(user: User, data: dict, *, actor: User | None = None) -> Booking:
    """
    Book cylinders for `user`.

    Decrements quota, snapshots the contact fields and opens a PENDING
    payment for price x quantity, all in one transaction.
    `actor` is the admin when booking on someone's behalf.
    """
    fields = _parse_create_payload(data)
    price = settings_service.get_price_per_cylinder()
    actor_id = actor.id if actor else user.id

    def _op():
        owner = _lock_user(user.id)
        if not owner.is_active:
            raise ConflictError("Account is deactivated")
        if owner.remaining_quota < fields["quantity"]:
            raise ConflictError(
                "Insufficient quota",
                details={"remaining_quota": owner.remaining_quota, "requested": fields["quantity"]},
            )
        if fields["upi_txn_id"] and upi_txn_in_use(fields["upi_txn_id"]):
            raise ConflictError("UPI transaction ID has already been used")

        owner.remaining_quota -= fields["quantity"]

        booking = Booking(
            user_id=owner.id,
            user_name=owner.name,
            user_email=owner.email,
            user_phone=owner.phone,
            user_address=owner.address,
            receiver_name=fields["receiver_name"] or owner.name,
            receiver_phone=fields["receiver_phone"] or owner.phone,
            quantity=fields["quantity"],
            payment_method=fields["payment_method"],
            status=lifecycle.PENDING,
            notes=fields["notes"],
            requested_at=utcnow(),
            expected_date=fields["expected_date"],
        )
        db.session.add(booking)
        db.session.flush()

        db.session.add(Payment(
            booking_id=booking.id,
            amount=price * fields["quantity"],
            method=fields["payment_method"],
            status=PAYMENT_PENDING,
            upi_txn_id=fields["upi_txn_id"],
        ))

        description = f"{fields['quantity']} cylinder(s), {fields['payment_method']}"
        if actor is not None and actor.id != owner.id:
            description += f", created by admin {actor.user_id}"
        record_event_locked(booking, "Booking Requested", description, actor_id=actor_id)

        db.session.commit()
        return booking

    booking = run_with_retry(_op)
    logger.info("Booking %s created for user %s (qty=%s)", booking.id, booking.user_id, booking.quantity)
    outbox.enqueue(mail_service.booking_received_email(booking))
    return booking


def create_booking_for_user(admin: User, user_pk, data: dict) -> Booking:
    user = db.session.get(User, user_pk) if user_pk is not None else None
    if not user:
        raise NotFoundError("User not found")
    return create_booking(user, data, actor=admin)


# =============================================================================
# READ
# =============================================================================

def list_bookings(
    *,
    user: User | None = None,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict:
    """Paginated listing. Pass `user` to restrict to one customer."""
    query = db.session.query(Booking)
    if user is not None:
        query = query.filter(Booking.user_id == user.id)
    if status:
        query = query.filter(Booking.status == lifecycle.validate_status(status))
    if payment_method:
        query = query.filter(
            Booking.payment_method == validate_choice(payment_method, VALID_PAYMENT_METHODS, "payment_method")
        )
    if search:
        term = sanitize_text(search)[:100]
        like = f"%{term}%"
        clauses = [
            Booking.user_name.ilike(like),
            Booking.user_email.ilike(like),
            Booking.user_phone.ilike(like),
            Booking.receiver_name.ilike(like),
        ]
        if term.isdigit():
            clauses.append(Booking.id == int(term))
        query = query.filter(or_(*clauses))
    try:
        start = parse_iso_datetime(date_from) if date_from else None
        end = parse_iso_datetime(date_to) if date_to else None
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 dates")
    if start:
        query = query.filter(Booking.created_at >= start)
    if end:
        query = query.filter(Booking.created_at <= end)

    total = query.count()
    items = (
        query.order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [b.to_dict() for b in items],
        "pagination": pagination_meta(page, limit, total),
    }


def list_events(booking: Booking) -> list[dict]:
    events = (
        db.session.query(BookingEvent)
        .filter_by(booking_id=booking.id)
        .order_by(BookingEvent.created_at.asc(), BookingEvent.id.asc())
        .all()
    )
    return [e.to_dict() for e in events]


def track_booking(user: User, booking_id: int) -> dict:
    booking = get_booking_for(user, booking_id)
    assignment = booking.assignment
    return {
        "booking": booking.to_dict(),
        "events": list_events(booking),
        "delivery": assignment.to_dict() if assignment else None,
    }


# =============================================================================
# UPDATE (admin edit)
# =============================================================================

def update_booking(booking_id: int, data: dict, actor: User) -> Booking:
    """
    Edit receiver/address/expected date/notes on a live booking.

    Quantity may only change while PENDING; the quota difference moves on
    the owner and the pending payment amount is recomputed.
    """
    allowed = {"receiver_name", "receiver_phone", "user_address", "expected_date", "notes", "quantity"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    if not data:
        raise ValidationError("No fields to update")

    patch: dict = {}
    if "receiver_name" in data:
        patch["receiver_name"] = validate_name(data["receiver_name"], "receiver_name")
    if "receiver_phone" in data:
        patch["receiver_phone"] = validate_phone(data["receiver_phone"], "receiver_phone")
    if "user_address" in data:
        patch["user_address"] = validate_address(data["user_address"])
    if "expected_date" in data:
        patch["expected_date"] = validate_future_date(data["expected_date"])
    if "notes" in data:
        patch["notes"] = optional_text(data, "notes", max_len=2000)
    new_quantity = validate_quantity(data["quantity"]) if "quantity" in data else None
    price = settings_service.get_price_per_cylinder()

    def _op():
        booking = lock_booking(booking_id)
        if lifecycle.is_terminal(booking.status):
            raise ConflictError(f"Cannot edit a {booking.status.lower()} booking")

        changes = sorted(patch)
        if new_quantity is not None and new_quantity != booking.quantity:
            if booking.status != lifecycle.PENDING:
                raise ConflictError("Quantity can only be changed while the booking is pending")
            owner = _lock_user(booking.user_id)
            difference = new_quantity - booking.quantity
            if owner.remaining_quota < difference:
                raise ConflictError(
                    "Insufficient quota",
                    details={"remaining_quota": owner.remaining_quota, "requested": difference},
                )
            owner.remaining_quota -= difference
            booking.quantity = new_quantity

            payment = latest_payment_locked(booking.id)
            if payment is not None and payment.status == PAYMENT_PENDING:
                payment.amount = price * new_quantity
            changes.append("quantity")

        for key, value in patch.items():
            setattr(booking, key, value)

        if changes:
            record_event_locked(booking, "Booking Updated", f"Updated: {', '.join(changes)}", actor_id=actor.id)
        db.session.commit()
        return booking

    return run_with_retry(_op)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def approve_booking_locked(booking: Booking, actor_id: int | None) -> Booking:
    lifecycle.check_transition(booking.status, lifecycle.APPROVED)

    if booking.payment_method == PAYMENT_UPI:
        payment = latest_payment_locked(booking.id)
        if payment is None or payment.status != PAYMENT_SUCCESS:
            raise ConflictError(
                "UPI payment pending",
                details={"payment_status": payment.status if payment else None},
            )

    inventory_service.reserve_for_booking_locked(booking, actor_id=actor_id)
    booking.status = lifecycle.APPROVED
    record_event_locked(booking, "Booking Approved", f"{booking.quantity} cylinder(s) reserved", actor_id=actor_id)
    return booking


def approve_booking(booking_id: int, actor: User | None = None) -> Booking:
    actor_id = actor.id if actor else None

    def _op():
        booking = lock_booking(booking_id)
        approve_booking_locked(booking, actor_id)
        db.session.commit()
        return booking

    booking = run_with_retry(_op)
    logger.info("Booking %s approved", booking.id)
    outbox.enqueue(mail_service.booking_approved_email(booking))
    return booking


def _assignment_for(booking_id: int) -> DeliveryAssignment | None:
    return lock_for_update(db.session.query(DeliveryAssignment).filter_by(booking_id=booking_id)).first()


def mark_out_for_delivery_locked(booking: Booking, actor_id: int | None, description: str | None = None) -> Booking:
    """APPROVED -> OUT_FOR_DELIVERY. Only the delivery path calls this."""
    lifecycle.check_transition(booking.status, lifecycle.OUT_FOR_DELIVERY)
    if _assignment_for(booking.id) is None:
        raise ConflictError("Booking has no delivery assignment")
    booking.status = lifecycle.OUT_FOR_DELIVERY
    record_event_locked(booking, "Out for Delivery", description, actor_id=actor_id)
    return booking


def mark_delivered_locked(booking: Booking, actor_id: int | None, description: str | None = None) -> Booking:
    """
    OUT_FOR_DELIVERY -> DELIVERED.

    Consumes the stock reservation, advances the assignment to DELIVERED
    and settles the pending COD payment.
    """
    lifecycle.check_transition(booking.status, lifecycle.DELIVERED)
    assignment = _assignment_for(booking.id)
    if assignment is None:
        raise ConflictError("Booking has no delivery assignment")
    if assignment.status == ASSIGNMENT_FAILED:
        raise ConflictError("Delivery has failed; reassign it first")

    now = utcnow()
    booking.status = lifecycle.DELIVERED
    booking.delivered_at = now
    inventory_service.consume_for_booking_locked(booking)

    if assignment.status != ASSIGNMENT_DELIVERED:
        assignment.status = ASSIGNMENT_DELIVERED
        assignment.delivered_at = now

    if booking.payment_method == PAYMENT_COD:
        payment = latest_payment_locked(booking.id)
        if payment is not None and payment.status == PAYMENT_PENDING:
            payment.status = PAYMENT_SUCCESS
            payment.reviewed_by_id = actor_id
            payment.reviewed_at = now

    record_event_locked(booking, "Delivered", description, actor_id=actor_id)
    return booking


def mark_delivered(booking_id: int, actor: User | None = None) -> Booking:
    actor_id = actor.id if actor else None

    def _op():
        booking = lock_booking(booking_id)
        mark_delivered_locked(booking, actor_id)
        db.session.commit()
        return booking

    booking = run_with_retry(_op)
    outbox.enqueue(mail_service.delivered_email(booking))
    return booking


def cancel_booking_locked(booking: Booking, reason: str, actor_id: int | None) -> Booking:
    """
    Cancel with every side effect, no commit:
    - quota += quantity on the owner
    - non-SUCCESS payments -> CANCELLED (SUCCESS is refunded manually)
    - RESERVED stock released via a CORRECTION +quantity
    - an open delivery assignment is marked FAILED
    """
    lifecycle.check_transition(booking.status, lifecycle.CANCELLED)

    owner = _lock_user(booking.user_id)
    owner.remaining_quota += booking.quantity

    for payment in db.session.query(Payment).filter(
        Payment.booking_id == booking.id,
        Payment.status != PAYMENT_SUCCESS,
        Payment.status != PAYMENT_CANCELLED,
    ).all():
        payment.status = PAYMENT_CANCELLED

    inventory_service.release_for_booking_locked(booking, actor_id=actor_id)

    now = utcnow()
    assignment = _assignment_for(booking.id)
    if assignment is not None and assignment.status not in (ASSIGNMENT_DELIVERED, ASSIGNMENT_FAILED):
        assignment.status = ASSIGNMENT_FAILED
        assignment.failed_at = now

    _append_note(booking, f"Cancelled: {reason}")
    booking.status = lifecycle.CANCELLED
    booking.cancelled_at = now
    record_event_locked(booking, "Booking Cancelled", reason, actor_id=actor_id)
    return booking


def cancel_booking(booking_id: int, reason, actor: User, *, by_customer: bool = False) -> Booking:
    """
    Cancel a booking. Customers may only cancel their own PENDING bookings.
    """
    reason = require_text({"reason": reason}, "reason", min_len=1, max_len=500)

    def _op():
        booking = lock_booking(booking_id)
        if by_customer:
            if booking.user_id != actor.id:
                raise NotFoundError("Booking not found")
            if booking.status in (lifecycle.APPROVED, lifecycle.OUT_FOR_DELIVERY):
                raise ConflictError("Only pending bookings can be cancelled. Contact support for help.")
        cancel_booking_locked(booking, reason, actor.id)
        db.session.commit()
        return booking

    booking = run_with_retry(_op)
    logger.info("Booking %s cancelled (%s)", booking.id, reason)
    outbox.enqueue(mail_service.booking_cancelled_email(booking, reason))
    return booking


def change_status(booking_id: int, target, actor: User, *, reason=None) -> Booking:
    """Admin status endpoint: APPROVED, DELIVERED or CANCELLED only."""
    target = lifecycle.check_direct_admin_target(target)
    if target == lifecycle.APPROVED:
        return approve_booking(booking_id, actor)
    if target == lifecycle.DELIVERED:
        return mark_delivered(booking_id, actor)
    return cancel_booking(booking_id, reason, actor)


# =============================================================================
# ADMIN EMAIL
# =============================================================================

def send_booking_email(booking_id: int, data: dict) -> bool:
    booking = get_booking(booking_id)
    if not booking.user_email:
        raise ValidationError("Booking has no customer email")
    subject = require_text(data, "subject", min_len=3, max_len=200)
    body = require_text(data, "message", min_len=5, max_len=5000)
    return outbox.enqueue(mail_service.custom_booking_email(booking, subject, body))

