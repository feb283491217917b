# Overview: Service-layer operations for payments; UPI review, customer retries and COD edits.

"""
Payment Service

UPI REVIEW:
    PENDING --confirm(txn id)--> SUCCESS
    PENDING --reject(reason)---> FAILED --customer retry--> new PENDING row

Confirming or rejecting never changes Booking.status. Approval is a
separate admin action gated on the latest payment being SUCCESS
(booking_service.approve_booking_locked).

Customer notification is queued after commit; a mail failure is logged by
the outbox and never rolls the review back.
"""

from __future__ import annotations

import logging

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db, outbox
from ..models import Booking, Payment, User
from ..models.bookings import (
    PAYMENT_COD,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
    PAYMENT_UPI,
    VALID_PAYMENT_STATUSES,
)
from ..time_utils import utcnow
from ..validation import require_text, to_int, validate_choice, validate_upi_txn_id
from . import booking_lifecycle as lifecycle
from . import mail_service, settings_service
from .booking_service import latest_payment_locked, lock_booking, record_event_locked, upi_txn_in_use
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 10
MAX_COD_AMOUNT = 1_000_000


def _lock_payment(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def confirm_payment(payment_id: int, upi_txn_id, admin: User, *, send_email: bool = True) -> Payment:
    """Mark a PENDING UPI payment SUCCESS with the verified transaction id."""
    upi_txn_id = validate_upi_txn_id(upi_txn_id)

    def _op():
        payment = _lock_payment(payment_id)
        if payment.method != PAYMENT_UPI:
            raise ValidationError("Only UPI payments can be reviewed")
        if payment.status != PAYMENT_PENDING:
            raise ConflictError(f"Payment is already {payment.status.lower()}")
        if upi_txn_in_use(upi_txn_id, exclude_payment_id=payment.id):
            raise ConflictError("UPI transaction ID has already been used")

        payment.status = PAYMENT_SUCCESS
        payment.upi_txn_id = upi_txn_id
        payment.failure_reason = None
        payment.reviewed_by_id = admin.id
        payment.reviewed_at = utcnow()

        booking = lock_booking(payment.booking_id)
        record_event_locked(
            booking,
            "Payment Confirmed",
            f"UPI payment of Rs. {payment.amount} confirmed (txn {upi_txn_id})",
            actor_id=admin.id,
        )
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info("Payment %s confirmed for booking %s", payment.id, payment.booking_id)
    if send_email:
        outbox.enqueue(mail_service.payment_confirmed_email(payment.booking, payment))
    return payment


def reject_payment(payment_id: int, reason, admin: User, *, send_email: bool = True) -> Payment:
    """Mark a PENDING UPI payment FAILED; the customer may then retry."""
    reason = require_text({"reason": reason}, "reason", min_len=MIN_REJECTION_REASON_LENGTH, max_len=500)

    def _op():
        payment = _lock_payment(payment_id)
        if payment.method != PAYMENT_UPI:
            raise ValidationError("Only UPI payments can be reviewed")
        if payment.status != PAYMENT_PENDING:
            raise ConflictError(f"Payment is already {payment.status.lower()}")

        payment.status = PAYMENT_FAILED
        payment.failure_reason = reason
        payment.reviewed_by_id = admin.id
        payment.reviewed_at = utcnow()

        booking = lock_booking(payment.booking_id)
        record_event_locked(booking, "Payment Rejected", reason, actor_id=admin.id)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info("Payment %s rejected for booking %s", payment.id, payment.booking_id)
    if send_email:
        outbox.enqueue(mail_service.payment_rejected_email(payment.booking, payment))
    return payment


def retry_payment(user: User, booking_id, upi_txn_id) -> Payment:
    """
    Open a new PENDING UPI payment after the latest one was rejected.

    Only the booking owner may retry, only on a live UPI booking.
    """
    booking_id = to_int(booking_id, "booking_id")
    upi_txn_id = validate_upi_txn_id(upi_txn_id)

    def _op():
        booking = lock_booking(booking_id)
        if booking.user_id != user.id:
            raise NotFoundError("Booking not found")
        if booking.payment_method != PAYMENT_UPI:
            raise ValidationError("Only UPI bookings can retry payment")
        if lifecycle.is_terminal(booking.status):
            raise ConflictError(f"Cannot retry payment on a {booking.status.lower()} booking")

        latest = latest_payment_locked(booking.id)
        if latest is None or latest.status != PAYMENT_FAILED:
            raise ConflictError("Payment can only be retried after it has been rejected")
        if upi_txn_in_use(upi_txn_id):
            raise ConflictError("UPI transaction ID has already been used")

        retry = Payment(
            booking_id=booking.id,
            amount=latest.amount,
            method=PAYMENT_UPI,
            status=PAYMENT_PENDING,
            upi_txn_id=upi_txn_id,
            retry_of_id=latest.id,
        )
        db.session.add(retry)
        db.session.flush()
        record_event_locked(
            booking,
            "Payment Retry",
            f"New UPI transaction submitted (txn {upi_txn_id})",
            actor_id=user.id,
        )
        db.session.commit()
        return retry

    return run_with_retry(_op)


def update_cod_payment(booking_id: int, data: dict, admin: User) -> Payment:
    """Edit amount/status of the latest COD payment, creating one if none exists."""
    allowed = {"amount", "status"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    if not data:
        raise ValidationError("No fields to update")

    amount = None
    if "amount" in data:
        amount = to_int(data["amount"], "amount")
        if amount < 0 or amount > MAX_COD_AMOUNT:
            raise ValidationError(f"amount must be between 0 and {MAX_COD_AMOUNT}")
    status = validate_choice(data["status"], VALID_PAYMENT_STATUSES, "status") if "status" in data else None

    def _op():
        booking = lock_booking(booking_id)
        if booking.payment_method != PAYMENT_COD:
            raise ValidationError("Only COD payments can be edited here")
        if lifecycle.is_terminal(booking.status):
            raise ConflictError(f"Payments of a {booking.status.lower()} booking cannot be changed")

        payment = latest_payment_locked(booking.id)
        if payment is None:
            payment = Payment(
                booking_id=booking.id,
                amount=settings_service.get_price_per_cylinder() * booking.quantity,
                method=PAYMENT_COD,
                status=PAYMENT_PENDING,
            )
            db.session.add(payment)

        changes = []
        if amount is not None:
            payment.amount = amount
            changes.append(f"amount Rs. {amount}")
        if status is not None:
            payment.status = status
            changes.append(f"status {status}")
        payment.reviewed_by_id = admin.id
        payment.reviewed_at = utcnow()
        db.session.flush()

        record_event_locked(booking, "Payment Updated", ", ".join(changes), actor_id=admin.id)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def list_payments(booking_id: int) -> list[Payment]:
    if db.session.get(Booking, booking_id) is None:
        raise NotFoundError("Booking not found")
    return db.session.query(Payment).filter_by(booking_id=booking_id).order_by(Payment.id.asc()).all()


def list_pending_upi_reviews() -> list[dict]:
    """PENDING UPI payments with a booking summary, oldest first."""
    rows = (
        db.session.query(Payment, Booking)
        .join(Booking, Payment.booking_id == Booking.id)
        .filter(Payment.method == PAYMENT_UPI, Payment.status == PAYMENT_PENDING)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )
    return [
        {
            **payment.to_dict(),
            "booking": {
                "id": booking.id,
                "status": booking.status,
                "quantity": booking.quantity,
                "user_name": booking.user_name,
                "user_email": booking.user_email,
                "user_phone": booking.user_phone,
            },
        }
        for payment, booking in rows
    ]
