from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_COD = "COD"
PAYMENT_UPI = "UPI"
VALID_PAYMENT_METHODS = {PAYMENT_COD, PAYMENT_UPI}

PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCESS = "SUCCESS"
PAYMENT_FAILED = "FAILED"
PAYMENT_CANCELLED = "CANCELLED"
VALID_PAYMENT_STATUSES = {PAYMENT_PENDING, PAYMENT_SUCCESS, PAYMENT_FAILED, PAYMENT_CANCELLED}


class Booking(db.Model):
    """
    One cylinder order.

    Customer contact fields are snapshotted at creation so later profile
    edits do not rewrite history. Bookings are never deleted; cancellation
    is a status value (see services/booking_lifecycle.py for the table).
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_bookings_quantity_positive"),
        db.Index("ix_bookings_user_created", "user_id", "created_at"),
        db.Index("ix_bookings_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    user_name = db.Column(db.String(100), nullable=False)
    user_email = db.Column(db.String(254), nullable=True)
    user_phone = db.Column(db.String(10), nullable=True)
    user_address = db.Column(db.String(500), nullable=True)

    receiver_name = db.Column(db.String(100), nullable=True)
    receiver_phone = db.Column(db.String(10), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    payment_method = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="PENDING")
    notes = db.Column(db.Text, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("bookings", lazy="dynamic"))
    events = db.relationship(
        "BookingEvent",
        backref="booking",
        lazy=True,
        order_by="BookingEvent.id",
    )
    payments = db.relationship(
        "Payment",
        backref="booking",
        lazy=True,
        order_by="Payment.id",
        foreign_keys="Payment.booking_id",
    )

    def latest_payment(self):
        return self.payments[-1] if self.payments else None

    def to_dict(self, *, include_payment: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "user_phone": self.user_phone,
            "user_address": self.user_address,
            "receiver_name": self.receiver_name,
            "receiver_phone": self.receiver_phone,
            "quantity": self.quantity,
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "requested_at": to_utc_z(self.requested_at),
            "expected_date": to_utc_z(self.expected_date),
            "delivery_date": to_utc_z(self.delivery_date),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_payment:
            latest = self.latest_payment()
            data["payment_status"] = latest.status if latest else None
            data["payment_amount"] = latest.amount if latest else None
        return data


class BookingEvent(db.Model):
    """
    Append-only timeline entry for a booking.

    WHY: Gives customers and admins a tracking view. Rows are inserted in the
    same transaction as the mutation they describe and are never updated.
    """
    __tablename__ = "booking_events"
    __table_args__ = (
        db.Index("ix_booking_events_booking", "booking_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False)
    status = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Payment attempt for a booking (amount in whole rupees).

    A booking can accumulate several rows: a rejected UPI payment followed
    by a retry, for example. "Latest" means highest id.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        db.Index("ix_payments_booking", "booking_id"),
        db.Index("ix_payments_status_method", "status", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    upi_txn_id = db.Column(db.String(50), nullable=True, index=True)
    failure_reason = db.Column(db.Text, nullable=True)

    retry_of_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "amount": self.amount,
            "method": self.method,
            "status": self.status,
            "upi_txn_id": self.upi_txn_id,
            "failure_reason": self.failure_reason,
            "retry_of_id": self.retry_of_id,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "created_at": to_utc_z(self.created_at),
        }
