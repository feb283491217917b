from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ASSIGNMENT_ASSIGNED = "ASSIGNED"
ASSIGNMENT_PICKED_UP = "PICKED_UP"
ASSIGNMENT_OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
ASSIGNMENT_DELIVERED = "DELIVERED"
ASSIGNMENT_FAILED = "FAILED"
VALID_ASSIGNMENT_STATUSES = {
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_PICKED_UP,
    ASSIGNMENT_OUT_FOR_DELIVERY,
    ASSIGNMENT_DELIVERED,
    ASSIGNMENT_FAILED,
}

VALID_PRIORITIES = {"low", "normal", "high", "urgent"}


class DeliveryPartner(db.Model):
    """Courier roster entry. Managed by admins; independent of bookings."""
    __tablename__ = "delivery_partners"
    __table_args__ = (
        db.CheckConstraint("capacity_per_day > 0", name="ck_delivery_partners_capacity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(10), nullable=False)
    email = db.Column(db.String(254), nullable=True)
    vehicle_number = db.Column(db.String(32), nullable=True)
    service_area = db.Column(db.String(200), nullable=True)
    capacity_per_day = db.Column(db.Integer, nullable=False, default=20)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

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
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "vehicle_number": self.vehicle_number,
            "service_area": self.service_area,
            "capacity_per_day": self.capacity_per_day,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class DeliveryAssignment(db.Model):
    """
    Links one booking to one partner.

    INVARIANT: at most one row per booking (unique booking_id). A FAILED
    assignment can be pointed at a new partner by reassign_delivery(), which
    reuses this row.
    """
    __tablename__ = "delivery_assignments"
    __table_args__ = (
        db.Index("ix_delivery_assignments_partner_status", "partner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("delivery_partners.id"), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=ASSIGNMENT_ASSIGNED)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_time = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    booking = db.relationship("Booking", backref=db.backref("assignment", uselist=False))
    partner = db.relationship("DeliveryPartner", backref=db.backref("assignments", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "partner_id": self.partner_id,
            "partner_name": self.partner.name if self.partner else None,
            "partner_phone": self.partner.phone if self.partner else None,
            "status": self.status,
            "priority": self.priority,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "scheduled_time": self.scheduled_time,
            "notes": self.notes,
            "assigned_at": to_utc_z(self.assigned_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "failed_at": to_utc_z(self.failed_at),
        }
