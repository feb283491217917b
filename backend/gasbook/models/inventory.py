from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


DEFAULT_STOCK_ID = "default"

ADJ_RECEIVE = "RECEIVE"
ADJ_ISSUE = "ISSUE"
ADJ_DAMAGE = "DAMAGE"
ADJ_AUDIT = "AUDIT"
ADJ_CORRECTION = "CORRECTION"
VALID_ADJUSTMENT_TYPES = {ADJ_RECEIVE, ADJ_ISSUE, ADJ_DAMAGE, ADJ_AUDIT, ADJ_CORRECTION}

RESERVATION_RESERVED = "RESERVED"
RESERVATION_RELEASED = "RELEASED"
RESERVATION_CONSUMED = "CONSUMED"

BATCH_ACTIVE = "ACTIVE"
BATCH_DEPLETED = "DEPLETED"
BATCH_EXPIRED = "EXPIRED"
VALID_BATCH_STATUSES = {BATCH_ACTIVE, BATCH_DEPLETED, BATCH_EXPIRED}


class CylinderStock(db.Model):
    """
    Materialized stock total (singleton row id="default").

    LEDGER PATTERN: total_available is a cache of SUM(stock_adjustments.delta).
    It is only ever written by inventory_service in the same transaction
    that inserts the adjustment row; reconcile_stock() can rebuild it.
    """
    __tablename__ = "cylinder_stock"
    __table_args__ = (
        db.CheckConstraint("total_available >= 0", name="ck_cylinder_stock_non_negative"),
    )

    id = db.Column(db.String(32), primary_key=True, default=DEFAULT_STOCK_ID)
    total_available = db.Column(db.Integer, nullable=False, default=0)

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
            "total_available": self.total_available,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAdjustment(db.Model):
    """
    Append-only stock ledger entry.

    RULES:
    - RECEIVE deltas are positive (supplier intake, usually via a batch)
    - ISSUE deltas are negative (stock reserved for an approved booking)
    - DAMAGE / AUDIT / CORRECTION are manual entries of either sign
    Rows are never updated or deleted.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.CheckConstraint("delta <> 0", name="ck_stock_adjustments_delta_non_zero"),
        db.Index("ix_stock_adjustments_stock_created", "stock_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_id = db.Column(db.String(32), db.ForeignKey("cylinder_stock.id"), nullable=False, default=DEFAULT_STOCK_ID)
    delta = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    batch_id = db.Column(db.Integer, db.ForeignKey("cylinder_batches.id"), nullable=True, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Running total after this row was applied (audit convenience, not authoritative)
    balance_after = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("CylinderBatch", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delta": self.delta,
            "type": self.type,
            "reason": self.reason,
            "notes": self.notes,
            "batch_id": self.batch_id,
            "booking_id": self.booking_id,
            "created_by_id": self.created_by_id,
            "balance_after": self.balance_after,
            "created_at": to_utc_z(self.created_at),
        }


class StockReservation(db.Model):
    """
    Stock held for one booking between approval and delivery.

    RESERVED -> CONSUMED on delivery, RESERVED -> RELEASED on cancellation.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    stock_id = db.Column(db.String(32), db.ForeignKey("cylinder_stock.id"), nullable=False, default=DEFAULT_STOCK_ID)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True)
    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RESERVATION_RESERVED)

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
            "quantity": self.quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CylinderBatch(db.Model):
    """Supplier intake record. Status is set by an admin (see batch_usage)."""
    __tablename__ = "cylinder_batches"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_cylinder_batches_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier = db.Column(db.String(120), nullable=False)
    invoice_no = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=BATCH_ACTIVE)
    notes = db.Column(db.String(500), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

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
            "supplier": self.supplier,
            "invoice_no": self.invoice_no,
            "quantity": self.quantity,
            "status": self.status,
            "notes": self.notes,
            "received_at": to_utc_z(self.received_at),
            "created_at": to_utc_z(self.created_at),
        }
