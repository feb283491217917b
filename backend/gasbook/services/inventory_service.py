# Overview: Service-layer operations for cylinder stock; ledger adjustments, reservations and batches.

"""
Cylinder Stock Ledger

INVARIANTS (authoritative):
- Every change to CylinderStock.total_available is a StockAdjustment row
  inserted in the same transaction that updates the total.
- total_available == SUM(stock_adjustments.delta) at all times;
  reconcile_stock() recomputes it from the ledger.
- total_available never goes negative. An adjustment that would drive it
  below zero raises ConflictError("Insufficient stock") and writes nothing.

SIGN RULES:
    RECEIVE     > 0   supplier intake (batches)
    ISSUE       < 0   stock reserved for an approved booking
    DAMAGE / AUDIT / CORRECTION   either sign, never zero

BOOKING RESERVATIONS:
    approve  -> ISSUE -quantity + reservation RESERVED
    cancel   -> reservation RELEASED + CORRECTION +quantity
    deliver  -> reservation CONSUMED (stock already left at approval)

Functions suffixed _locked write without committing so booking and
delivery services can compose them into a single transaction.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Booking, CylinderBatch, CylinderStock, StockAdjustment, StockReservation
from ..models.inventory import (
    ADJ_AUDIT,
    ADJ_CORRECTION,
    ADJ_DAMAGE,
    ADJ_ISSUE,
    ADJ_RECEIVE,
    BATCH_ACTIVE,
    DEFAULT_STOCK_ID,
    RESERVATION_CONSUMED,
    RESERVATION_RELEASED,
    RESERVATION_RESERVED,
    VALID_ADJUSTMENT_TYPES,
    VALID_BATCH_STATUSES,
)
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    MAX_ADJUSTMENT_MAGNITUDE,
    optional_text,
    require_text,
    to_int,
    validate_choice,
)
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

MAX_ADJUSTMENT_PAGE = 200


# =============================================================================
# LEDGER CORE
# =============================================================================

def get_stock_locked(*, lock: bool = True) -> CylinderStock:
    """Fetch (creating if absent) the singleton stock row."""
    query = db.session.query(CylinderStock).filter_by(id=DEFAULT_STOCK_ID)
    if lock:
        query = lock_for_update(query)
    stock = query.first()
    if stock is None:
        stock = CylinderStock(id=DEFAULT_STOCK_ID, total_available=0)
        db.session.add(stock)
        db.session.flush()
    return stock


def validate_adjustment(delta, adjustment_type) -> tuple[int, str]:
    delta = to_int(delta, "delta")
    adjustment_type = validate_choice(adjustment_type, VALID_ADJUSTMENT_TYPES, "type")

    if delta == 0:
        raise ValidationError("delta cannot be zero")
    if abs(delta) > MAX_ADJUSTMENT_MAGNITUDE:
        raise ValidationError(f"delta magnitude cannot exceed {MAX_ADJUSTMENT_MAGNITUDE}")
    if adjustment_type == ADJ_RECEIVE and delta < 0:
        raise ValidationError("RECEIVE adjustments must be positive")
    if adjustment_type == ADJ_ISSUE and delta > 0:
        raise ValidationError("ISSUE adjustments must be negative")
    return delta, adjustment_type


def apply_delta_locked(
    *,
    delta: int,
    adjustment_type: str,
    reason: str | None = None,
    notes: str | None = None,
    batch_id: int | None = None,
    booking_id: int | None = None,
    actor_id: int | None = None,
) -> StockAdjustment:
    """
    Insert one ledger row and move the materialized total with it.

    Raises ConflictError before any write if the result would be negative.
    Does not commit.
    """
    stock = get_stock_locked()
    new_total = stock.total_available + delta
    if new_total < 0:
        raise ConflictError(
            "Insufficient stock",
            details={"available": stock.total_available, "requested": -delta},
        )

    stock.total_available = new_total
    adjustment = StockAdjustment(
        stock_id=stock.id,
        delta=delta,
        type=adjustment_type,
        reason=reason,
        notes=notes,
        batch_id=batch_id,
        booking_id=booking_id,
        created_by_id=actor_id,
        balance_after=new_total,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def apply_adjustment(
    *,
    delta,
    adjustment_type,
    reason,
    notes=None,
    batch_id=None,
    booking_id=None,
    actor_id: int | None = None,
) -> StockAdjustment:
    """Manual admin adjustment (any type, subject to the sign rules)."""
    delta, adjustment_type = validate_adjustment(delta, adjustment_type)
    reason = require_text({"reason": reason}, "reason", max_len=200)
    notes = optional_text({"notes": notes}, "notes", max_len=500)
    if batch_id is not None:
        batch_id = to_int(batch_id, "batch_id")
    if booking_id is not None:
        booking_id = to_int(booking_id, "booking_id")

    def _op():
        if batch_id is not None and db.session.get(CylinderBatch, batch_id) is None:
            raise NotFoundError("Batch not found")
        if booking_id is not None and db.session.get(Booking, booking_id) is None:
            raise NotFoundError("Booking not found")

        adjustment = apply_delta_locked(
            delta=delta,
            adjustment_type=adjustment_type,
            reason=reason,
            notes=notes,
            batch_id=batch_id,
            booking_id=booking_id,
            actor_id=actor_id,
        )
        db.session.commit()
        return adjustment

    adjustment = run_with_retry(_op)
    logger.info("Stock adjusted by %s (%s): %s", adjustment.delta, adjustment.type, adjustment.reason)
    return adjustment


# =============================================================================
# BOOKING RESERVATIONS
# =============================================================================

def _reservation_for(booking_id: int) -> StockReservation | None:
    return lock_for_update(
        db.session.query(StockReservation).filter_by(booking_id=booking_id)
    ).first()


def reserve_for_booking_locked(booking: Booking, actor_id: int | None = None) -> StockReservation:
    """ISSUE -quantity and hold it against the booking. Does not commit."""
    existing = _reservation_for(booking.id)
    if existing is not None and existing.status == RESERVATION_RESERVED:
        return existing

    apply_delta_locked(
        delta=-booking.quantity,
        adjustment_type=ADJ_ISSUE,
        reason=f"Reserved for booking #{booking.id}",
        booking_id=booking.id,
        actor_id=actor_id,
    )

    if existing is None:
        existing = StockReservation(booking_id=booking.id, stock_id=DEFAULT_STOCK_ID, quantity=booking.quantity)
        db.session.add(existing)
    existing.quantity = booking.quantity
    existing.status = RESERVATION_RESERVED
    db.session.flush()
    return existing


def release_for_booking_locked(booking: Booking, actor_id: int | None = None) -> StockAdjustment | None:
    """Return reserved stock to the pool. No-op without a live reservation."""
    reservation = _reservation_for(booking.id)
    if reservation is None or reservation.status != RESERVATION_RESERVED:
        return None

    reservation.status = RESERVATION_RELEASED
    return apply_delta_locked(
        delta=reservation.quantity,
        adjustment_type=ADJ_CORRECTION,
        reason=f"Released reservation for cancelled booking #{booking.id}",
        booking_id=booking.id,
        actor_id=actor_id,
    )


def consume_for_booking_locked(booking: Booking) -> StockReservation | None:
    reservation = _reservation_for(booking.id)
    if reservation is None or reservation.status != RESERVATION_RESERVED:
        return None
    reservation.status = RESERVATION_CONSUMED
    db.session.flush()
    return reservation


# =============================================================================
# BATCHES
# =============================================================================

def create_batch(data: dict, actor_id: int | None = None) -> CylinderBatch:
    """ACTIVE batch plus a RECEIVE adjustment of +quantity, one transaction."""
    supplier = require_text(data, "supplier", min_len=2, max_len=120)
    invoice_no = optional_text(data, "invoice_no", max_len=64)
    notes = optional_text(data, "notes", max_len=500)
    quantity = to_int(data.get("quantity"), "quantity")
    if quantity < 1 or quantity > MAX_ADJUSTMENT_MAGNITUDE:
        raise ValidationError(f"quantity must be between 1 and {MAX_ADJUSTMENT_MAGNITUDE}")
    try:
        received_at = parse_iso_datetime(data.get("received_at")) or utcnow()
    except (TypeError, ValueError, AttributeError):
        raise ValidationError("received_at must be an ISO-8601 datetime")

    def _op():
        batch = CylinderBatch(
            supplier=supplier,
            invoice_no=invoice_no,
            quantity=quantity,
            status=BATCH_ACTIVE,
            notes=notes,
            received_at=received_at,
        )
        db.session.add(batch)
        db.session.flush()

        apply_delta_locked(
            delta=quantity,
            adjustment_type=ADJ_RECEIVE,
            reason=f"Batch #{batch.id} received from {supplier}",
            batch_id=batch.id,
            actor_id=actor_id,
        )
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    logger.info("Received batch %s: %s cylinders from %s", batch.id, batch.quantity, batch.supplier)
    return batch


def get_batch(batch_id: int) -> CylinderBatch:
    batch = db.session.get(CylinderBatch, batch_id)
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def update_batch(batch_id: int, data: dict, actor_id: int | None = None) -> CylinderBatch:
    """
    Edit batch metadata.

    Changing quantity writes a CORRECTION for the difference linked to the
    batch. Status is set manually (ACTIVE / DEPLETED / EXPIRED).
    """
    allowed = {"supplier", "invoice_no", "notes", "status", "quantity"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    patch: dict = {}
    if "supplier" in data:
        patch["supplier"] = require_text(data, "supplier", min_len=2, max_len=120)
    if "invoice_no" in data:
        patch["invoice_no"] = optional_text(data, "invoice_no", max_len=64)
    if "notes" in data:
        patch["notes"] = optional_text(data, "notes", max_len=500)
    if "status" in data:
        patch["status"] = validate_choice(data["status"], VALID_BATCH_STATUSES, "status")
    new_quantity = None
    if "quantity" in data:
        new_quantity = to_int(data["quantity"], "quantity")
        if new_quantity < 1 or new_quantity > MAX_ADJUSTMENT_MAGNITUDE:
            raise ValidationError(f"quantity must be between 1 and {MAX_ADJUSTMENT_MAGNITUDE}")

    def _op():
        batch = lock_for_update(db.session.query(CylinderBatch).filter_by(id=batch_id)).first()
        if not batch:
            raise NotFoundError("Batch not found")

        if new_quantity is not None and new_quantity != batch.quantity:
            difference = new_quantity - batch.quantity
            apply_delta_locked(
                delta=difference,
                adjustment_type=ADJ_CORRECTION,
                reason=f"Batch #{batch.id} quantity corrected {batch.quantity} -> {new_quantity}",
                batch_id=batch.id,
                actor_id=actor_id,
            )
            batch.quantity = new_quantity

        for key, value in patch.items():
            setattr(batch, key, value)

        db.session.commit()
        return batch

    return run_with_retry(_op)


def list_batches(status: str | None = None) -> list[CylinderBatch]:
    query = db.session.query(CylinderBatch)
    if status:
        query = query.filter(CylinderBatch.status == validate_choice(status, VALID_BATCH_STATUSES, "status"))
    return query.order_by(CylinderBatch.received_at.desc(), CylinderBatch.id.desc()).all()


def batch_usage(batch_id: int) -> dict:
    """
    Received quantity versus the deltas linked to the batch.

    Informational only; DEPLETED is an admin decision.
    """
    batch = get_batch(batch_id)
    rows = (
        db.session.query(StockAdjustment.type, func.coalesce(func.sum(StockAdjustment.delta), 0))
        .filter(StockAdjustment.batch_id == batch.id)
        .group_by(StockAdjustment.type)
        .all()
    )
    by_type = {t: int(total) for t, total in rows}
    received = by_type.get(ADJ_RECEIVE, 0)
    outflow = sum(-v for t, v in by_type.items() if t != ADJ_RECEIVE and v < 0)
    corrections_in = sum(v for t, v in by_type.items() if t != ADJ_RECEIVE and v > 0)
    return {
        "batch_id": batch.id,
        "status": batch.status,
        "quantity": batch.quantity,
        "received": received,
        "by_type": {t: by_type.get(t, 0) for t in (ADJ_ISSUE, ADJ_DAMAGE, ADJ_AUDIT, ADJ_CORRECTION)},
        "net_remaining": received + corrections_in - outflow,
    }


# =============================================================================
# REPORTING
# =============================================================================

def list_adjustments(limit=50, adjustment_type: str | None = None) -> list[StockAdjustment]:
    limit = to_int(limit, "limit")
    if limit < 1 or limit > MAX_ADJUSTMENT_PAGE:
        raise ValidationError(f"limit must be between 1 and {MAX_ADJUSTMENT_PAGE}")
    query = db.session.query(StockAdjustment)
    if adjustment_type:
        query = query.filter(
            StockAdjustment.type == validate_choice(adjustment_type, VALID_ADJUSTMENT_TYPES, "type")
        )
    return query.order_by(StockAdjustment.id.desc()).limit(limit).all()


def reserved_quantity() -> int:
    total = db.session.query(func.coalesce(func.sum(StockReservation.quantity), 0)).filter(
        StockReservation.status == RESERVATION_RESERVED
    ).scalar()
    return int(total or 0)


def get_inventory_summary() -> dict:
    stock = db.session.query(CylinderStock).filter_by(id=DEFAULT_STOCK_ID).first()
    total = stock.total_available if stock else 0
    threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))

    batch_counts = dict(
        db.session.query(CylinderBatch.status, func.count(CylinderBatch.id))
        .group_by(CylinderBatch.status)
        .all()
    )
    return {
        "total_available": total,
        "reserved": reserved_quantity(),
        "low_stock": total < threshold,
        "low_stock_threshold": threshold,
        "batches": {status: int(batch_counts.get(status, 0)) for status in sorted(VALID_BATCH_STATUSES)},
        "updated_at": stock.to_dict()["updated_at"] if stock else None,
    }


def ledger_total() -> int:
    total = db.session.query(func.coalesce(func.sum(StockAdjustment.delta), 0)).filter(
        StockAdjustment.stock_id == DEFAULT_STOCK_ID
    ).scalar()
    return int(total or 0)


def reconcile_stock(fix: bool = False) -> dict:
    """
    Compare the materialized total against SUM(delta).

    With fix=True a drifted total is rewritten from the ledger.
    """
    def _op():
        stock = get_stock_locked()
        ledger = ledger_total()
        materialized = stock.total_available
        drift = materialized - ledger
        fixed = False
        if drift and fix:
            if ledger < 0:
                raise ConflictError("Ledger sums to a negative total; manual review required")
            stock.total_available = ledger
            fixed = True
        db.session.commit()
        return {
            "materialized_total": materialized,
            "ledger_total": ledger,
            "drift": drift,
            "consistent": drift == 0,
            "fixed": fixed,
        }

    result = run_with_retry(_op)
    if result["drift"]:
        logger.warning("Stock drift detected: materialized=%s ledger=%s fixed=%s",
                       result["materialized_total"], result["ledger_total"], result["fixed"])
    return result
