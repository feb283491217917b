# Overview: Reporting queries for the admin dashboard; booking, delivery and inventory analytics with CSV export.

from __future__ import annotations

import csv
import io
from datetime import timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Booking, CylinderBatch, DeliveryAssignment, DeliveryPartner, Payment, StockAdjustment
from ..models.bookings import PAYMENT_PENDING, PAYMENT_SUCCESS, PAYMENT_UPI, VALID_PAYMENT_METHODS
from ..models.deliveries import ASSIGNMENT_DELIVERED, ASSIGNMENT_FAILED
from ..models.inventory import DEFAULT_STOCK_ID, VALID_ADJUSTMENT_TYPES, VALID_BATCH_STATUSES
from ..time_utils import days_ago, start_of_day, utcnow
from ..validation import to_int
from . import booking_lifecycle as lifecycle
from . import contact_service, delivery_service, inventory_service, user_admin_service

MAX_ANALYTICS_DAYS = 365
CSV_COLUMNS = ("date", "created", "delivered", "cancelled", "cylinders_delivered", "revenue")


def booking_stats() -> dict:
    by_status = dict(db.session.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all())
    by_method = dict(
        db.session.query(Booking.payment_method, func.count(Booking.id)).group_by(Booking.payment_method).all()
    )
    pending_reviews = db.session.query(func.count(Payment.id)).filter(
        Payment.method == PAYMENT_UPI, Payment.status == PAYMENT_PENDING
    ).scalar()
    revenue = db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.status == PAYMENT_SUCCESS
    ).scalar()
    today = start_of_day(utcnow())
    created_today = db.session.query(func.count(Booking.id)).filter(Booking.created_at >= today).scalar()

    status_counts = {s: int(by_status.get(s, 0)) for s in sorted(lifecycle.VALID_STATUSES)}
    return {
        "total": sum(status_counts.values()),
        "by_status": status_counts,
        "by_payment_method": {m: int(by_method.get(m, 0)) for m in sorted(VALID_PAYMENT_METHODS)},
        "pending_upi_reviews": int(pending_reviews or 0),
        "revenue": int(revenue or 0),
        "created_today": int(created_today or 0),
    }


def _parse_days(days) -> int:
    days = to_int(days, "days")
    if days < 1 or days > MAX_ANALYTICS_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_ANALYTICS_DAYS}")
    return days


def booking_analytics(days=30) -> dict:
    """
    One row per day (oldest first) for the last `days` days, today included.

    Bucketing happens in Python so the same code runs on SQLite and Postgres.
    """
    days = _parse_days(days)
    since = days_ago(days - 1)
    buckets = {
        (since + timedelta(days=i)).date().isoformat(): {
            "created": 0, "delivered": 0, "cancelled": 0, "cylinders_delivered": 0, "revenue": 0,
        }
        for i in range(days)
    }

    for created_at, in db.session.query(Booking.created_at).filter(Booking.created_at >= since):
        key = created_at.date().isoformat()
        if key in buckets:
            buckets[key]["created"] += 1

    for delivered_at, quantity in db.session.query(Booking.delivered_at, Booking.quantity).filter(
        Booking.delivered_at.isnot(None), Booking.delivered_at >= since
    ):
        key = delivered_at.date().isoformat()
        if key in buckets:
            buckets[key]["delivered"] += 1
            buckets[key]["cylinders_delivered"] += quantity

    for cancelled_at, in db.session.query(Booking.cancelled_at).filter(
        Booking.cancelled_at.isnot(None), Booking.cancelled_at >= since
    ):
        key = cancelled_at.date().isoformat()
        if key in buckets:
            buckets[key]["cancelled"] += 1

    paid_at = func.coalesce(Payment.reviewed_at, Payment.updated_at)
    for stamp, amount in db.session.query(paid_at, Payment.amount).filter(
        Payment.status == PAYMENT_SUCCESS, paid_at >= since
    ):
        key = stamp.date().isoformat()
        if key in buckets:
            buckets[key]["revenue"] += amount

    rows = [{"date": day, **values} for day, values in buckets.items()]
    return {
        "days": days,
        "rows": rows,
        "totals": {k: sum(r[k] for r in rows) for k in CSV_COLUMNS if k != "date"},
    }


def analytics_csv(days=30) -> str:
    data = booking_analytics(days)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for row in data["rows"]:
        writer.writerow(row)
    return buffer.getvalue()


# =============================================================================
# DELIVERY ANALYTICS
# =============================================================================

ANALYTICS_PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DELIVERY_CSV_COLUMNS = (
    "partner_id", "partner_name", "service_area", "total", "completed", "failed",
    "success_rate", "average_delivery_hours",
)
UNASSIGNED_AREA = "Unassigned"


def _parse_period(period) -> tuple[str, int]:
    period = (period or "30d").strip().lower()
    if period not in ANALYTICS_PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(ANALYTICS_PERIODS)}")
    return period, ANALYTICS_PERIODS[period]


def _success_rate(completed: int, total: int) -> int:
    return round(completed * 100 / total) if total else 0


def _average_hours(durations: list[float]) -> float:
    return round(sum(durations) / len(durations) / 3600, 1) if durations else 0.0


class _DeliveryTally:
    def __init__(self):
        self.total = 0
        self.completed = 0
        self.failed = 0
        self.durations: list[float] = []

    def add(self, assignment: DeliveryAssignment) -> None:
        self.total += 1
        if assignment.status == ASSIGNMENT_DELIVERED:
            self.completed += 1
            if assignment.delivered_at and assignment.assigned_at:
                self.durations.append((assignment.delivered_at - assignment.assigned_at).total_seconds())
        elif assignment.status == ASSIGNMENT_FAILED:
            self.failed += 1

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "in_progress": self.total - self.completed - self.failed,
            "success_rate": _success_rate(self.completed, self.total),
            "average_delivery_hours": _average_hours(self.durations),
        }


def delivery_analytics(period="30d", partner_id=None, area: str | None = None) -> dict:
    """
    Delivery performance for assignments made within `period` (7d, 30d, 90d, 1y).

    Optional filters: one partner, or every partner serving `area`.
    Success rate is DELIVERED / all assignments in the window, as a percentage.
    """
    period, days = _parse_period(period)
    since = days_ago(days - 1)
    partner_id = to_int(partner_id, "partner_id") if partner_id not in (None, "") else None
    area = area.strip() if area else None

    query = (
        db.session.query(DeliveryAssignment)
        .join(DeliveryPartner, DeliveryAssignment.partner_id == DeliveryPartner.id)
        .filter(DeliveryAssignment.assigned_at >= since)
    )
    if partner_id is not None:
        query = query.filter(DeliveryAssignment.partner_id == partner_id)
    if area:
        query = query.filter(DeliveryPartner.service_area == area)

    overall = _DeliveryTally()
    per_partner: dict[int, _DeliveryTally] = {}
    per_area: dict[str, _DeliveryTally] = {}
    partners: dict[int, DeliveryPartner] = {}
    series = {
        (since + timedelta(days=i)).date().isoformat(): {"assigned": 0, "delivered": 0, "failed": 0}
        for i in range(days)
    }

    for assignment in query.order_by(DeliveryAssignment.assigned_at.asc()).all():
        partner = assignment.partner
        partners[partner.id] = partner
        overall.add(assignment)
        per_partner.setdefault(partner.id, _DeliveryTally()).add(assignment)
        per_area.setdefault(partner.service_area or UNASSIGNED_AREA, _DeliveryTally()).add(assignment)

        key = assignment.assigned_at.date().isoformat()
        if key in series:
            series[key]["assigned"] += 1
        if assignment.status == ASSIGNMENT_DELIVERED and assignment.delivered_at:
            key = assignment.delivered_at.date().isoformat()
            if key in series:
                series[key]["delivered"] += 1
        elif assignment.status == ASSIGNMENT_FAILED and assignment.failed_at:
            key = assignment.failed_at.date().isoformat()
            if key in series:
                series[key]["failed"] += 1

    partner_rows = [
        {
            "partner_id": pid,
            "partner_name": partners[pid].name,
            "service_area": partners[pid].service_area,
            **tally.as_dict(),
        }
        for pid, tally in per_partner.items()
    ]
    partner_rows.sort(key=lambda r: (-r["completed"], -r["success_rate"], r["partner_name"]))
    area_rows = sorted(
        ({"area": name, **tally.as_dict()} for name, tally in per_area.items()),
        key=lambda r: (-r["success_rate"], r["area"]),
    )

    partners_total = db.session.query(func.count(DeliveryPartner.id)).scalar()
    partners_active = db.session.query(func.count(DeliveryPartner.id)).filter(
        DeliveryPartner.is_active.is_(True)
    ).scalar()
    return {
        "period": period,
        "filters": {"partner_id": partner_id, "area": area},
        "overview": {
            **overall.as_dict(),
            "partners_total": int(partners_total or 0),
            "partners_active": int(partners_active or 0),
        },
        "time_series": [{"date": day, **values} for day, values in series.items()],
        "partner_performance": partner_rows,
        "area_stats": area_rows,
    }


def delivery_analytics_csv(period="30d", partner_id=None, area: str | None = None) -> str:
    """One row per partner; the last row is the overall total."""
    data = delivery_analytics(period, partner_id, area)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=DELIVERY_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in data["partner_performance"]:
        writer.writerow(row)
    writer.writerow({
        **data["overview"],
        "partner_id": "",
        "partner_name": "All partners",
        "service_area": data["filters"]["area"] or "",
    })
    return buffer.getvalue()


# =============================================================================
# INVENTORY ANALYTICS
# =============================================================================

INVENTORY_TREND_DAYS = 180
RECENT_ACTIVITY_LIMIT = 10


def inventory_analytics() -> dict:
    """
    Ledger totals, batch breakdown, per-type movement over the last
    INVENTORY_TREND_DAYS days and the latest adjustments.
    """
    on_ledger = StockAdjustment.stock_id == DEFAULT_STOCK_ID
    received = db.session.query(func.coalesce(func.sum(StockAdjustment.delta), 0)).filter(
        on_ledger, StockAdjustment.delta > 0
    ).scalar()
    issued = db.session.query(func.coalesce(func.sum(StockAdjustment.delta), 0)).filter(
        on_ledger, StockAdjustment.delta < 0
    ).scalar()

    batch_rows = {
        status: (count, quantity)
        for status, count, quantity in db.session.query(
            CylinderBatch.status, func.count(CylinderBatch.id), func.coalesce(func.sum(CylinderBatch.quantity), 0)
        ).group_by(CylinderBatch.status)
    }
    since = days_ago(INVENTORY_TREND_DAYS)
    type_rows = {
        adj_type: (total, count)
        for adj_type, total, count in db.session.query(
            StockAdjustment.type, func.coalesce(func.sum(StockAdjustment.delta), 0), func.count(StockAdjustment.id)
        ).filter(on_ledger, StockAdjustment.created_at >= since).group_by(StockAdjustment.type)
    }
    recent = (
        db.session.query(StockAdjustment)
        .filter(on_ledger)
        .order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )

    stock = inventory_service.get_stock_locked(lock=False)
    return {
        "current_stock": stock.total_available,
        "reserved": inventory_service.reserved_quantity(),
        "total_received": int(received or 0),
        "total_issued": abs(int(issued or 0)),
        "batch_stats": [
            {
                "status": status,
                "count": int(batch_rows.get(status, (0, 0))[0]),
                "total_quantity": int(batch_rows.get(status, (0, 0))[1]),
            }
            for status in sorted(VALID_BATCH_STATUSES)
        ],
        "trend_days": INVENTORY_TREND_DAYS,
        "by_type": {
            adj_type: {
                "total_delta": int(type_rows.get(adj_type, (0, 0))[0]),
                "count": int(type_rows.get(adj_type, (0, 0))[1]),
            }
            for adj_type in sorted(VALID_ADJUSTMENT_TYPES)
        },
        "recent_activity": [a.to_dict() for a in recent],
    }


def dashboard() -> dict:
    return {
        "bookings": booking_stats(),
        "inventory": inventory_service.get_inventory_summary(),
        "deliveries": delivery_service.delivery_stats(),
        "contacts": contact_service.contact_stats(),
        "users": user_admin_service.user_stats(),
    }
