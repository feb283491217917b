# Overview: Flask API routes for admin inventory; stock summary, ledger adjustments, batches and reconciliation.

# backend/gasbook/routes/admin_inventory.py
"""
Inventory routes.

RULES:
- Stock only changes through StockAdjustment rows (the ledger).
- RECEIVE must be positive, ISSUE negative; CORRECTION/DAMAGE/AUDIT any non-zero.
- A delta that would drive stock below zero is a 409.
"""

from flask import Blueprint, request, g

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import inventory_service, stats_service
from ..validation import get_json_body

admin_inventory_bp = Blueprint("admin_inventory", __name__, url_prefix="/api/admin/inventory")


@admin_inventory_bp.get("")
@require_auth
@require_admin
def summary():
    return ok(inventory_service.get_inventory_summary())


@admin_inventory_bp.get("/analytics")
@require_auth
@require_admin
def analytics():
    """Received/issued totals, batch breakdown, movement by type and recent activity."""
    return ok(stats_service.inventory_analytics())


@admin_inventory_bp.get("/adjustments")
@require_auth
@require_admin
def list_adjustments():
    """Query params: limit (1..200, default 50), type."""
    adjustments = inventory_service.list_adjustments(
        limit=request.args.get("limit", 50),
        adjustment_type=request.args.get("type"),
    )
    return ok([a.to_dict() for a in adjustments])


@admin_inventory_bp.post("/adjustments")
@require_auth
@require_admin
def create_adjustment():
    """Body: delta, type, reason, notes?, batch_id?, booking_id?"""
    data = get_json_body(request)
    adjustment = inventory_service.apply_adjustment(
        delta=data.get("delta"),
        adjustment_type=data.get("type"),
        reason=data.get("reason"),
        notes=data.get("notes"),
        batch_id=data.get("batch_id"),
        booking_id=data.get("booking_id"),
        actor_id=g.current_user.id,
    )
    return ok(
        {"adjustment": adjustment.to_dict(), "inventory": inventory_service.get_inventory_summary()},
        message="Stock adjusted",
        status=201,
    )


@admin_inventory_bp.get("/batches")
@require_auth
@require_admin
def list_batches():
    return ok([b.to_dict() for b in inventory_service.list_batches(request.args.get("status"))])


@admin_inventory_bp.post("/batches")
@require_auth
@require_admin
def create_batch():
    """Creating a batch also books its quantity into stock as a RECEIVE adjustment."""
    batch = inventory_service.create_batch(get_json_body(request), actor_id=g.current_user.id)
    return ok(batch.to_dict(), message="Batch received", status=201)


@admin_inventory_bp.get("/batches/<int:batch_id>")
@require_auth
@require_admin
def get_batch(batch_id: int):
    batch = inventory_service.get_batch(batch_id)
    return ok({**batch.to_dict(), "usage": inventory_service.batch_usage(batch_id)})


@admin_inventory_bp.put("/batches/<int:batch_id>")
@require_auth
@require_admin
def update_batch(batch_id: int):
    batch = inventory_service.update_batch(batch_id, get_json_body(request), actor_id=g.current_user.id)
    return ok(batch.to_dict(), message="Batch updated")


@admin_inventory_bp.post("/reconcile")
@require_auth
@require_admin
def reconcile():
    """Compare the stock total with the ledger sum. Body: fix (bool) to correct drift."""
    data = get_json_body(request)
    return ok(inventory_service.reconcile_stock(fix=bool(data.get("fix", False))))
