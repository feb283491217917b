# Overview: Flask API routes for delivery partners and booking delivery assignments.

# backend/gasbook/routes/admin_deliveries.py
"""
Delivery routes.

Partners live under /api/admin/deliveries/partners; per-booking assignment
endpoints hang off /api/admin/bookings/<id>/ so they read next to the
booking they change.

Assignment status only moves forward:
ASSIGNED -> PICKED_UP -> OUT_FOR_DELIVERY -> DELIVERED, or FAILED from any
non-final state. OUT_FOR_DELIVERY and DELIVERED are mirrored onto the booking.
"""

from flask import Blueprint, Response, request, g

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import delivery_service, stats_service
from ..time_utils import utcnow
from ..validation import get_json_body, parse_pagination

admin_deliveries_bp = Blueprint("admin_deliveries", __name__, url_prefix="/api/admin")


# =============================================================================
# PARTNERS
# =============================================================================

@admin_deliveries_bp.get("/deliveries/partners")
@require_auth
@require_admin
def list_partners():
    active_only = request.args.get("active", "").strip().lower() == "true"
    return ok([p.to_dict() for p in delivery_service.list_partners(active_only=active_only)])


@admin_deliveries_bp.post("/deliveries/partners")
@require_auth
@require_admin
def create_partner():
    partner = delivery_service.create_partner(get_json_body(request))
    return ok(partner.to_dict(), message="Delivery partner created", status=201)


@admin_deliveries_bp.get("/deliveries/partners/<int:partner_id>")
@require_auth
@require_admin
def get_partner(partner_id: int):
    return ok(delivery_service.partner_detail(partner_id))


@admin_deliveries_bp.put("/deliveries/partners/<int:partner_id>")
@require_auth
@require_admin
def update_partner(partner_id: int):
    partner = delivery_service.update_partner(partner_id, get_json_body(request))
    return ok(partner.to_dict(), message="Delivery partner updated")


@admin_deliveries_bp.delete("/deliveries/partners/<int:partner_id>")
@require_auth
@require_admin
def delete_partner(partner_id: int):
    """Deletes a partner with no history; otherwise deactivates it."""
    result = delivery_service.deactivate_partner(partner_id)
    return ok(result, message="Delivery partner deleted" if result["deleted"] else "Delivery partner deactivated")


@admin_deliveries_bp.get("/deliveries/partners/<int:partner_id>/deliveries")
@require_auth
@require_admin
def partner_deliveries(partner_id: int):
    return ok(delivery_service.list_partner_deliveries(partner_id, request.args.get("status")))


@admin_deliveries_bp.get("/deliveries/active")
@require_auth
@require_admin
def active_deliveries():
    return ok(delivery_service.list_active_assignments())


@admin_deliveries_bp.get("/deliveries/stats")
@require_auth
@require_admin
def stats():
    return ok(delivery_service.delivery_stats())


@admin_deliveries_bp.get("/deliveries/recent")
@require_auth
@require_admin
def recent_deliveries():
    return ok(delivery_service.list_recent_assignments())


@admin_deliveries_bp.get("/deliveries/assignments")
@require_auth
@require_admin
def list_assignments():
    page, limit = parse_pagination(request.args)
    return ok(delivery_service.list_assignments(
        page=page,
        limit=limit,
        status=request.args.get("status"),
        partner_id=request.args.get("partner_id"),
    ))


# =============================================================================
# ANALYTICS
# =============================================================================

def _analytics_args() -> dict:
    return {
        "period": request.args.get("period", "30d"),
        "partner_id": request.args.get("partner_id"),
        "area": request.args.get("area"),
    }


@admin_deliveries_bp.get("/deliveries/analytics")
@require_auth
@require_admin
def delivery_analytics():
    """Query: period (7d|30d|90d|1y), optional partner_id and area."""
    return ok(stats_service.delivery_analytics(**_analytics_args()))


@admin_deliveries_bp.get("/deliveries/analytics/export")
@require_auth
@require_admin
def export_delivery_analytics():
    args = _analytics_args()
    body = stats_service.delivery_analytics_csv(**args)
    filename = f"delivery-analytics-{args['period']}-{utcnow().date().isoformat()}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# BOOKING ASSIGNMENTS
# =============================================================================

@admin_deliveries_bp.post("/bookings/<int:booking_id>/assign-delivery")
@require_auth
@require_admin
def assign_delivery(booking_id: int):
    """Body: partner_id, scheduled_date?, scheduled_time?, priority?, notes?"""
    data = get_json_body(request)
    assignment = delivery_service.assign_delivery(
        booking_id,
        data.get("partner_id"),
        {k: v for k, v in data.items() if k != "partner_id"},
        actor_id=g.current_user.id,
    )
    return ok(assignment.to_dict(), message="Delivery assigned", status=201)


@admin_deliveries_bp.post("/bookings/<int:booking_id>/reassign-delivery")
@require_auth
@require_admin
def reassign_delivery(booking_id: int):
    data = get_json_body(request)
    assignment = delivery_service.reassign_delivery(
        booking_id,
        data.get("partner_id"),
        {k: v for k, v in data.items() if k != "partner_id"},
        actor_id=g.current_user.id,
    )
    return ok(assignment.to_dict(), message="Delivery reassigned")


@admin_deliveries_bp.get("/bookings/<int:booking_id>/delivery")
@require_auth
@require_admin
def get_delivery(booking_id: int):
    return ok(delivery_service.get_assignment(booking_id).to_dict())


@admin_deliveries_bp.put("/bookings/<int:booking_id>/delivery/status")
@require_auth
@require_admin
def update_delivery_status(booking_id: int):
    """Body: status, notes?"""
    data = get_json_body(request)
    assignment = delivery_service.update_delivery_status(
        booking_id,
        data.get("status"),
        data.get("notes"),
        actor_id=g.current_user.id,
    )
    return ok(assignment.to_dict(), message="Delivery status updated")
