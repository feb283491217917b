# Overview: Flask API routes for admin booking management; lifecycle, payments, bulk actions and reports.

# backend/gasbook/routes/admin_bookings.py
"""
Admin booking routes.

SECURITY: Every route requires an authenticated ADMIN.

Lifecycle writes go through booking_service, which locks the booking row,
checks the transition table and applies quota/stock/payment side effects in
one transaction. Emails are queued only after commit.
"""

from flask import Blueprint, Response, request, g

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import booking_service, bulk_service, payment_service, stats_service
from ..time_utils import utcnow
from ..validation import get_json_body, parse_pagination

admin_bookings_bp = Blueprint("admin_bookings", __name__, url_prefix="/api/admin/bookings")

BULK_RESERVED_KEYS = ("action", "booking_ids")


@admin_bookings_bp.get("")
@require_auth
@require_admin
def list_bookings():
    """
    Query params: page, limit, status, payment_method, search, date_from, date_to.
    """
    page, limit = parse_pagination(request.args)
    result = booking_service.list_bookings(
        page=page,
        limit=limit,
        status=request.args.get("status"),
        payment_method=request.args.get("payment_method"),
        search=request.args.get("search"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
    )
    return ok(result)


@admin_bookings_bp.post("")
@require_auth
@require_admin
def create_booking():
    """Book on behalf of a customer. Body: user_id (customer's numeric id) plus booking fields."""
    data = get_json_body(request)
    booking = booking_service.create_booking_for_user(
        g.current_user,
        data.get("user_id"),
        {k: v for k, v in data.items() if k != "user_id"},
    )
    return ok(booking.to_dict(), message="Booking created", status=201)


@admin_bookings_bp.get("/<int:booking_id>")
@require_auth
@require_admin
def get_booking(booking_id: int):
    booking = booking_service.get_booking(booking_id)
    data = booking.to_dict()
    data["delivery"] = booking.assignment.to_dict() if booking.assignment else None
    return ok(data)


@admin_bookings_bp.put("/<int:booking_id>")
@require_auth
@require_admin
def update_booking(booking_id: int):
    booking = booking_service.update_booking(booking_id, get_json_body(request), g.current_user)
    return ok(booking.to_dict(), message="Booking updated")


@admin_bookings_bp.put("/<int:booking_id>/status")
@require_auth
@require_admin
def update_status(booking_id: int):
    """
    Direct status change. Body: status (APPROVED|DELIVERED|CANCELLED), reason.

    OUT_FOR_DELIVERY is driven by the delivery-status endpoint instead.
    """
    data = get_json_body(request)
    booking = booking_service.change_status(booking_id, data.get("status"), g.current_user, reason=data.get("reason"))
    return ok(booking.to_dict(), message=f"Booking {booking.status.lower().replace('_', ' ')}")


@admin_bookings_bp.get("/<int:booking_id>/events")
@require_auth
@require_admin
def list_events(booking_id: int):
    booking = booking_service.get_booking(booking_id)
    return ok(booking_service.list_events(booking))


@admin_bookings_bp.get("/<int:booking_id>/payments")
@require_auth
@require_admin
def list_payments(booking_id: int):
    return ok([p.to_dict() for p in payment_service.list_payments(booking_id)])


@admin_bookings_bp.put("/<int:booking_id>/payments")
@require_auth
@require_admin
def update_cod_payment(booking_id: int):
    """Edit the amount or status of a COD payment. Body: amount?, status?"""
    payment = payment_service.update_cod_payment(booking_id, get_json_body(request), g.current_user)
    return ok(payment.to_dict(), message="Payment updated")


@admin_bookings_bp.post("/<int:booking_id>/send-email")
@require_auth
@require_admin
def send_email(booking_id: int):
    queued = booking_service.send_booking_email(booking_id, get_json_body(request))
    return ok({"queued": queued}, message="Email queued" if queued else "Email could not be queued")


@admin_bookings_bp.post("/bulk-action")
@require_auth
@require_admin
def bulk_action():
    """
    Body: action (approve|cancel|assign-delivery), booking_ids (1..100),
    plus the action's fields either under `data` or at the top level
    (reason for cancel; partner_id and optional schedule for assign-delivery).

    Ids that fail their preconditions are reported under `skipped`.
    """
    payload = get_json_body(request)
    data = payload.get("data")
    if data is None:
        data = {k: v for k, v in payload.items() if k not in BULK_RESERVED_KEYS}
    result = bulk_service.run_bulk_action(payload.get("action"), payload.get("booking_ids"), data, g.current_user)
    return ok(result, message=f"{result['updated_count']} booking(s) updated")


@admin_bookings_bp.get("/review-payments")
@require_auth
@require_admin
def review_payments():
    return ok(payment_service.list_pending_upi_reviews())


@admin_bookings_bp.post("/review-payments/<int:payment_id>/confirm")
@require_auth
@require_admin
def confirm_payment(payment_id: int):
    """Body: upi_txn_id (the verified transaction id), send_email (default true)."""
    data = get_json_body(request)
    payment = payment_service.confirm_payment(
        payment_id,
        data.get("upi_txn_id"),
        g.current_user,
        send_email=bool(data.get("send_email", True)),
    )
    return ok(payment.to_dict(), message="Payment confirmed")


@admin_bookings_bp.post("/review-payments/<int:payment_id>/reject")
@require_auth
@require_admin
def reject_payment(payment_id: int):
    """Body: reason (at least 10 characters), send_email (default true)."""
    data = get_json_body(request)
    payment = payment_service.reject_payment(
        payment_id,
        data.get("reason"),
        g.current_user,
        send_email=bool(data.get("send_email", True)),
    )
    return ok(payment.to_dict(), message="Payment rejected")


@admin_bookings_bp.get("/stats")
@require_auth
@require_admin
def stats():
    return ok(stats_service.booking_stats())


@admin_bookings_bp.get("/analytics")
@require_auth
@require_admin
def analytics():
    return ok(stats_service.booking_analytics(request.args.get("days", 30)))


@admin_bookings_bp.get("/analytics/export")
@require_auth
@require_admin
def export_analytics():
    days = request.args.get("days", 30)
    body = stats_service.analytics_csv(days)
    filename = f"booking-analytics-{utcnow().date().isoformat()}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
