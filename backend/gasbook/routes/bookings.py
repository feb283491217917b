# Overview: Flask API routes for customer bookings; create, list, view, cancel and track.

# backend/gasbook/routes/bookings.py
"""
Customer booking routes.

SECURITY: Every route requires authentication. A booking that belongs to
someone else answers 404, never 403, so ids cannot be enumerated.
"""

from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import ok
from ..services import booking_service
from ..validation import get_json_body, parse_pagination

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")

DEFAULT_CUSTOMER_CANCEL_REASON = "Cancelled by customer"


@bookings_bp.post("")
@require_auth
def create_booking_route():
    """
    Book cylinders.

    Body: quantity, payment_method (COD|UPI), optional receiver_name,
    receiver_phone (both default to the profile), expected_date, notes
    and upi_txn_id (UPI only; can also be confirmed later by an admin).
    """
    booking = booking_service.create_booking(g.current_user, get_json_body(request))
    return ok(booking.to_dict(), message="Booking created", status=201)


@bookings_bp.get("")
@require_auth
def list_bookings_route():
    page, limit = parse_pagination(request.args)
    result = booking_service.list_bookings(
        user=g.current_user,
        page=page,
        limit=limit,
        status=request.args.get("status"),
        payment_method=request.args.get("payment_method"),
        search=request.args.get("search"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
    )
    return ok(result)


@bookings_bp.get("/<int:booking_id>")
@require_auth
def get_booking_route(booking_id: int):
    booking = booking_service.get_booking_for(g.current_user, booking_id)
    return ok(booking.to_dict())


@bookings_bp.post("/<int:booking_id>/cancel")
@require_auth
def cancel_booking_route(booking_id: int):
    """Customers may cancel their own PENDING bookings only."""
    data = get_json_body(request)
    reason = data.get("reason") or DEFAULT_CUSTOMER_CANCEL_REASON
    booking = booking_service.cancel_booking(booking_id, reason, g.current_user, by_customer=True)
    return ok(booking.to_dict(), message="Booking cancelled")


@bookings_bp.get("/track/<int:booking_id>")
@require_auth
def track_booking_route(booking_id: int):
    return ok(booking_service.track_booking(g.current_user, booking_id))
