# Overview: Flask API routes for customer payment actions.

# backend/gasbook/routes/payments.py
from flask import Blueprint, request, g

from ..decorators import rate_limit, require_auth
from ..errors import ok
from ..services import payment_service
from ..validation import get_json_body

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/upi/retry")
@require_auth
@rate_limit("payment-retry")
def retry_upi_payment():
    """
    Resubmit a UPI transaction id after the previous payment was rejected.

    Body: booking_id, upi_txn_id. Opens a new PENDING payment for admin review.
    """
    data = get_json_body(request)
    payment = payment_service.retry_payment(g.current_user, data.get("booking_id"), data.get("upi_txn_id"))
    return ok(payment.to_dict(), message="Payment resubmitted for review", status=201)
