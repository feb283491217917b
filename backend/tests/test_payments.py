"""
Payment tests.

Verifies:
- A UPI booking cannot be approved until its latest payment is SUCCESS
- Confirm / reject review flow and the customer retry after a rejection
- Transaction ids are never reused
- COD delivery settles the pending payment; COD edits by admins
"""

import pytest

from gasbook.errors import ConflictError, ValidationError
from gasbook.extensions import db, outbox
from gasbook.models import Booking, BookingEvent, Payment
from gasbook.services import booking_service, delivery_service, payment_service

from conftest import envelope


@pytest.fixture
def upi_booking(make_booking, customer, stock):
    return make_booking(customer, quantity=2, payment_method="UPI", upi_txn_id="ABC123XYZ")


def _latest_payment(booking_id):
    return db.session.query(Payment).filter_by(booking_id=booking_id).order_by(Payment.id.desc()).first()


class TestUpiApprovalGate:
    def test_pending_upi_blocks_approval(self, client, upi_booking, admin_headers):
        resp = client.put(
            f"/api/admin/bookings/{upi_booking.id}/status",
            json={"status": "APPROVED"},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        body = envelope(resp)
        assert body["message"] == "UPI payment pending"
        assert db.session.get(Booking, upi_booking.id).status == "PENDING"

    def test_confirm_then_approve(self, client, upi_booking, admin_headers):
        payment = _latest_payment(upi_booking.id)

        resp = client.post(
            f"/api/admin/bookings/review-payments/{payment.id}/confirm",
            json={"upi_txn_id": "ABC123XYZ"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert envelope(resp)["data"]["status"] == "SUCCESS"
        # confirming does not approve
        assert db.session.get(Booking, upi_booking.id).status == "PENDING"

        resp = client.put(
            f"/api/admin/bookings/{upi_booking.id}/status",
            json={"status": "APPROVED"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert envelope(resp)["data"]["status"] == "APPROVED"

        events = db.session.query(BookingEvent).filter_by(booking_id=upi_booking.id).order_by(BookingEvent.id).all()
        assert events[-1].status == "APPROVED"
        assert events[-1].title == "Booking Approved"

    def test_rejected_payment_blocks_approval(self, upi_booking, admin):
        payment = _latest_payment(upi_booking.id)
        payment_service.reject_payment(payment.id, "Transaction not found in bank statement", admin)
        with pytest.raises(ConflictError, match="UPI payment pending"):
            booking_service.approve_booking(upi_booking.id, admin)


class TestReview:
    def test_review_queue_lists_pending_upi(self, client, upi_booking, make_booking, customer, admin_headers):
        make_booking(customer, payment_method="COD")
        resp = client.get("/api/admin/bookings/review-payments", headers=admin_headers)
        items = envelope(resp)["data"]
        assert len(items) == 1
        assert items[0]["booking"]["id"] == upi_booking.id

    def test_reject_requires_reason(self, upi_booking, admin):
        payment = _latest_payment(upi_booking.id)
        with pytest.raises(ValidationError):
            payment_service.reject_payment(payment.id, "too short", admin)

    def test_reject_emails_customer(self, upi_booking, admin, customer):
        payment = _latest_payment(upi_booking.id)
        outbox.clear()
        payment_service.reject_payment(payment.id, "Amount received does not match", admin)
        assert outbox.sent[-1].to == customer.email
        assert "Amount received does not match" in outbox.sent[-1].text

    def test_reject_without_email(self, upi_booking, admin):
        payment = _latest_payment(upi_booking.id)
        outbox.clear()
        payment_service.reject_payment(payment.id, "Amount received does not match", admin, send_email=False)
        assert outbox.sent == []

    def test_review_twice_is_conflict(self, upi_booking, admin):
        payment = _latest_payment(upi_booking.id)
        payment_service.confirm_payment(payment.id, "ABC123XYZ", admin)
        with pytest.raises(ConflictError):
            payment_service.reject_payment(payment.id, "Changed our mind on this", admin)

    def test_cod_payments_cannot_be_reviewed(self, make_booking, customer, admin):
        booking = make_booking(customer)
        payment = _latest_payment(booking.id)
        with pytest.raises(ValidationError):
            payment_service.confirm_payment(payment.id, "ABC123XYZ", admin)


class TestRetry:
    def test_retry_after_rejection(self, client, upi_booking, admin, customer_headers):
        first = _latest_payment(upi_booking.id)
        payment_service.reject_payment(first.id, "Transaction not found in bank statement", admin)

        resp = client.post(
            "/api/payments/upi/retry",
            json={"booking_id": upi_booking.id, "upi_txn_id": "RETRY98765"},
            headers=customer_headers,
        )
        assert resp.status_code == 201
        data = envelope(resp)["data"]
        assert data["status"] == "PENDING"
        assert data["retry_of_id"] == first.id
        assert data["amount"] == 2200

        # Confirm the retry, then approval goes through
        payment_service.confirm_payment(data["id"], "RETRY98765", admin)
        booking = booking_service.approve_booking(upi_booking.id, admin)
        assert booking.status == "APPROVED"

    def test_retry_while_pending_is_conflict(self, upi_booking, customer):
        with pytest.raises(ConflictError):
            payment_service.retry_payment(customer, upi_booking.id, "RETRY98765")

    def test_retry_cannot_reuse_live_txn_id(self, upi_booking, make_booking, other_customer, admin, customer):
        make_booking(other_customer, payment_method="UPI", upi_txn_id="LIVE11111")
        first = _latest_payment(upi_booking.id)
        payment_service.reject_payment(first.id, "Transaction not found in bank statement", admin)

        with pytest.raises(ConflictError, match="already been used"):
            payment_service.retry_payment(customer, upi_booking.id, "LIVE11111")

    def test_retry_may_resubmit_rejected_txn_id(self, upi_booking, admin, customer):
        first = _latest_payment(upi_booking.id)
        payment_service.reject_payment(first.id, "Transaction not found in bank statement", admin)
        retry = payment_service.retry_payment(customer, upi_booking.id, "ABC123XYZ")
        assert retry.status == "PENDING"

    def test_retry_on_someone_elses_booking(self, client, upi_booking, admin, other_headers):
        first = _latest_payment(upi_booking.id)
        payment_service.reject_payment(first.id, "Transaction not found in bank statement", admin)
        resp = client.post(
            "/api/payments/upi/retry",
            json={"booking_id": upi_booking.id, "upi_txn_id": "RETRY98765"},
            headers=other_headers,
        )
        assert resp.status_code == 404


class TestCodPayments:
    def test_delivery_settles_cod(self, approved_booking, partner, admin):
        delivery_service.assign_delivery(approved_booking.id, partner.id, actor_id=admin.id)
        delivery_service.update_delivery_status(approved_booking.id, "DELIVERED", actor_id=admin.id)

        payment = _latest_payment(approved_booking.id)
        assert payment.status == "SUCCESS"
        assert db.session.get(Booking, approved_booking.id).status == "DELIVERED"

    def test_admin_edits_cod_amount(self, client, make_booking, customer, admin_headers):
        booking = make_booking(customer)
        resp = client.put(
            f"/api/admin/bookings/{booking.id}/payments",
            json={"amount": 1050},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert envelope(resp)["data"]["amount"] == 1050

        resp = client.get(f"/api/admin/bookings/{booking.id}/payments", headers=admin_headers)
        assert [p["amount"] for p in envelope(resp)["data"]] == [1050]

    def test_cod_edit_rejects_upi_booking(self, upi_booking, admin):
        with pytest.raises(ValidationError):
            payment_service.update_cod_payment(upi_booking.id, {"amount": 100}, admin)

    def test_cod_edit_rejected_after_cancel(self, make_booking, customer, admin):
        booking = make_booking(customer)
        booking_service.cancel_booking(booking.id, "Customer moved away", admin)

        with pytest.raises(ConflictError):
            payment_service.update_cod_payment(booking.id, {"status": "PENDING"}, admin)

        assert _latest_payment(booking.id).status == "CANCELLED"
        titles = [e.title for e in db.session.query(BookingEvent).filter_by(booking_id=booking.id)]
        assert "Payment Updated" not in titles

    def test_cod_edit_rejected_after_delivery(self, approved_booking, partner, admin):
        delivery_service.assign_delivery(approved_booking.id, partner.id, actor_id=admin.id)
        delivery_service.update_delivery_status(approved_booking.id, "DELIVERED", actor_id=admin.id)

        with pytest.raises(ConflictError):
            payment_service.update_cod_payment(approved_booking.id, {"amount": 1}, admin)
        assert _latest_payment(approved_booking.id).status == "SUCCESS"
