"""
Bulk booking action tests.

Verifies:
- Each id is processed independently; failures become skip entries
- Ids are validated, de-duplicated and capped
- Assign-delivery in bulk leaves bookings APPROVED
"""

import pytest

from gasbook.errors import ValidationError
from gasbook.extensions import db
from gasbook.models import Booking, User
from gasbook.services import booking_service, bulk_service, delivery_service, inventory_service

from conftest import envelope


@pytest.fixture
def five_bookings(make_booking, customer, stock):
    return [make_booking(customer) for _ in range(5)]


def _deliver(booking_id, partner, admin):
    booking_service.approve_booking(booking_id, admin)
    delivery_service.assign_delivery(booking_id, partner.id, actor_id=admin.id)
    delivery_service.update_delivery_status(booking_id, "DELIVERED", actor_id=admin.id)


class TestBulkCancel:
    def test_delivered_booking_is_skipped(self, client, five_bookings, partner, admin, admin_headers, customer):
        ids = [b.id for b in five_bookings]
        delivered_id = ids[2]
        _deliver(delivered_id, partner, admin)

        resp = client.post(
            "/api/admin/bookings/bulk-action",
            json={"action": "cancel", "booking_ids": ids, "data": {"reason": "Agency closed for audit"}},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        data = envelope(resp)["data"]
        assert data["action"] == "cancel"
        assert data["updated_count"] == 4
        assert data["updated_ids"] == [i for i in ids if i != delivered_id]
        assert data["skipped"] == [
            {"booking_id": delivered_id, "reason": "delivered bookings cannot be cancelled"}
        ]

        assert db.session.get(Booking, delivered_id).status == "DELIVERED"
        # Four cylinders returned to the customer's quota
        assert db.session.get(User, customer.id).remaining_quota == 12 - 1

    def test_reason_at_top_level(self, five_bookings, admin):
        ids = [b.id for b in five_bookings[:2]]
        result = bulk_service.run_bulk_action("cancel", ids, {"reason": "Customer request"}, admin)
        assert result["updated_count"] == 2

    def test_cancel_requires_reason(self, five_bookings, admin):
        with pytest.raises(ValidationError):
            bulk_service.run_bulk_action("cancel", [five_bookings[0].id], {}, admin)


class TestBulkApprove:
    def test_approve_skips_missing_and_upi_pending(self, make_booking, customer, stock, admin):
        cod = make_booking(customer)
        upi = make_booking(customer, payment_method="UPI", upi_txn_id="UPI123456")

        result = bulk_service.run_bulk_action("approve", [cod.id, upi.id, 99999], None, admin)
        assert result["updated_ids"] == [cod.id]
        reasons = {s["booking_id"]: s["reason"] for s in result["skipped"]}
        assert reasons[upi.id] == "UPI payment pending"
        assert reasons[99999] == "Booking not found"

    def test_approve_stops_at_stock_per_item(self, make_booking, customer, admin):
        inventory_service.apply_adjustment(delta=1, adjustment_type="RECEIVE", reason="Small delivery", actor_id=admin.id)
        first = make_booking(customer)
        second = make_booking(customer)

        result = bulk_service.run_bulk_action("approve", [first.id, second.id], None, admin)
        assert result["updated_ids"] == [first.id]
        assert result["skipped"][0]["reason"] == "Insufficient stock"
        assert db.session.get(Booking, second.id).status == "PENDING"


class TestBulkAssign:
    def test_assign_leaves_bookings_approved(self, client, five_bookings, partner, admin, admin_headers):
        ids = [b.id for b in five_bookings[:3]]
        for booking_id in ids[:2]:
            booking_service.approve_booking(booking_id, admin)

        resp = client.post(
            "/api/admin/bookings/bulk-action",
            json={"action": "assign-delivery", "booking_ids": ids, "partner_id": partner.id, "priority": "urgent"},
            headers=admin_headers,
        )
        data = envelope(resp)["data"]
        assert data["updated_ids"] == ids[:2]
        assert data["skipped"][0]["booking_id"] == ids[2]
        for booking_id in ids[:2]:
            booking = db.session.get(Booking, booking_id)
            assert booking.status == "APPROVED"
            assert booking.assignment.priority == "urgent"

    def test_assign_requires_partner(self, five_bookings, admin):
        with pytest.raises(ValidationError, match="partner_id"):
            bulk_service.run_bulk_action("assign-delivery", [five_bookings[0].id], {}, admin)


class TestIds:
    def test_duplicates_are_collapsed(self):
        assert bulk_service.normalize_ids([3, "3", 1, 3]) == [3, 1]

    @pytest.mark.parametrize("raw", [[], None, "1,2", [0], [-4], ["abc"]])
    def test_invalid_ids(self, raw):
        with pytest.raises(ValidationError):
            bulk_service.normalize_ids(raw)

    def test_cap(self):
        with pytest.raises(ValidationError):
            bulk_service.normalize_ids(list(range(1, bulk_service.MAX_BULK_IDS + 2)))
        assert len(bulk_service.normalize_ids(list(range(1, bulk_service.MAX_BULK_IDS + 1)))) == 100

    def test_unknown_action(self, client, db_session, admin_headers):
        resp = client.post(
            "/api/admin/bookings/bulk-action",
            json={"action": "delete", "booking_ids": [1]},
            headers=admin_headers,
        )
        assert resp.status_code == 400
