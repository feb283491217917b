"""
Inventory ledger tests.

Verifies:
- Stock only moves through adjustments and never goes negative
- Sign rules per adjustment type
- Batches book a RECEIVE and report usage
- Reconciliation detects and fixes drift
"""

import pytest

from gasbook.errors import ConflictError, ValidationError
from gasbook.extensions import db
from gasbook.models import CylinderStock, StockAdjustment, StockReservation
from gasbook.services import booking_service, delivery_service, inventory_service

from conftest import envelope


def _total():
    return inventory_service.get_stock_locked(lock=False).total_available


class TestAdjustments:
    def test_receive_then_oversized_issue_is_rejected(self, client, db_session, admin_headers):
        resp = client.post(
            "/api/admin/inventory/adjustments",
            json={"delta": 50, "type": "RECEIVE", "reason": "Supplier delivery"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        data = envelope(resp)["data"]
        assert data["adjustment"]["balance_after"] == 50
        assert data["inventory"]["total_available"] == 50

        resp = client.post(
            "/api/admin/inventory/adjustments",
            json={"delta": -60, "type": "ISSUE", "reason": "Manual issue"},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        body = envelope(resp)
        assert body["error"] == "CONFLICT"
        assert body["message"] == "Insufficient stock"

        # Nothing written for the rejected adjustment
        assert _total() == 50
        assert db.session.query(StockAdjustment).count() == 1

    @pytest.mark.parametrize(
        "delta,adj_type",
        [
            (-5, "RECEIVE"),
            (5, "ISSUE"),
            (0, "CORRECTION"),
            (10, "TRANSFER"),
            (100001, "AUDIT"),
        ],
    )
    def test_sign_rules(self, db_session, admin, delta, adj_type):
        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(
                delta=delta, adjustment_type=adj_type, reason="Check", actor_id=admin.id
            )

    @pytest.mark.parametrize("adj_type,delta", [("DAMAGE", -3), ("AUDIT", 2), ("CORRECTION", -1)])
    def test_manual_types_accept_either_sign(self, stock, admin, adj_type, delta):
        adjustment = inventory_service.apply_adjustment(
            delta=delta, adjustment_type=adj_type, reason="Stock count", actor_id=admin.id
        )
        assert adjustment.balance_after == 100 + delta
        assert _total() == 100 + delta

    def test_reason_is_required(self, db_session, admin):
        with pytest.raises(ValidationError):
            inventory_service.apply_adjustment(delta=5, adjustment_type="RECEIVE", reason="", actor_id=admin.id)

    def test_list_adjustments_newest_first(self, client, stock, admin, admin_headers):
        inventory_service.apply_adjustment(delta=-2, adjustment_type="DAMAGE", reason="Leaking valve", actor_id=admin.id)

        resp = client.get("/api/admin/inventory/adjustments", headers=admin_headers)
        items = envelope(resp)["data"]
        assert [a["type"] for a in items] == ["DAMAGE", "RECEIVE"]

        resp = client.get("/api/admin/inventory/adjustments?type=receive", headers=admin_headers)
        assert [a["delta"] for a in envelope(resp)["data"]] == [100]

    def test_list_adjustments_limit_bounds(self, client, db_session, admin_headers):
        resp = client.get("/api/admin/inventory/adjustments?limit=0", headers=admin_headers)
        assert resp.status_code == 400


class TestReservations:
    def test_approve_issues_and_reserves(self, approved_booking):
        assert _total() == 98
        reservation = db.session.query(StockReservation).filter_by(booking_id=approved_booking.id).one()
        assert reservation.status == "RESERVED"
        assert reservation.quantity == 2

        issue = db.session.query(StockAdjustment).filter_by(booking_id=approved_booking.id).one()
        assert issue.type == "ISSUE"
        assert issue.delta == -2

    def test_cancel_releases_reservation(self, approved_booking, admin):
        booking_service.cancel_booking(approved_booking.id, "Customer moved away", admin)
        assert _total() == 100
        reservation = db.session.query(StockReservation).filter_by(booking_id=approved_booking.id).one()
        assert reservation.status == "RELEASED"

    def test_summary_reports_reserved_and_low_stock(self, client, approved_booking, admin_headers):
        resp = client.get("/api/admin/inventory", headers=admin_headers)
        data = envelope(resp)["data"]
        assert data["total_available"] == 98
        assert data["reserved"] == 2
        assert data["low_stock"] is False
        assert data["low_stock_threshold"] == 10

    def test_approval_without_stock_fails(self, make_booking, customer, admin):
        booking = make_booking(customer)
        with pytest.raises(ConflictError, match="Insufficient stock"):
            booking_service.approve_booking(booking.id, admin)
        assert db.session.query(StockReservation).count() == 0


class TestBatches:
    def test_create_batch_books_receive(self, client, db_session, admin_headers):
        resp = client.post(
            "/api/admin/inventory/batches",
            json={"supplier": "Bharat Gas Depot", "invoice_no": "INV-001", "quantity": 40},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        batch = envelope(resp)["data"]
        assert batch["status"] == "ACTIVE"
        assert _total() == 40

        receive = db.session.query(StockAdjustment).filter_by(batch_id=batch["id"]).one()
        assert receive.type == "RECEIVE"
        assert receive.delta == 40

    def test_batch_quantity_edit_writes_correction(self, db_session, admin):
        batch = inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 40}, actor_id=admin.id)
        inventory_service.update_batch(batch.id, {"quantity": 35}, actor_id=admin.id)
        assert _total() == 35

        usage = inventory_service.batch_usage(batch.id)
        assert usage["received"] == 40
        assert usage["by_type"]["CORRECTION"] == -5
        assert usage["net_remaining"] == 35

    def test_batch_usage_counts_damage(self, client, db_session, admin, admin_headers):
        batch = inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 20}, actor_id=admin.id)
        inventory_service.apply_adjustment(
            delta=-4, adjustment_type="DAMAGE", reason="Dented cylinders", batch_id=batch.id, actor_id=admin.id
        )

        resp = client.get(f"/api/admin/inventory/batches/{batch.id}", headers=admin_headers)
        data = envelope(resp)["data"]
        assert data["usage"]["by_type"]["DAMAGE"] == -4
        assert data["usage"]["net_remaining"] == 16

    def test_status_is_manual(self, db_session, admin):
        batch = inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 5}, actor_id=admin.id)
        updated = inventory_service.update_batch(batch.id, {"status": "depleted"}, actor_id=admin.id)
        assert updated.status == "DEPLETED"
        assert _total() == 5

    def test_unknown_batch_field_rejected(self, db_session, admin):
        batch = inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 5}, actor_id=admin.id)
        with pytest.raises(ValidationError):
            inventory_service.update_batch(batch.id, {"received_at": "2026-01-01T00:00:00Z"})

    def test_list_batches_by_status(self, client, db_session, admin, admin_headers):
        first = inventory_service.create_batch({"supplier": "Depot One", "quantity": 5}, actor_id=admin.id)
        inventory_service.create_batch({"supplier": "Depot Two", "quantity": 5}, actor_id=admin.id)
        inventory_service.update_batch(first.id, {"status": "EXPIRED"})

        resp = client.get("/api/admin/inventory/batches?status=EXPIRED", headers=admin_headers)
        assert [b["supplier"] for b in envelope(resp)["data"]] == ["Depot One"]


class TestReconcile:
    def test_consistent_ledger(self, client, stock, admin_headers):
        resp = client.post("/api/admin/inventory/reconcile", json={}, headers=admin_headers)
        data = envelope(resp)["data"]
        assert data["consistent"] is True
        assert data["ledger_total"] == 100

    def test_drift_is_detected_then_fixed(self, stock):
        row = db.session.get(CylinderStock, stock.id)
        row.total_available = 90
        db.session.commit()

        report = inventory_service.reconcile_stock()
        assert report["drift"] == -10
        assert report["fixed"] is False
        assert _total() == 90

        report = inventory_service.reconcile_stock(fix=True)
        assert report["fixed"] is True
        assert _total() == 100

    def test_ledger_matches_total_through_lifecycle(self, make_booking, customer, partner, admin, stock):
        def assert_balanced():
            assert inventory_service.ledger_total() == _total()

        assert_balanced()

        cancelled = booking_service.approve_booking(make_booking(customer, quantity=2).id, admin)
        assert_balanced()
        booking_service.cancel_booking(cancelled.id, "Customer changed plans", admin)
        assert_balanced()
        assert _total() == 100

        delivered = booking_service.approve_booking(make_booking(customer, quantity=3).id, admin)
        delivery_service.assign_delivery(delivered.id, partner.id, actor_id=admin.id)
        assert_balanced()
        delivery_service.update_delivery_status(delivered.id, "DELIVERED", actor_id=admin.id)
        assert_balanced()
        assert _total() == 97

        batch = inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 40}, actor_id=admin.id)
        assert_balanced()
        inventory_service.update_batch(batch.id, {"quantity": 32}, actor_id=admin.id)
        assert_balanced()
        assert _total() == 129

        inventory_service.apply_adjustment(
            delta=-4, adjustment_type="DAMAGE", reason="Leaking valves", actor_id=admin.id
        )
        assert_balanced()
        assert _total() == 125
        assert inventory_service.reconcile_stock()["consistent"] is True
