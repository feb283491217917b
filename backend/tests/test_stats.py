"""
Reporting and system endpoint tests.

Verifies:
- Booking stats, daily analytics and the CSV export
- The admin dashboard aggregates every section
- Health check, CSRF token endpoint and security headers
"""

import csv
import io

import pytest

from gasbook.errors import ValidationError
from gasbook.services import booking_service, delivery_service, inventory_service, stats_service
from gasbook.time_utils import utcnow

from conftest import envelope


@pytest.fixture
def delivered_booking(approved_booking, partner, admin):
    delivery_service.assign_delivery(approved_booking.id, partner.id, actor_id=admin.id)
    delivery_service.update_delivery_status(approved_booking.id, "DELIVERED", actor_id=admin.id)
    return approved_booking


class TestBookingStats:
    def test_counts_and_revenue(self, client, delivered_booking, make_booking, customer, admin, admin_headers):
        cancelled = make_booking(customer)
        booking_service.cancel_booking(cancelled.id, "Changed plans", admin)
        make_booking(customer, payment_method="UPI", upi_txn_id="STAT123456")

        resp = client.get("/api/admin/bookings/stats", headers=admin_headers)
        stats = envelope(resp)["data"]
        assert stats["total"] == 3
        assert stats["by_status"]["DELIVERED"] == 1
        assert stats["by_status"]["CANCELLED"] == 1
        assert stats["by_status"]["PENDING"] == 1
        assert stats["by_payment_method"] == {"COD": 2, "UPI": 1}
        assert stats["pending_upi_reviews"] == 1
        assert stats["revenue"] == 2200
        assert stats["created_today"] == 3


class TestAnalytics:
    def test_daily_rows(self, client, delivered_booking, admin_headers):
        resp = client.get("/api/admin/bookings/analytics?days=7", headers=admin_headers)
        data = envelope(resp)["data"]
        assert data["days"] == 7
        assert len(data["rows"]) == 7

        today = data["rows"][-1]
        assert today["date"] == utcnow().date().isoformat()
        assert today["created"] == 1
        assert today["delivered"] == 1
        assert today["cylinders_delivered"] == 2
        assert today["revenue"] == 2200
        assert data["totals"]["revenue"] == 2200

    @pytest.mark.parametrize("days", [0, 366, "week"])
    def test_days_bounds(self, db_session, days):
        with pytest.raises(ValidationError):
            stats_service.booking_analytics(days)

    def test_csv_export(self, client, delivered_booking, admin_headers):
        resp = client.get("/api/admin/bookings/analytics/export?days=3", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert "attachment;" in resp.headers["Content-Disposition"]

        rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
        assert len(rows) == 3
        assert list(rows[0].keys()) == list(stats_service.CSV_COLUMNS)
        assert rows[-1]["revenue"] == "2200"


class TestDashboard:
    def test_sections(self, client, approved_booking, admin_headers):
        resp = client.get("/api/admin/dashboard", headers=admin_headers)
        data = envelope(resp)["data"]
        assert set(data) == {"bookings", "inventory", "deliveries", "contacts", "users"}
        assert data["inventory"]["total_available"] == 98
        assert data["bookings"]["by_status"]["APPROVED"] == 1

    def test_customer_forbidden(self, client, customer_headers):
        assert client.get("/api/admin/dashboard", headers=customer_headers).status_code == 403


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = envelope(resp)["data"]
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"

    def test_security_headers(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_cors_allowed_origin(self, client, db_session):
        resp = client.get("/api/settings", headers={"Origin": "http://localhost:3000"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

        resp = client.get("/api/settings", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_unknown_route_uses_envelope(self, client, db_session):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert envelope(resp)["success"] is False


@pytest.fixture
def mixed_deliveries(delivered_booking, make_booking, customer, admin):
    """One delivered booking (Suresh, no area) and one failed (Imran, Nashik Road)."""
    backup = delivery_service.create_partner(
        {"name": "Imran Shaikh", "phone": "9000011111", "service_area": "Nashik Road"}
    )
    failed = booking_service.approve_booking(make_booking(customer).id, admin)
    delivery_service.assign_delivery(failed.id, backup.id, actor_id=admin.id)
    delivery_service.update_delivery_status(failed.id, "FAILED", "Address locked", actor_id=admin.id)
    return delivered_booking, backup


class TestDeliveryAnalytics:
    def test_overview_and_breakdowns(self, client, mixed_deliveries, partner, admin_headers):
        _, backup = mixed_deliveries
        resp = client.get("/api/admin/deliveries/analytics?period=7d", headers=admin_headers)
        data = envelope(resp)["data"]

        overview = data["overview"]
        assert overview["total"] == 2
        assert overview["completed"] == 1
        assert overview["failed"] == 1
        assert overview["in_progress"] == 0
        assert overview["success_rate"] == 50
        assert overview["partners_total"] == 2

        assert [p["partner_id"] for p in data["partner_performance"]] == [partner.id, backup.id]
        assert data["partner_performance"][0]["success_rate"] == 100
        assert [a["area"] for a in data["area_stats"]] == ["Unassigned", "Nashik Road"]

        assert len(data["time_series"]) == 7
        today = data["time_series"][-1]
        assert today["date"] == utcnow().date().isoformat()
        assert (today["assigned"], today["delivered"], today["failed"]) == (2, 1, 1)

    def test_filters(self, mixed_deliveries, partner):
        _, backup = mixed_deliveries
        by_area = stats_service.delivery_analytics("30d", area="Nashik Road")
        assert by_area["overview"]["total"] == 1
        assert by_area["overview"]["success_rate"] == 0
        assert by_area["filters"] == {"partner_id": None, "area": "Nashik Road"}

        by_partner = stats_service.delivery_analytics("30d", partner_id=str(partner.id))
        assert by_partner["overview"]["completed"] == 1
        assert [p["partner_id"] for p in by_partner["partner_performance"]] == [partner.id]

    @pytest.mark.parametrize("period", ["2w", "365"])
    def test_unknown_period(self, db_session, period):
        with pytest.raises(ValidationError):
            stats_service.delivery_analytics(period)

    def test_csv_export(self, client, mixed_deliveries, admin_headers):
        resp = client.get("/api/admin/deliveries/analytics/export?period=30d", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert "delivery-analytics-30d" in resp.headers["Content-Disposition"]

        rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
        assert list(rows[0].keys()) == list(stats_service.DELIVERY_CSV_COLUMNS)
        assert len(rows) == 3
        assert rows[-1]["partner_name"] == "All partners"
        assert rows[-1]["total"] == "2"
        assert rows[-1]["success_rate"] == "50"


class TestInventoryAnalytics:
    def test_totals_and_activity(self, client, approved_booking, admin, admin_headers):
        inventory_service.create_batch({"supplier": "Bharat Gas Depot", "quantity": 40}, actor_id=admin.id)
        inventory_service.apply_adjustment(
            delta=-3, adjustment_type="DAMAGE", reason="Dented cylinders", actor_id=admin.id
        )

        resp = client.get("/api/admin/inventory/analytics", headers=admin_headers)
        data = envelope(resp)["data"]
        assert data["current_stock"] == 135
        assert data["reserved"] == 2
        assert data["total_received"] == 140
        assert data["total_issued"] == 5
        assert data["by_type"]["RECEIVE"] == {"total_delta": 140, "count": 2}
        assert data["by_type"]["ISSUE"] == {"total_delta": -2, "count": 1}
        assert data["by_type"]["CORRECTION"] == {"total_delta": 0, "count": 0}

        active = next(b for b in data["batch_stats"] if b["status"] == "ACTIVE")
        assert active == {"status": "ACTIVE", "count": 1, "total_quantity": 40}

        assert len(data["recent_activity"]) == 4
        assert data["recent_activity"][0]["type"] == "DAMAGE"
