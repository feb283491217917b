"""
CSRF protection tests.

Verifies:
- Tokens are issued by GET /api/csrf-token and expire after their TTL
- State-changing /api requests need a live X-CSRF-Token when enabled
- Safe methods and OPTIONS preflights are exempt
"""

import pytest

from gasbook.services.csrf_service import CsrfProtection, MemoryTokenStore, TokenStore, build_token_store

from conftest import envelope


class FakeClock:
    def __init__(self, now=5_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestCsrfProtection:
    def test_issue_and_validate(self):
        protection = CsrfProtection(MemoryTokenStore(), ttl_seconds=60)
        token = protection.issue()
        assert len(token) >= 32
        assert protection.validate(token)
        assert not protection.validate("x" * 43)
        assert not protection.validate(None)
        assert not protection.validate("short")

    def test_tokens_expire(self):
        clock = FakeClock()
        protection = CsrfProtection(MemoryTokenStore(clock=clock), ttl_seconds=60)
        token = protection.issue()
        clock.now += 61
        assert not protection.validate(token)

    def test_sweep(self):
        clock = FakeClock()
        store = MemoryTokenStore(clock=clock)
        store.put("a" * 43, 10)
        store.put("b" * 43, 1000)
        clock.now += 20
        assert store.sweep() == 1
        assert store.contains("b" * 43)

    def test_build_store(self):
        assert isinstance(build_token_store("memory://"), MemoryTokenStore)
        with pytest.raises(ValueError):
            build_token_store("ftp://example.com")

    def test_interface_is_abstract(self):
        with pytest.raises(TypeError):
            TokenStore()


class TestCsrfGuard:
    @pytest.fixture(autouse=True)
    def enable_csrf(self, app, db_session):
        app.config["CSRF_ENABLED"] = True

    def test_post_without_token_is_403(self, client, customer_headers):
        resp = client.post("/api/bookings", json={"quantity": 1, "payment_method": "COD"}, headers=customer_headers)
        assert resp.status_code == 403
        assert envelope(resp)["error"] == "AUTHORIZATION_ERROR"

    def test_post_with_token(self, client, customer_headers, stock):
        token = envelope(client.get("/api/csrf-token"))["data"]["csrf_token"]
        resp = client.post(
            "/api/bookings",
            json={"quantity": 1, "payment_method": "COD"},
            headers={**customer_headers, "X-CSRF-Token": token},
        )
        assert resp.status_code == 201

    def test_get_is_exempt(self, client, customer_headers):
        assert client.get("/api/bookings", headers=customer_headers).status_code == 200

    def test_options_is_exempt(self, client):
        resp = client.options("/api/bookings")
        assert resp.status_code != 403

    def test_token_endpoint_shape(self, client):
        data = envelope(client.get("/api/csrf-token"))["data"]
        assert data["header"] == "X-CSRF-Token"
