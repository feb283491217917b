"""
Rate limiting tests.

Verifies:
- Fixed windows open on the first hit and reset after window_seconds
- Over the limit -> 429 RATE_LIMIT_EXCEEDED with Retry-After
- Limits are keyed per policy and per client IP
"""

import pytest
from flask import request

from gasbook.services.rate_limit_service import (
    CounterStore,
    MemoryCounterStore,
    RateLimiter,
    RateLimitPolicy,
    build_counter_store,
    client_identifier,
)

from conftest import envelope


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    policies = {"tight": RateLimitPolicy("tight", 3, 60)}
    return RateLimiter(MemoryCounterStore(clock=clock), policies, clock=clock)


class TestRateLimiter:
    def test_allows_up_to_limit(self, limiter):
        results = [limiter.check("tight", "1.2.3.4") for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    def test_retry_after_counts_down(self, limiter, clock):
        for _ in range(3):
            limiter.check("tight", "1.2.3.4")
        clock.now += 45
        result = limiter.check("tight", "1.2.3.4")
        assert not result.allowed
        assert result.retry_after == 15

    def test_window_resets(self, limiter, clock):
        for _ in range(4):
            limiter.check("tight", "1.2.3.4")
        clock.now += 60
        assert limiter.check("tight", "1.2.3.4").allowed

    def test_clients_are_independent(self, limiter):
        for _ in range(4):
            limiter.check("tight", "1.2.3.4")
        assert limiter.check("tight", "5.6.7.8").allowed

    def test_unknown_policy(self, limiter):
        with pytest.raises(KeyError):
            limiter.check("nope", "1.2.3.4")


class TestMemoryCounterStore:
    def test_sweep_drops_expired_windows(self, clock):
        store = MemoryCounterStore(clock=clock)
        store.hit("a", 10)
        store.hit("b", 100)
        clock.now += 50
        assert store.sweep() == 1
        assert len(store) == 1

    def test_reset_single_key(self, clock):
        store = MemoryCounterStore(clock=clock)
        store.hit("a", 10)
        store.hit("b", 10)
        store.reset("a")
        assert store.hit("a", 10)[0] == 1
        assert store.hit("b", 10)[0] == 2

    def test_build_store(self):
        assert isinstance(build_counter_store("memory://"), MemoryCounterStore)
        assert isinstance(build_counter_store(None), MemoryCounterStore)
        with pytest.raises(ValueError):
            build_counter_store("memcached://localhost")

    def test_interface_is_abstract(self):
        with pytest.raises(TypeError):
            CounterStore()


class TestClientIdentifier:
    def test_forwarded_for_first_hop(self, app):
        with app.test_request_context(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}):
            assert client_identifier(request) == "203.0.113.7"

    def test_real_ip_then_remote_addr(self, app):
        with app.test_request_context(headers={"X-Real-IP": "198.51.100.2"}):
            assert client_identifier(request) == "198.51.100.2"
        with app.test_request_context(environ_base={"REMOTE_ADDR": "192.0.2.9"}):
            assert client_identifier(request) == "192.0.2.9"


class TestLoginThrottle:
    def test_sixth_login_attempt_is_429(self, app, client, customer):
        app.config["RATE_LIMIT_ENABLED"] = True
        body = {"identifier": customer.email, "password": "Wrong123!"}

        for _ in range(5):
            assert client.post("/api/auth/login", json=body).status_code == 401

        resp = client.post("/api/auth/login", json=body)
        assert resp.status_code == 429
        assert envelope(resp)["error"] == "RATE_LIMIT_EXCEEDED"
        assert int(resp.headers["Retry-After"]) > 0

    def test_throttle_is_per_ip(self, app, client, customer):
        app.config["RATE_LIMIT_ENABLED"] = True
        body = {"identifier": customer.email, "password": "Wrong123!"}
        for _ in range(6):
            client.post("/api/auth/login", json=body, headers={"X-Forwarded-For": "203.0.113.1"})

        resp = client.post("/api/auth/login", json=body, headers={"X-Forwarded-For": "203.0.113.2"})
        assert resp.status_code == 401

    def test_disabled_limiter_never_throttles(self, client, customer):
        body = {"identifier": customer.email, "password": "Wrong123!"}
        for _ in range(8):
            assert client.post("/api/auth/login", json=body).status_code == 401

    def test_email_policy(self, app, client, customer):
        app.config["RATE_LIMIT_ENABLED"] = True
        for _ in range(3):
            resp = client.post("/api/auth/forgot-password", json={"email": customer.email})
            assert resp.status_code == 200
        resp = client.post("/api/auth/forgot-password", json={"email": customer.email})
        assert resp.status_code == 429
