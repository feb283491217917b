# Overview: CSRF token issuing and validation behind a swappable token store.

"""
CSRF Token Service

Clients fetch a token from GET /api/csrf-token and echo it in the
X-CSRF-Token header on state-changing requests (POST/PUT/PATCH/DELETE).

Tokens live in a TokenStore for CSRF_TOKEN_TTL_SECONDS:
- MemoryTokenStore sweeps expired tokens every ten minutes (single process)
- RedisTokenStore uses SETEX so expiry is handled server-side
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod

import redis
from flask import current_app

logger = logging.getLogger(__name__)

CSRF_HEADER_NAME = "X-CSRF-Token"
PROTECTED_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


class TokenStore(ABC):
    """Interface: issued tokens with a time-to-live."""

    @abstractmethod
    def put(self, token: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def contains(self, token: str) -> bool:
        ...

    @abstractmethod
    def discard(self, token: str) -> None:
        ...

    def sweep(self) -> int:
        return 0


class MemoryTokenStore(TokenStore):
    SWEEP_INTERVAL_SECONDS = 10 * 60

    def __init__(self, clock=time.time):
        self._clock = clock
        self._tokens: dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def put(self, token: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.SWEEP_INTERVAL_SECONDS:
                self._sweep_locked(now)
            self._tokens[token] = now + ttl_seconds

    def contains(self, token: str) -> bool:
        with self._lock:
            expires_at = self._tokens.get(token)
            if expires_at is None:
                return False
            if self._clock() >= expires_at:
                del self._tokens[token]
                return False
            return True

    def discard(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [t for t, expires_at in self._tokens.items() if now >= expires_at]
        for t in expired:
            del self._tokens[t]
        self._last_sweep = now
        return len(expired)


class RedisTokenStore(TokenStore):
    def __init__(self, client: redis.Redis, prefix: str = "gasbook:csrf:"):
        self.client = client
        self.prefix = prefix

    def put(self, token: str, ttl_seconds: int) -> None:
        self.client.setex(self.prefix + token, ttl_seconds, "1")

    def contains(self, token: str) -> bool:
        return bool(self.client.exists(self.prefix + token))

    def discard(self, token: str) -> None:
        self.client.delete(self.prefix + token)


def build_token_store(url: str | None) -> TokenStore:
    if not url or url.startswith("memory://"):
        return MemoryTokenStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisTokenStore(redis.Redis.from_url(url, decode_responses=True))
    raise ValueError(f"Unsupported token store URL: {url}")


class CsrfProtection:
    def __init__(self, store: TokenStore, ttl_seconds: int = 3600):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def issue(self) -> str:
        token = generate_csrf_token()
        self.store.put(token, self.ttl_seconds)
        return token

    def validate(self, token: str | None) -> bool:
        # token_urlsafe(32) yields 43 characters
        if not token or len(token) < 32:
            return False
        return self.store.contains(token)


def init_app(app) -> CsrfProtection:
    protection = CsrfProtection(
        build_token_store(app.config.get("RATE_LIMIT_STORAGE_URL")),
        ttl_seconds=int(app.config.get("CSRF_TOKEN_TTL_SECONDS", 3600)),
    )
    app.extensions["csrf"] = protection
    return protection


def get_csrf() -> CsrfProtection:
    return current_app.extensions["csrf"]
