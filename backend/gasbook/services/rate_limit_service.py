# Overview: Per-client request throttling behind a swappable counter store.

"""
Rate Limiting Service

WHY: Cheap per-client throttling for login, email-sending and payment-retry
endpoints, plus a general ceiling for everything else.

STORAGE:
- MemoryCounterStore: lock-guarded dict with a sweep every five minutes.
  Correct only for a single process.
- RedisCounterStore: INCR + EXPIRE, shared across processes/instances.
Selected by RATE_LIMIT_STORAGE_URL ("memory://" or "redis://...").

Policies are fixed windows: the first hit opens a window; hits beyond
max_requests inside that window are rejected until it resets.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import redis
from flask import current_app

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    max_requests: int
    window_seconds: int


POLICIES = {
    "general": RateLimitPolicy("general", 100, 15 * 60),
    "login": RateLimitPolicy("login", 5, 15 * 60),
    "email": RateLimitPolicy("email", 3, 60 * 60),
    "payment-retry": RateLimitPolicy("payment-retry", 5, 15 * 60),
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class CounterStore(ABC):
    """Interface: hit() increments a windowed counter and returns (count, reset_at)."""

    @abstractmethod
    def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        ...

    @abstractmethod
    def reset(self, key: str | None = None) -> None:
        ...

    def sweep(self) -> int:
        return 0


class MemoryCounterStore(CounterStore):
    SWEEP_INTERVAL_SECONDS = 5 * 60

    def __init__(self, clock=time.time):
        self._clock = clock
        self._data: dict[str, list] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.SWEEP_INTERVAL_SECONDS:
                self._sweep_locked(now)
            record = self._data.get(key)
            if record is None or now >= record[1]:
                record = [0, now + window_seconds]
                self._data[key] = record
            record[0] += 1
            return record[0], record[1]

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._data.clear()
            else:
                self._data.pop(key, None)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, (_, reset_at) in self._data.items() if now >= reset_at]
        for k in expired:
            del self._data[k]
        self._last_sweep = now
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisCounterStore(CounterStore):
    def __init__(self, client: redis.Redis, prefix: str = "gasbook:rl:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        full_key = self.prefix + key
        pipe = self.client.pipeline()
        pipe.incr(full_key)
        pipe.ttl(full_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self.client.expire(full_key, window_seconds)
            ttl = window_seconds
        return int(count), time.time() + ttl

    def reset(self, key: str | None = None) -> None:
        if key is not None:
            self.client.delete(self.prefix + key)
            return
        for found in self.client.scan_iter(match=self.prefix + "*"):
            self.client.delete(found)


def build_counter_store(url: str | None) -> CounterStore:
    if not url or url.startswith("memory://"):
        return MemoryCounterStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisCounterStore.from_url(url)
    raise ValueError(f"Unsupported RATE_LIMIT_STORAGE_URL: {url}")


class RateLimiter:
    def __init__(self, store: CounterStore, policies: dict[str, RateLimitPolicy] | None = None, clock=time.time):
        self.store = store
        self.policies = dict(policies or POLICIES)
        self._clock = clock

    def check(self, policy_name: str, identifier: str) -> RateLimitResult:
        policy = self.policies[policy_name]
        count, reset_at = self.store.hit(f"{policy.name}:{identifier}", policy.window_seconds)
        retry_after = max(0, math.ceil(reset_at - self._clock()))
        allowed = count <= policy.max_requests
        if not allowed:
            logger.warning("Rate limit '%s' exceeded for %s", policy.name, identifier)
        return RateLimitResult(
            allowed=allowed,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            retry_after=retry_after,
        )


def init_app(app) -> RateLimiter:
    limiter = RateLimiter(build_counter_store(app.config.get("RATE_LIMIT_STORAGE_URL")))
    app.extensions["rate_limiter"] = limiter
    return limiter


def get_rate_limiter() -> RateLimiter:
    return current_app.extensions["rate_limiter"]


def client_identifier(request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, CF-Connecting-IP, remote addr."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return request.remote_addr or "unknown"
