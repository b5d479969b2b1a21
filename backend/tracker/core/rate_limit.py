"""
In-process token buckets keyed by caller.

Each worker process keeps its own buckets, so a limit is per process.
Buckets idle for longer than IDLE_BUCKET_SECONDS are dropped.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock


IDLE_BUCKET_SECONDS = 600
SWEEP_EVERY_SECONDS = 60
DENIED_RETRY_SECONDS = 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class TokenBucketLimiter:
    def __init__(self) -> None:
        self._buckets: dict[str, _Bucket] = {}
        self._swept_at = 0.0
        self._lock = Lock()

    def _sweep(self, now: float) -> None:
        if now - self._swept_at < SWEEP_EVERY_SECONDS:
            return
        self._swept_at = now
        for key in [k for k, b in self._buckets.items() if now - b.refilled_at > IDLE_BUCKET_SECONDS]:
            del self._buckets[key]

    def consume(self, key: str, capacity: int, refill_rate_per_sec: float) -> RateLimitDecision:
        # A zero budget means the caller is shut out entirely.
        if capacity <= 0 or refill_rate_per_sec <= 0:
            return RateLimitDecision(False, max(capacity, 0), 0, DENIED_RETRY_SECONDS)

        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            bucket = self._buckets.setdefault(key, _Bucket(tokens=float(capacity), refilled_at=now))
            elapsed = max(0.0, now - bucket.refilled_at)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate_per_sec)
            bucket.refilled_at = now
            if bucket.tokens < 1.0:
                wait = math.ceil((1.0 - bucket.tokens) / refill_rate_per_sec)
                return RateLimitDecision(False, capacity, 0, max(1, wait))
            bucket.tokens -= 1.0
            return RateLimitDecision(True, capacity, int(bucket.tokens), 0)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._swept_at = 0.0


_LIMITER = TokenBucketLimiter()


def consume(key: str, *, capacity: int, refill_rate_per_sec: float) -> RateLimitDecision:
    return _LIMITER.consume(key, capacity, refill_rate_per_sec)


def per_minute(limit: int) -> tuple[int, float]:
    """Capacity and refill rate for a requests-per-minute budget."""
    return limit, limit / 60.0


def reset_state() -> None:
    _LIMITER.reset()
