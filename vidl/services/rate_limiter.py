from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from time import monotonic


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: float


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketRateLimiter:
    """Per-key token buckets refilled continuously at ``capacity`` tokens per period.

    A single instance is shared by every caller drawing on the same remote
    budget, so all bookkeeping happens under one lock.
    """

    def __init__(
        self,
        *,
        capacity: int,
        refill_period_seconds: float,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._capacity = max(1, capacity)
        self._refill_rate = self._capacity / max(refill_period_seconds, 1e-9)
        self._clock = clock
        self._lock = Lock()
        self._buckets: dict[str, _Bucket] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def take(self, key: str) -> RateLimitDecision:
        now = self._clock()

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(self._capacity), updated_at=now)
                self._buckets[key] = bucket
            else:
                elapsed = max(0.0, now - bucket.updated_at)
                bucket.tokens = min(
                    float(self._capacity),
                    bucket.tokens + elapsed * self._refill_rate,
                )
                bucket.updated_at = now

            if bucket.tokens < 1.0:
                return RateLimitDecision(
                    allowed=False,
                    limit=self._capacity,
                    remaining=0,
                    retry_after_seconds=(1.0 - bucket.tokens) / self._refill_rate,
                )

            bucket.tokens -= 1.0
            return RateLimitDecision(
                allowed=True,
                limit=self._capacity,
                remaining=math.floor(bucket.tokens),
                retry_after_seconds=0.0,
            )
