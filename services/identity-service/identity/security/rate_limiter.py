"""In-memory token bucket rate limiter implementation."""

from __future__ import annotations

import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool:
        ...

    @property
    def retry_after_seconds(self) -> int | None:
        ...


def retry_after_for(refill_per_second: float) -> int | None:
    """Whole seconds until an empty bucket holds one token again, ``None`` without refill."""
    if refill_per_second <= 0:
        return None
    # rounded first so that 1 / (1 / 60) is 60, not 61
    return max(1, math.ceil(round(1 / refill_per_second, 6)))


@dataclass(slots=True)
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketRateLimiter:
    """Thread-safe token bucket limiter keyed by caller identity.

    At most ``max_keys`` buckets are tracked; the least recently used bucket
    is dropped when a new key would exceed that bound.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ) -> None:
        """Initialise bucket parameters and per-key storage."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_second < 0:
            raise ValueError("refill rate must not be negative")
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self._capacity = float(capacity)
        self._refill = refill_per_second
        self._clock = clock
        self._max_keys = max_keys
        self._buckets: OrderedDict[str, _Bucket] = OrderedDict()
        self._lock = Lock()

    @property
    def retry_after_seconds(self) -> int | None:
        return retry_after_for(self._refill)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def allow(self, key: str = "global") -> bool:
        """Return ``True`` and take one token when the key's bucket is not empty."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                while len(self._buckets) >= self._max_keys:
                    self._buckets.popitem(last=False)
                bucket = self._buckets[key] = _Bucket(tokens=self._capacity, updated_at=now)
            else:
                self._buckets.move_to_end(key)
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._refill)
            bucket.updated_at = now
            if bucket.tokens < 1.0:
                return False
            bucket.tokens -= 1.0
            return True
