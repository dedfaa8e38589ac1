"""Keyed rate limiters.

Both limiters answer one question per key: may this call proceed now, and if
not, how long until it could. Neither ever sleeps; callers decide what to do
with the wait.

- ``TokenBucket``: ``rate`` tokens per ``window``, bursts up to ``capacity``
- ``SlidingWindow``: at most ``limit`` admissions in any trailing ``window``

Each limiter guards its whole key table with a single lock; ``reserve`` is
O(1) amortized so per-key locking buys nothing.

Example:
    >>> bucket = TokenBucket(rate=2, window=1.0)
    >>> bucket.allow("linode_instances_list"), bucket.allow("linode_instances_list")
    (True, True)
    >>> bucket.reserve("linode_instances_list")
    0.5
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

Clock = Callable[[], int]  # monotonic nanoseconds

_NS = 1_000_000_000


@runtime_checkable
class RateLimiter(Protocol):
    """Keyed admission control."""

    def reserve(self, key: str) -> float:
        """Consume capacity for ``key``. Returns 0 when admitted, else seconds to wait."""
        ...

    def allow(self, key: str) -> bool: ...

    def reset(self, key: str) -> None: ...


@dataclass(slots=True)
class Bucket:
    """Token-bucket state for one key. Invariant: 0 <= tokens <= capacity."""
    tokens: int
    last_refill: int


class TokenBucket:
    """Token bucket limiter.

    Args:
        rate: Tokens added per ``window``
        window: Refill period in seconds
        capacity: Maximum burst; values <= 0 fall back to ``rate``
        clock: Monotonic nanosecond clock, injectable for tests
    """

    __slots__ = ("rate", "window", "capacity", "_window_ns", "_buckets", "_lock", "_clock")

    def __init__(self, rate: int, window: float, capacity: int = 0, *, clock: Clock = time.monotonic_ns) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        self.rate, self.window = rate, window
        self.capacity = capacity if capacity > 0 else rate
        self._window_ns = int(window * _NS)
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def reserve(self, key: str) -> float:
        now = self._clock()
        with self._lock:
            if (bucket := self._buckets.get(key)) is None:
                bucket = self._buckets[key] = Bucket(self.capacity, now)
            if (to_add := (now - bucket.last_refill) * self.rate // self._window_ns) > 0:
                bucket.tokens = min(bucket.tokens + to_add, self.capacity)
                bucket.last_refill = now
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return 0.0
        return self.window / self.rate

    def allow(self, key: str) -> bool:
        return self.reserve(key) == 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def tokens(self, key: str) -> int:
        """Tokens currently held for ``key`` without refilling (full for unseen keys)."""
        with self._lock:
            return bucket.tokens if (bucket := self._buckets.get(key)) else self.capacity

    def __repr__(self) -> str:
        return f"TokenBucket(rate={self.rate}, window={self.window}, capacity={self.capacity})"


class SlidingWindow:
    """Sliding-window log limiter.

    Args:
        limit: Admissions allowed in any trailing ``window``
        window: Window length in seconds
        clock: Monotonic nanosecond clock, injectable for tests
    """

    __slots__ = ("limit", "window", "_window_ns", "_windows", "_lock", "_clock")

    def __init__(self, limit: int, window: float, *, clock: Clock = time.monotonic_ns) -> None:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        self.limit, self.window = limit, window
        self._window_ns = int(window * _NS)
        self._windows: dict[str, deque[int]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def reserve(self, key: str) -> float:
        now = self._clock()
        cutoff = now - self._window_ns
        with self._lock:
            stamps = self._windows.setdefault(key, deque())
            while stamps and stamps[0] <= cutoff:
                stamps.popleft()
            if len(stamps) < self.limit:
                stamps.append(now)
                return 0.0
            return (stamps[0] + self._window_ns - now) / _NS

    def allow(self, key: str) -> bool:
        return self.reserve(key) == 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def count(self, key: str) -> int:
        """Admissions recorded for ``key`` inside the current window."""
        cutoff = self._clock() - self._window_ns
        with self._lock:
            return sum(1 for t in self._windows.get(key, ()) if t > cutoff)

    def __repr__(self) -> str:
        return f"SlidingWindow(limit={self.limit}, window={self.window})"


@dataclass(slots=True)
class FakeClock:
    """Manually advanced nanosecond clock for deterministic limiter tests."""

    now: int = field(default=1_000 * _NS)

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * _NS)
