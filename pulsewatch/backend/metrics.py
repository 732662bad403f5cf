"""
backend/metrics.py

Thread-safe counters.

Counter         — a single integer counter, used for internal bookkeeping
                  (dropped notifications, failed ticks, ...).
RunningCounters — the process-lifetime request/cache accumulators owned by
                  the Aggregator. All five fields share one lock so a reader
                  never sees a request counted without its duration.

Usage:
    counters = RunningCounters()
    counters.record(duration_ms=120.0, is_error=False)
    counters.cache_hit()
    print(counters.values().avg_response_time)
"""

from __future__ import annotations

import threading
from typing import NamedTuple


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class CounterValues(NamedTuple):
    """Consistent read of RunningCounters."""

    request_count: int = 0
    error_count: int = 0
    duration_sum: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0

    @property
    def avg_response_time(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.duration_sum / self.request_count

    @property
    def error_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.error_count / self.request_count * 100

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return self.cache_hits / total * 100


class RunningCounters:
    """
    Monotonically increasing request and cache accumulators.

    Only reset() ever decreases a value.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values = CounterValues()

    def record(self, duration_ms: float, is_error: bool) -> None:
        with self._lock:
            v = self._values
            self._values = v._replace(
                request_count=v.request_count + 1,
                error_count=v.error_count + (1 if is_error else 0),
                duration_sum=v.duration_sum + duration_ms,
            )

    def cache_hit(self) -> None:
        with self._lock:
            self._values = self._values._replace(cache_hits=self._values.cache_hits + 1)

    def cache_miss(self) -> None:
        with self._lock:
            self._values = self._values._replace(cache_misses=self._values.cache_misses + 1)

    def values(self) -> CounterValues:
        with self._lock:
            return self._values

    def reset(self) -> None:
        with self._lock:
            self._values = CounterValues()

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return self.values()._asdict()
