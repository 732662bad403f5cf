"""
backend/clock.py

Clock abstraction shared by every time-dependent component.

Components take a ``clock`` argument instead of calling time.time() directly,
so cooldowns, rolling windows and retention can be driven deterministically
in tests with ManualClock.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Return the current wall-clock time as Unix epoch seconds."""
        ...


class SystemClock:
    """Real wall-clock time."""

    def now(self) -> float:
        return time.time()

    def __repr__(self) -> str:
        return "SystemClock()"


class ManualClock:
    """A clock that only moves when told to. Thread-safe."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, timestamp: float) -> None:
        with self._lock:
            self._now = float(timestamp)

    def __repr__(self) -> str:
        return f"ManualClock({self._now:.3f})"


SYSTEM_CLOCK = SystemClock()
