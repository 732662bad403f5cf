"""
backend/pipeline.py

NotificationOutbox — the bounded channel between the producers of
notifications (alert rule engine, threat tracker) and Notification Dispatch.

Producers call put() from any thread, including request handlers running in
a thread pool; the dispatch loop drains it from the event loop.

When the outbox is full the *oldest* item is discarded to make room
(ring-buffer semantics), the drop is counted and a warning is logged.
Producers never block.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any

from .metrics import Counter

logger = logging.getLogger(__name__)

_OUTBOX_SIZE_DEFAULT = 500


class NotificationOutbox:
    """Thread-safe bounded FIFO with drop-oldest overflow."""

    def __init__(self, maxsize: int = _OUTBOX_SIZE_DEFAULT) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1 — got {maxsize}")
        self.maxsize = maxsize
        self._items: deque[Any] = deque()
        self._lock = threading.Lock()
        self.dropped = Counter()
        self.enqueued = Counter()

    def put(self, item: Any) -> bool:
        """
        Non-blocking enqueue.

        Returns:
            True  — enqueued without loss.
            False — enqueued, but the oldest item was dropped to make room.
        """
        with self._lock:
            lossless = True
            if len(self._items) >= self.maxsize:
                self._items.popleft()
                lossless = False
            self._items.append(item)
            size = len(self._items)

        self.enqueued.inc()
        if not lossless:
            self.dropped.inc()
            logger.warning(
                "Notification outbox full (%d/%d) — oldest item dropped to make room",
                size, self.maxsize,
            )
        return lossless

    def drain(self, limit: int | None = None) -> list[Any]:
        """Remove and return up to ``limit`` items (all when None), oldest first."""
        with self._lock:
            if limit is None or limit >= len(self._items):
                items = list(self._items)
                self._items.clear()
                return items
            return [self._items.popleft() for _ in range(limit)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def as_dict(self) -> dict[str, int]:
        return {
            "pending": len(self),
            "maxsize": self.maxsize,
            "enqueued": self.enqueued.value,
            "dropped": self.dropped.value,
        }
