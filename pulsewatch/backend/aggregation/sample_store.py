"""
aggregation/sample_store.py

SampleStore — capacity-bounded FIFO ring of recent request samples.

Design:
  - Backed by collections.deque(maxlen=capacity): appending beyond capacity
    silently evicts the oldest sample. Insertion order is the only order
    that matters (this is not an LRU).
  - Samples are immutable, so snapshot() can hand out the same objects in
    a fresh list without copying each one.
  - One lock guards the deque; every critical section is O(capacity).
"""

from __future__ import annotations

import logging
import threading
from collections import deque

from ..models import Sample

logger = logging.getLogger(__name__)

_DEFAULT_CAPACITY = 1_000


class SampleStore:
    """
    Append-only ring of the most recent ``capacity`` samples.

    Thread safety: all methods are safe to call from any thread.
    """

    def __init__(self, capacity: int = _DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1 — got {capacity}")
        self._capacity = capacity
        self._samples: deque[Sample] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.evicted_total = 0
        logger.debug("SampleStore initialised — capacity=%d", capacity)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(self, sample: Sample) -> None:
        """Append a sample, evicting the oldest one when at capacity."""
        with self._lock:
            if len(self._samples) == self._capacity:
                self.evicted_total += 1
            self._samples.append(sample)

    def snapshot(self, since: float | None = None) -> list[Sample]:
        """
        Return samples with ``timestamp >= since`` (all when omitted),
        in insertion order. Never mutates the store.
        """
        with self._lock:
            if since is None:
                return list(self._samples)
            return [s for s in self._samples if s.timestamp >= since]

    def count_since(self, since: float, inclusive: bool = True) -> int:
        """Count samples newer than ``since`` without materialising a list."""
        with self._lock:
            if inclusive:
                return sum(1 for s in self._samples if s.timestamp >= since)
            return sum(1 for s in self._samples if s.timestamp > since)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def __repr__(self) -> str:
        return f"SampleStore({len(self)}/{self._capacity})"
