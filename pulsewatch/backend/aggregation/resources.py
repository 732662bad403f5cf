"""
aggregation/resources.py

Resource probe — attaches a memory/CPU snapshot to every recorded sample.

The probe is a plain callable returning a ResourceSnapshot so the Aggregator
can be handed a fixed stub in tests. ProcessResourceProbe reads the current
process through psutil; each call is a handful of /proc reads.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

import psutil

from ..models import ResourceSnapshot

logger = logging.getLogger(__name__)

ResourceProbe = Callable[[], ResourceSnapshot]


class ProcessResourceProbe:
    """Snapshot memory and CPU usage of one process (default: this one)."""

    def __init__(self, pid: int | None = None) -> None:
        self._proc = psutil.Process(pid or os.getpid())
        self._total = psutil.virtual_memory().total
        self._warned = False

    def __call__(self) -> ResourceSnapshot:
        try:
            with self._proc.oneshot():
                mem = self._proc.memory_info()
                cpu = self._proc.cpu_times()
        except psutil.Error as exc:
            if not self._warned:
                logger.warning("Resource probe failed for pid %d: %s", self._proc.pid, exc)
                self._warned = True
            return ResourceSnapshot(total=self._total)

        used_percent = (mem.rss / self._total * 100) if self._total else 0.0
        return ResourceSnapshot(
            rss=mem.rss,
            vms=mem.vms,
            total=self._total,
            used_percent=used_percent,
            cpu_user=cpu.user,
            cpu_system=cpu.system,
        )
