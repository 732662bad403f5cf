"""
backend/models.py

Shared dataclasses passed between components.
Defining them here locks the contracts between the aggregator, the alert
engine and the threat tracker so each can be developed against a stable
interface.

Everything here is either immutable (frozen) or handed out as a copy —
no component exposes a reference to its internal state.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Severity — shared by alert rules and threat profiles
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: "Severity | str") -> "Severity":
        """Accept an enum member or a case-insensitive name/value."""
        if isinstance(value, Severity):
            return value
        return cls(str(value).strip().lower())


# ---------------------------------------------------------------------------
# Request samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    """Process resource usage at a point in time."""

    rss: int = 0
    """Resident set size in bytes."""

    vms: int = 0
    """Virtual memory size in bytes."""

    total: int = 0
    """Total physical memory of the host in bytes."""

    used_percent: float = 0.0
    """RSS as a percentage of physical memory (0–100)."""

    cpu_user: float = 0.0
    """Cumulative user-mode CPU seconds."""

    cpu_system: float = 0.0
    """Cumulative kernel-mode CPU seconds."""


@dataclass(frozen=True, slots=True)
class Sample:
    """One completed request observation. Immutable once created."""

    endpoint: str
    method: str
    duration_ms: float
    status_code: int
    timestamp: float
    """Unix epoch seconds at request completion."""

    resources: ResourceSnapshot | None = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Point-in-time system metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SystemMetricsSnapshot:
    """Derived, immutable read of the aggregator's counters and store."""

    timestamp: float
    uptime_seconds: float
    memory: ResourceSnapshot = field(default_factory=ResourceSnapshot)
    active_connections: int = 0
    cache_hit_rate: float = 0.0
    """hits / (hits + misses) * 100, or 0 with no cache accesses."""

    avg_response_time: float = 0.0
    """Mean request duration in ms, or 0 with no requests."""

    error_rate: float = 0.0
    """Percent of requests with status >= 400, or 0 with no requests."""

    requests_per_minute: int = 0
    """Samples recorded during the last 60 seconds."""

    request_count: int = 0
    error_count: int = 0

    def as_metrics(self) -> dict[str, Any]:
        """
        Plain nested key/value view addressed by alert rule metric paths,
        e.g. ``memory.used_percent`` or ``error_rate``.
        """
        return {
            "timestamp": self.timestamp,
            "uptime": self.uptime_seconds,
            "memory": {
                "rss": self.memory.rss,
                "vms": self.memory.vms,
                "total": self.memory.total,
                "used_percent": self.memory.used_percent,
            },
            "cpu": {
                "user": self.memory.cpu_user,
                "system": self.memory.cpu_system,
            },
            "active_connections": self.active_connections,
            "cache_hit_rate": self.cache_hit_rate,
            "avg_response_time": self.avg_response_time,
            "error_rate": self.error_rate,
            "requests_per_minute": self.requests_per_minute,
            "request_count": self.request_count,
            "error_count": self.error_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
