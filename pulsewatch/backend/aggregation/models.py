"""
aggregation/models.py

Data models for aggregated reports.

ReportPeriod    — the named look-back windows accepted by Aggregator.aggregate()
EndpointCount   — one row of the top-endpoints table
MemoryPoint     — one point of the memory sparkline
AggregatedReport — the result of Aggregator.aggregate()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# ReportPeriod
# ---------------------------------------------------------------------------

class ReportPeriod(str, Enum):
    HOUR = "1h"
    DAY  = "24h"
    WEEK = "7d"

    @property
    def seconds(self) -> int:
        return _PERIOD_SECONDS[self]


_PERIOD_SECONDS = {
    ReportPeriod.HOUR: 60 * 60,
    ReportPeriod.DAY: 24 * 60 * 60,
    ReportPeriod.WEEK: 7 * 24 * 60 * 60,
}


# ---------------------------------------------------------------------------
# Report rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EndpointCount:
    endpoint: str
    method: str
    count: int


@dataclass(frozen=True, slots=True)
class MemoryPoint:
    timestamp: float
    rss: int
    vms: int
    used_percent: float


# ---------------------------------------------------------------------------
# AggregatedReport
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AggregatedReport:
    """
    Summary of the samples recorded within one ReportPeriod.

    An empty window yields zeros and empty collections, never None.
    """

    period: ReportPeriod
    total_requests: int = 0
    average_response_time: float = 0.0
    """Mean duration in ms, rounded to 2 decimals."""

    error_rate: float = 0.0
    """Percent of requests with status >= 400, rounded to 2 decimals."""

    top_endpoints: list[EndpointCount] = field(default_factory=list)
    """Most-called (method, endpoint) pairs; ties keep first-seen order."""

    status_codes: dict[int, int] = field(default_factory=dict)
    """Status code histogram."""

    memory_trend: list[MemoryPoint] = field(default_factory=list)
    """Evenly spaced memory readings across the window."""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["period"] = self.period.value
        return d

    def __repr__(self) -> str:
        return (
            f"AggregatedReport({self.period.value} "
            f"reqs={self.total_requests} "
            f"avg={self.average_response_time}ms "
            f"err={self.error_rate}%)"
        )
