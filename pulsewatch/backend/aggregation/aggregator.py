"""
aggregation/aggregator.py

Aggregator — owns the SampleStore and the RunningCounters and derives
point-in-time metrics and period reports from them.

Producers (one per in-flight request):
    record_request() / record_sample()   — completed request
    record_cache_hit() / record_cache_miss()
    connection_opened() / connection_closed()

Readers (periodic tick / status endpoint):
    current_snapshot()  — SystemMetricsSnapshot; pure, never evaluates rules
    aggregate(period)   — AggregatedReport over 1h / 24h / 7d
    export()            — every retained sample plus all period reports

Thread safety: one lock keeps the store and the counters in step, so a
snapshot never sees a sample without its counter update.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from ..clock import SYSTEM_CLOCK, Clock
from ..metrics import RunningCounters
from ..models import Sample, SystemMetricsSnapshot
from .models import AggregatedReport, EndpointCount, MemoryPoint, ReportPeriod
from .resources import ProcessResourceProbe, ResourceProbe
from .sample_store import SampleStore

logger = logging.getLogger(__name__)

_REQUESTS_PER_MINUTE_WINDOW = 60.0


class Aggregator:
    """
    Collects request samples and cache outcomes; computes system metrics.

    Args:
        clock:          Time source (defaults to the system clock).
        capacity:       Maximum number of samples retained.
        resource_probe: Callable returning a ResourceSnapshot; defaults to
                        a psutil probe of the current process.
        top_endpoints:  Rows in AggregatedReport.top_endpoints.
        trend_points:   Points in AggregatedReport.memory_trend.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        capacity: int = 1_000,
        resource_probe: ResourceProbe | None = None,
        top_endpoints: int = 10,
        trend_points: int = 20,
    ) -> None:
        self._clock = clock or SYSTEM_CLOCK
        self._store = SampleStore(capacity)
        self._counters = RunningCounters()
        self._probe: ResourceProbe = resource_probe or ProcessResourceProbe()
        self._top_n = top_endpoints
        self._trend_points = trend_points
        self._started_at = self._clock.now()
        self._active_connections = 0
        self._lock = threading.Lock()
        logger.info(
            "Aggregator initialised — capacity=%d top_endpoints=%d trend_points=%d",
            capacity, top_endpoints, trend_points,
        )

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def record_request(
        self,
        endpoint: str,
        method: str,
        duration_ms: float,
        status_code: int,
    ) -> Sample:
        """Build a Sample (timestamp + resource snapshot attached) and record it."""
        sample = Sample(
            endpoint=endpoint,
            method=method.upper(),
            duration_ms=max(0.0, float(duration_ms)),
            status_code=int(status_code),
            timestamp=self._clock.now(),
            resources=self._probe(),
        )
        self.record_sample(sample)
        return sample

    def record_sample(self, sample: Sample) -> None:
        """Store the sample and update the running counters."""
        with self._lock:
            self._store.record(sample)
            self._counters.record(sample.duration_ms, sample.is_error)
        logger.debug(
            "Sample recorded — %s %s %dms status=%d",
            sample.method, sample.endpoint, sample.duration_ms, sample.status_code,
        )

    def record_cache_hit(self) -> None:
        self._counters.cache_hit()

    def record_cache_miss(self) -> None:
        self._counters.cache_miss()

    def connection_opened(self) -> None:
        with self._lock:
            self._active_connections += 1

    def connection_closed(self) -> None:
        with self._lock:
            self._active_connections = max(0, self._active_connections - 1)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def current_snapshot(self) -> SystemMetricsSnapshot:
        """
        Compute the current SystemMetricsSnapshot.

        Pure with respect to the aggregator's state: taking a snapshot does
        not evaluate alert rules. Rule evaluation is a separate step driven
        by the alert tick.
        """
        now = self._clock.now()
        memory = self._probe()
        with self._lock:
            values = self._counters.values()
            recent = self._store.count_since(now - _REQUESTS_PER_MINUTE_WINDOW, inclusive=False)
            active = self._active_connections

        return SystemMetricsSnapshot(
            timestamp=now,
            uptime_seconds=max(0.0, now - self._started_at),
            memory=memory,
            active_connections=active,
            cache_hit_rate=values.cache_hit_rate,
            avg_response_time=values.avg_response_time,
            error_rate=values.error_rate,
            requests_per_minute=recent,
            request_count=values.request_count,
            error_count=values.error_count,
        )

    def aggregate(self, period: ReportPeriod | str = ReportPeriod.HOUR) -> AggregatedReport:
        """
        Summarise samples with ``timestamp >= now - period``.

        Raises:
            ValueError: unknown period name.
        """
        period = ReportPeriod(period)
        cutoff = self._clock.now() - period.seconds
        samples = self._store.snapshot(since=cutoff)

        if not samples:
            return AggregatedReport(period=period)

        total = len(samples)
        avg_duration = sum(s.duration_ms for s in samples) / total
        errors = sum(1 for s in samples if s.is_error)

        # dicts keep insertion order, so equal counts stay in first-seen order
        endpoint_counts: dict[tuple[str, str], int] = {}
        status_codes: dict[int, int] = {}
        for s in samples:
            key = (s.method, s.endpoint)
            endpoint_counts[key] = endpoint_counts.get(key, 0) + 1
            status_codes[s.status_code] = status_codes.get(s.status_code, 0) + 1

        ranked = sorted(endpoint_counts.items(), key=lambda kv: -kv[1])
        top = [
            EndpointCount(endpoint=endpoint, method=method, count=count)
            for (method, endpoint), count in ranked[: self._top_n]
        ]

        return AggregatedReport(
            period=period,
            total_requests=total,
            average_response_time=round(avg_duration, 2),
            error_rate=round(errors / total * 100, 2),
            top_endpoints=top,
            status_codes=status_codes,
            memory_trend=self._memory_trend(samples),
        )

    def export(self) -> dict[str, Any]:
        """Every retained sample plus the report for each period."""
        return {
            "samples": [s.to_dict() for s in self._store.snapshot()],
            "counters": self._counters.as_dict(),
            "aggregated": {p.value: self.aggregate(p).to_dict() for p in ReportPeriod},
        }

    def samples(self, since: float | None = None) -> list[Sample]:
        return self._store.snapshot(since=since)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._counters.as_dict(),
            "samples_stored": len(self._store),
            "samples_evicted": self._store.evicted_total,
        }

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Zero all counters and empty the sample store."""
        with self._lock:
            self._counters.reset()
            self._store.clear()
        logger.info("Aggregator reset — counters zeroed, sample store cleared")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _memory_trend(self, samples: list[Sample]) -> list[MemoryPoint]:
        """Pick ~trend_points evenly spaced readings (all of them when fewer)."""
        readings = [s for s in samples if s.resources is not None]
        n = len(readings)
        if n > self._trend_points:
            step = n / self._trend_points
            readings = [readings[int(i * step)] for i in range(self._trend_points)]
        return [
            MemoryPoint(
                timestamp=s.timestamp,
                rss=s.resources.rss,
                vms=s.resources.vms,
                used_percent=round(s.resources.used_percent, 2),
            )
            for s in readings
        ]
