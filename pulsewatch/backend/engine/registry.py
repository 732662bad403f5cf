"""
engine/registry.py

ActiveAlertRegistry — open alerts keyed by id, plus a bounded history.

An alert is appended to both the active map and the history when it fires.
Both hold the same object, so acknowledging or resolving an active alert is
reflected in its history entry. Resolving removes it from the active map;
the history keeps it until it is pushed out by newer alerts.

Thread safety: NOT thread-safe on its own. Owned by AlertRuleEngine, which
serialises every call under its lock and hands out copies only.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from .models import AlertNotification

logger = logging.getLogger(__name__)

_HISTORY_LIMIT_DEFAULT = 1_000


class ActiveAlertRegistry:

    def __init__(self, history_limit: int = _HISTORY_LIMIT_DEFAULT) -> None:
        self._active: dict[str, AlertNotification] = {}
        self._history: deque[AlertNotification] = deque(maxlen=history_limit)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add(self, alert: AlertNotification) -> None:
        self._active[alert.alert_id] = alert
        self._history.append(alert)

    def acknowledge(self, alert_id: str, by: str, at: float) -> AlertNotification | None:
        alert = self._active.get(alert_id)
        if alert is None:
            return None
        alert.acknowledged_by = by
        alert.acknowledged_at = at
        return alert

    def resolve(self, alert_id: str, at: float, by: str | None = None) -> AlertNotification | None:
        alert = self._active.pop(alert_id, None)
        if alert is None:
            return None
        alert.resolved = True
        alert.resolved_at = at
        alert.resolved_by = by
        return alert

    # ------------------------------------------------------------------
    # Reads (callers copy before releasing the engine lock)
    # ------------------------------------------------------------------

    def active(self) -> list[AlertNotification]:
        return list(self._active.values())

    def get(self, alert_id: str) -> AlertNotification | None:
        alert = self._active.get(alert_id)
        if alert is not None:
            return alert
        for past in reversed(self._history):
            if past.alert_id == alert_id:
                return past
        return None

    def history(self, limit: int | None = None) -> list[AlertNotification]:
        """Newest first."""
        newest_first = list(reversed(self._history))
        return newest_first[:limit] if limit is not None else newest_first

    def statistics(self) -> dict[str, Any]:
        by_severity: dict[str, int] = {}
        by_metric: dict[str, int] = {}
        for alert in self._active.values():
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
            by_metric[alert.metric] = by_metric.get(alert.metric, 0) + 1

        durations = [
            a.resolved_at - a.triggered_at
            for a in self._history
            if a.resolved and a.resolved_at is not None
        ]
        avg_resolution = sum(durations) / len(durations) if durations else 0.0

        return {
            "total_active": len(self._active),
            "total_history": len(self._history),
            "by_severity": by_severity,
            "by_metric": by_metric,
            "avg_resolution_time": avg_resolution,
        }

    def __len__(self) -> int:
        return len(self._active)
