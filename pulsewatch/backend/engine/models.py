"""
engine/models.py

Data models for the alert rule engine.

Operator          — comparison applied between a metric value and a threshold
NotificationFlags — per-rule channel opt-ins (email / webhook / log)
AlertRule         — a named threshold over a dot-addressed metric path
AlertNotification — emitted when a rule fires; lives in the active registry
                    until resolved, then only in the bounded history
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from ..models import Severity


# ---------------------------------------------------------------------------
# Operator
# ---------------------------------------------------------------------------

class Operator(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="

    def compare(self, value: float, threshold: float) -> bool:
        if self is Operator.GT:
            return value > threshold
        if self is Operator.LT:
            return value < threshold
        if self is Operator.GE:
            return value >= threshold
        if self is Operator.LE:
            return value <= threshold
        return value == threshold


# ---------------------------------------------------------------------------
# AlertRule
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class NotificationFlags:
    email: bool = False
    webhook: bool = False
    log: bool = True


@dataclass
class AlertRule:
    """
    Threshold rule evaluated against every metrics snapshot.

    A rule fires when it is enabled, its cooldown has expired
    (``last_triggered_at`` unset or at least ``cooldown_seconds`` ago) and
    ``<metric value> <operator> <threshold>`` holds.
    """

    id: str
    """Unique identifier, e.g. 'error-rate-high'."""

    name: str
    description: str
    metric: str
    """Dot-addressed path into SystemMetricsSnapshot.as_metrics()."""

    operator: Operator
    threshold: float
    severity: Severity = Severity.MEDIUM
    cooldown_seconds: float = 300.0
    enabled: bool = True
    last_triggered_at: float | None = None
    notifications: NotificationFlags = field(default_factory=NotificationFlags)

    def cooldown_active(self, now: float) -> bool:
        if self.last_triggered_at is None:
            return False
        return now - self.last_triggered_at < self.cooldown_seconds

    def copy(self) -> "AlertRule":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["operator"] = self.operator.value
        d["severity"] = self.severity.value
        return d

    def __repr__(self) -> str:
        return (
            f"<AlertRule:{self.id} {self.metric} {self.operator.value} "
            f"{self.threshold} {self.severity.value} enabled={self.enabled}>"
        )


# ---------------------------------------------------------------------------
# AlertNotification
# ---------------------------------------------------------------------------

@dataclass
class AlertNotification:
    """
    An alert raised by a rule.

    Rule title, metric and threshold are captured at trigger time, so
    later edits to the rule do not rewrite past alerts.
    """

    rule_id: str
    title: str
    metric: str
    operator: Operator
    threshold: float
    severity: Severity
    current_value: float
    message: str
    triggered_at: float = field(default_factory=time.time)

    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique UUID4 identifier."""

    acknowledged_by: str | None = None
    acknowledged_at: float | None = None
    resolved: bool = False
    resolved_at: float | None = None
    resolved_by: str | None = None
    notifications: NotificationFlags = field(default_factory=NotificationFlags)

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def copy(self) -> "AlertNotification":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["operator"] = self.operator.value
        d["severity"] = self.severity.value
        return d

    def __repr__(self) -> str:
        return (
            f"AlertNotification({self.rule_id!r} {self.severity.value} "
            f"value={self.current_value} resolved={self.resolved})"
        )
