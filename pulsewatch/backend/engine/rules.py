"""
engine/rules.py

Default alert rules and rule validation.

The four default rules (and their cooldowns) are part of the engine's
contract; tests depend on them exactly:

    memory-usage-high    memory.used_percent > 80    high      5 min
    response-time-slow   avg_response_time  > 2000   medium    2 min
    error-rate-high      error_rate         > 10     critical  1 min
    cache-hit-rate-low   cache_hit_rate     < 50     low      10 min

memory.used_percent is the process RSS as a share of host physical memory,
not a heap ratio, so memory-usage-high only fires for a process holding
most of the machine. Lower its threshold for a tighter budget.
"""

from __future__ import annotations

import math

from ..errors import InvalidRuleError
from ..models import Severity
from .models import AlertRule, NotificationFlags, Operator


def default_rules() -> list[AlertRule]:
    """
    Return fresh copies of the built-in rule set.

    The memory threshold is relative to host RAM (see ProcessResourceProbe).
    """
    return [
        AlertRule(
            id="memory-usage-high",
            name="High memory usage",
            description="Process RSS above 80% of host memory",
            metric="memory.used_percent",
            operator=Operator.GT,
            threshold=80,
            severity=Severity.HIGH,
            cooldown_seconds=5 * 60,
            notifications=NotificationFlags(email=True, log=True),
        ),
        AlertRule(
            id="response-time-slow",
            name="Slow response time",
            description="Average response time above 2 seconds",
            metric="avg_response_time",
            operator=Operator.GT,
            threshold=2000,
            severity=Severity.MEDIUM,
            cooldown_seconds=2 * 60,
            notifications=NotificationFlags(email=True, log=True),
        ),
        AlertRule(
            id="error-rate-high",
            name="High error rate",
            description="Error rate above 10%",
            metric="error_rate",
            operator=Operator.GT,
            threshold=10,
            severity=Severity.CRITICAL,
            cooldown_seconds=1 * 60,
            notifications=NotificationFlags(email=True, webhook=True, log=True),
        ),
        AlertRule(
            id="cache-hit-rate-low",
            name="Low cache hit rate",
            description="Cache hit rate below 50%",
            metric="cache_hit_rate",
            operator=Operator.LT,
            threshold=50,
            severity=Severity.LOW,
            cooldown_seconds=10 * 60,
            notifications=NotificationFlags(log=True),
        ),
    ]


def validate_rule(rule: AlertRule) -> AlertRule:
    """
    Check a rule and normalise its enum fields.

    Returns a new AlertRule with ``operator`` / ``severity`` coerced to their
    enums and numeric fields coerced to float.

    Raises:
        InvalidRuleError: malformed rule.
    """
    rule_id = rule.id if isinstance(rule.id, str) else repr(rule.id)
    if not isinstance(rule.id, str) or not rule.id.strip():
        raise InvalidRuleError(rule_id, "id must be a non-empty string")
    if not isinstance(rule.metric, str) or not rule.metric.strip():
        raise InvalidRuleError(rule_id, "metric path must be a non-empty string")

    try:
        operator = Operator(rule.operator)
    except ValueError:
        raise InvalidRuleError(rule_id, f"unknown operator {rule.operator!r}") from None

    try:
        severity = Severity.parse(rule.severity)
    except ValueError:
        raise InvalidRuleError(rule_id, f"unknown severity {rule.severity!r}") from None

    threshold = _finite(rule_id, "threshold", rule.threshold)
    cooldown = _finite(rule_id, "cooldown_seconds", rule.cooldown_seconds)
    if cooldown < 0:
        raise InvalidRuleError(rule_id, f"cooldown_seconds must be >= 0 — got {cooldown}")

    if not isinstance(rule.enabled, bool):
        raise InvalidRuleError(rule_id, f"enabled must be a bool — got {rule.enabled!r}")

    if not isinstance(rule.notifications, NotificationFlags):
        raise InvalidRuleError(rule_id, "notifications must be NotificationFlags")

    return AlertRule(
        id=rule.id,
        name=rule.name or rule.id,
        description=rule.description or "",
        metric=rule.metric,
        operator=operator,
        threshold=threshold,
        severity=severity,
        cooldown_seconds=cooldown,
        enabled=rule.enabled,
        last_triggered_at=rule.last_triggered_at,
        notifications=rule.notifications,
    )


def _finite(rule_id: str, name: str, value: object) -> float:
    if isinstance(value, bool):
        raise InvalidRuleError(rule_id, f"{name} must be a number — got {value!r}")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidRuleError(rule_id, f"{name} must be a number — got {value!r}") from None
    if not math.isfinite(number):
        raise InvalidRuleError(rule_id, f"{name} must be finite — got {value!r}")
    return number
