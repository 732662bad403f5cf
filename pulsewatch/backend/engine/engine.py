"""
engine/engine.py

AlertRuleEngine — holds the alert rules and the active alert registry,
and evaluates metrics snapshots against every enabled rule.

Per-rule state machine:
    enabled → cooldown active → cooldown expired → (fires) → cooldown active …

A rule fires only when it is enabled, its cooldown has expired and its
comparison holds. The whole evaluate() pass runs under the engine lock, so
"check cooldown + mark last_triggered_at" is a single atomic step per rule:
concurrent evaluate() calls can never double-fire a rule inside its
cooldown window.

Rules are evaluated in insertion order, so the order of alerts returned by
one evaluate() call is deterministic.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any, Callable

from ..clock import SYSTEM_CLOCK, Clock
from ..errors import InvalidRuleError
from ..models import Severity, SystemMetricsSnapshot
from ..pipeline import NotificationOutbox
from .models import AlertNotification, AlertRule, NotificationFlags
from .paths import resolve_metric_path
from .registry import ActiveAlertRegistry
from .rules import default_rules, validate_rule

logger = logging.getLogger(__name__)

RuleListener = Callable[[str, AlertRule], None]

# last_triggered_at is engine-owned cooldown state
_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(AlertRule)
    if f.name not in ("id", "last_triggered_at")
)

_LOG_LEVELS = {
    Severity.CRITICAL: logging.ERROR,
    Severity.HIGH: logging.WARNING,
    Severity.MEDIUM: logging.INFO,
    Severity.LOW: logging.INFO,
}


class AlertRuleEngine:
    """
    Args:
        clock:         Time source for cooldowns and alert timestamps.
        rules:         Initial rule set; None loads default_rules().
        history_limit: Alerts retained in history (oldest dropped first).
        outbox:        Where newly fired alerts are handed to dispatch.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        rules: Iterable[AlertRule] | None = None,
        history_limit: int = 1_000,
        outbox: NotificationOutbox | None = None,
    ) -> None:
        self._clock = clock or SYSTEM_CLOCK
        self._lock = threading.RLock()
        self._rules: dict[str, AlertRule] = {}
        self._registry = ActiveAlertRegistry(history_limit=history_limit)
        self._outbox = outbox
        self._listeners: list[RuleListener] = []

        self.stats: dict[str, int] = {
            "evaluations": 0,
            "alerts_fired": 0,
            "alerts_cooldown": 0,
            "rules_unresolved": 0,
        }

        for rule in default_rules() if rules is None else rules:
            self.add_rule(rule)

        logger.info(
            "AlertRuleEngine loaded %d rule(s): %s | history_limit=%d",
            len(self._rules), list(self._rules), history_limit,
        )

    # ------------------------------------------------------------------
    # Rule CRUD
    # ------------------------------------------------------------------

    def add_rule(self, rule: AlertRule) -> AlertRule:
        """
        Add a rule. Returns a copy of the stored (normalised) rule.

        Raises:
            InvalidRuleError: malformed rule or duplicate id.
        """
        validated = validate_rule(rule)
        with self._lock:
            if validated.id in self._rules:
                raise InvalidRuleError(validated.id, "a rule with this id already exists")
            self._rules[validated.id] = validated
            stored = validated.copy()

        logger.info(
            "Alert rule added — id=%r metric=%r %s %s severity=%s cooldown=%ss",
            stored.id, stored.metric, stored.operator.value, stored.threshold,
            stored.severity.value, stored.cooldown_seconds,
        )
        self._notify_listeners("rule_added", stored)
        return stored

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is None:
            return False
        logger.info("Alert rule removed — id=%r", rule_id)
        self._notify_listeners("rule_removed", removed)
        return True

    def update_rule(self, rule_id: str, **changes: Any) -> bool:
        """
        Apply a partial update, e.g. ``update_rule("error-rate-high", threshold=5)``.

        Returns False when the rule does not exist.

        Raises:
            InvalidRuleError: unknown field, id change, or the merged rule
                              fails validation. The rule is left unchanged.
        """
        if "id" in changes and changes["id"] != rule_id:
            raise InvalidRuleError(rule_id, "rule id cannot be changed")
        changes.pop("id", None)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidRuleError(rule_id, f"unknown field(s): {sorted(unknown)}")

        if isinstance(changes.get("notifications"), Mapping):
            try:
                changes["notifications"] = NotificationFlags(**changes["notifications"])
            except TypeError as exc:
                raise InvalidRuleError(rule_id, f"bad notifications: {exc}") from None

        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return False
            updated = validate_rule(dataclasses.replace(current, **changes))
            self._rules[rule_id] = updated
            stored = updated.copy()

        logger.info("Alert rule updated — id=%r changes=%s", rule_id, changes)
        self._notify_listeners("rule_updated", stored)
        return True

    def get_rule(self, rule_id: str) -> AlertRule | None:
        with self._lock:
            rule = self._rules.get(rule_id)
            return rule.copy() if rule is not None else None

    def rules(self) -> list[AlertRule]:
        with self._lock:
            return [r.copy() for r in self._rules.values()]

    def subscribe(self, listener: RuleListener) -> None:
        """Register a callback invoked with (event, rule) on every rule change."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self, snapshot: SystemMetricsSnapshot | Mapping[str, Any]
    ) -> list[AlertNotification]:
        """
        Evaluate every enabled rule against ``snapshot``.

        Returns the alerts that fired during this call (copies), in rule
        insertion order. A metric path absent from the snapshot is not an
        error: that rule simply does not fire this cycle.
        """
        metrics = (
            snapshot.as_metrics()
            if isinstance(snapshot, SystemMetricsSnapshot)
            else snapshot
        )
        now = self._clock.now()
        fired: list[AlertNotification] = []

        with self._lock:
            self.stats["evaluations"] += 1
            for rule in self._rules.values():
                if not rule.enabled:
                    continue

                value = resolve_metric_path(metrics, rule.metric)
                if value is None:
                    self.stats["rules_unresolved"] += 1
                    logger.debug("Rule %r: metric %r not present in snapshot", rule.id, rule.metric)
                    continue

                if not rule.operator.compare(value, rule.threshold):
                    continue

                if rule.cooldown_active(now):
                    self.stats["alerts_cooldown"] += 1
                    logger.debug(
                        "Rule %r cooldown active (%.0fs remaining)",
                        rule.id,
                        rule.cooldown_seconds - (now - rule.last_triggered_at),
                    )
                    continue

                alert = self._make_alert(rule, value, now)
                rule.last_triggered_at = now
                self._registry.add(alert)
                fired.append(alert.copy())
                self.stats["alerts_fired"] += 1

        for alert in fired:
            logger.log(
                _LOG_LEVELS[alert.severity],
                "ALERT [%s] rule=%r %s=%.2f (%s %s) — %s",
                alert.severity.value, alert.rule_id, alert.metric,
                alert.current_value, alert.operator.value, alert.threshold,
                alert.title,
            )
            if self._outbox is not None:
                self._outbox.put(alert.copy())

        return fired

    # ------------------------------------------------------------------
    # Alert lifecycle
    # ------------------------------------------------------------------

    def acknowledge(self, alert_id: str, by: str) -> bool:
        with self._lock:
            alert = self._registry.acknowledge(alert_id, by=by, at=self._clock.now())
        if alert is None:
            return False
        logger.info(
            "Alert acknowledged — id=%s by=%r rule=%r severity=%s",
            alert_id, by, alert.rule_id, alert.severity.value,
        )
        return True

    def resolve(self, alert_id: str, by: str | None = None) -> bool:
        with self._lock:
            alert = self._registry.resolve(alert_id, at=self._clock.now(), by=by)
        if alert is None:
            return False
        logger.info(
            "Alert resolved — id=%s by=%r rule=%r open_for=%.1fs",
            alert_id, by, alert.rule_id, alert.resolved_at - alert.triggered_at,
        )
        return True

    def active_alerts(self) -> list[AlertNotification]:
        with self._lock:
            return [a.copy() for a in self._registry.active()]

    def get_alert(self, alert_id: str) -> AlertNotification | None:
        with self._lock:
            alert = self._registry.get(alert_id)
            return alert.copy() if alert is not None else None

    def alert_history(self, limit: int | None = None) -> list[AlertNotification]:
        """Past and present alerts, newest first."""
        with self._lock:
            return [a.copy() for a in self._registry.history(limit)]

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            return self._registry.statistics()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _make_alert(self, rule: AlertRule, value: float, now: float) -> AlertNotification:
        return AlertNotification(
            rule_id=rule.id,
            title=rule.name,
            metric=rule.metric,
            operator=rule.operator,
            threshold=rule.threshold,
            severity=rule.severity,
            current_value=value,
            message=(
                f"{rule.description}. Current value: {value:.2f}, "
                f"threshold: {rule.operator.value} {rule.threshold:g}"
            ),
            triggered_at=now,
            notifications=rule.notifications,
        )

    def _notify_listeners(self, event: str, rule: AlertRule) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, rule.copy())
            except Exception as exc:
                logger.exception("Rule listener %r raised on %s: %s", listener, event, exc)
