"""engine/__init__.py"""
from .engine import AlertRuleEngine
from .models import AlertNotification, AlertRule, NotificationFlags, Operator
from .paths import resolve_metric_path
from .registry import ActiveAlertRegistry
from .rules import default_rules, validate_rule

__all__ = [
    "AlertRuleEngine",
    "AlertNotification",
    "AlertRule",
    "NotificationFlags",
    "Operator",
    "ActiveAlertRegistry",
    "resolve_metric_path",
    "default_rules",
    "validate_rule",
]
