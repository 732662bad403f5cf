"""
backend/errors.py

Exception hierarchy.

Expected "not found" outcomes are never raised — lookups return None and
administrative operations return False. Only configuration mistakes surface
as exceptions, so administrative tooling can reject bad input.
"""

from __future__ import annotations


class PulseWatchError(Exception):
    """Base class for all PulseWatch errors."""


class InvalidRuleError(PulseWatchError, ValueError):
    """An alert rule (or a rule update) failed validation.

    Raised by AlertRuleEngine.add_rule() / update_rule(); the rule set is
    left untouched when this is raised.
    """

    def __init__(self, rule_id: str, reason: str) -> None:
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"invalid alert rule {rule_id!r}: {reason}")
