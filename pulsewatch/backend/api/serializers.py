"""
api/serializers.py

Request and response bodies for the REST API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ..engine.models import AlertNotification, AlertRule


class NotificationFlagsModel(BaseModel):
    email: bool = False
    webhook: bool = False
    log: bool = True


class RuleCreateRequest(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    metric: str
    operator: str
    threshold: float
    severity: str = "medium"
    cooldown_seconds: float = 300.0
    enabled: bool = True
    notifications: NotificationFlagsModel = Field(default_factory=NotificationFlagsModel)


class RuleUpdateRequest(BaseModel):
    """Partial update — only the fields present in the request body are applied."""

    name: str | None = None
    description: str | None = None
    metric: str | None = None
    operator: str | None = None
    threshold: float | None = None
    severity: str | None = None
    cooldown_seconds: float | None = None
    enabled: bool | None = None
    notifications: NotificationFlagsModel | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class RuleResponse(BaseModel):
    id: str
    name: str
    description: str
    metric: str
    operator: str
    threshold: float
    severity: str
    cooldown_seconds: float
    enabled: bool
    last_triggered_at: float | None = None
    notifications: NotificationFlagsModel

    @classmethod
    def from_rule(cls, rule: AlertRule) -> "RuleResponse":
        return cls(**rule.to_dict())


class AlertResponse(BaseModel):
    alert_id: str
    rule_id: str
    title: str
    metric: str
    operator: str
    threshold: float
    severity: str
    current_value: float
    message: str
    triggered_at: float
    acknowledged_by: str | None = None
    acknowledged_at: float | None = None
    resolved: bool = False
    resolved_at: float | None = None
    resolved_by: str | None = None

    @classmethod
    def from_alert(cls, alert: AlertNotification) -> "AlertResponse":
        d = alert.to_dict()
        d.pop("notifications", None)
        return cls(**d)


class AcknowledgeRequest(BaseModel):
    by: str = Field(min_length=1)


class ResolveRequest(BaseModel):
    by: str | None = None


class BlockRequest(BaseModel):
    source: str = Field(min_length=1)
    reason: str | None = None


class ActionResponse(BaseModel):
    success: bool
    message: str
