"""
notify/models.py

Notification — what a channel receives: the routed, channel-agnostic form
of an AlertNotification or SecurityNotice.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import Severity


class Urgency(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Notification:
    kind: str
    """'alert' or 'security'."""

    title: str
    message: str
    severity: Severity
    urgency: Urgency
    channels: tuple[str, ...]
    timestamp: float
    payload: dict[str, Any] = field(default_factory=dict)
    notification_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "urgency": self.urgency.value,
            "channels": list(self.channels),
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }
