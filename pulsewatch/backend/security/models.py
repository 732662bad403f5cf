"""
security/models.py

ThreatEvent     — one classified security observation about a source
ThreatProfile   — per-source accumulator with bounded event history
SecurityNotice  — emitted by the tracker (e.g. on auto-block) for dispatch
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any

from ..models import Severity

EVENT_HISTORY_LIMIT = 50

# Event types raised by the HTTP inspectors
SCANNING_ATTEMPT = "SCANNING_ATTEMPT"
MALICIOUS_QUERY_PAYLOAD = "MALICIOUS_QUERY_PAYLOAD"
MALICIOUS_BODY_PAYLOAD = "MALICIOUS_BODY_PAYLOAD"
BRUTE_FORCE_ATTEMPT = "BRUTE_FORCE_ATTEMPT"
BLOCKED_SOURCE_ACCESS_ATTEMPT = "BLOCKED_SOURCE_ACCESS_ATTEMPT"

SOURCE_AUTO_BLOCKED = "SOURCE_AUTO_BLOCKED"


@dataclass(frozen=True, slots=True)
class ThreatEvent:
    source: str
    event_type: str
    severity: Severity
    timestamp: float = field(default_factory=time.time)
    details: dict[str, Any] = field(default_factory=dict)
    user_agent: str | None = None
    user_id: str | None = None
    action: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "source": self.source,
            "event_type": self.event_type,
            "severity": self.severity.value,
            "details": dict(self.details),
            "user_agent": self.user_agent,
            "user_id": self.user_id,
            "action": self.action,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ThreatEvent":
        return cls(
            source=d["source"],
            event_type=d["event_type"],
            severity=Severity.parse(d["severity"]),
            timestamp=float(d["timestamp"]),
            details=dict(d.get("details") or {}),
            user_agent=d.get("user_agent"),
            user_id=d.get("user_id"),
            action=d.get("action"),
            event_id=d.get("event_id") or str(uuid.uuid4()),
        )


@dataclass
class ThreatProfile:
    """
    Everything known about one source.

    ``events`` keeps only the most recent EVENT_HISTORY_LIMIT events;
    ``event_count`` keeps counting past that.
    """

    source: str
    first_seen: float
    last_seen: float
    event_count: int = 0
    events: deque[ThreatEvent] = field(
        default_factory=lambda: deque(maxlen=EVENT_HISTORY_LIMIT)
    )
    severity: Severity = Severity.LOW
    is_blocked: bool = False
    blocked_at: float | None = None
    block_reason: str | None = None

    def copy(self) -> "ThreatProfile":
        return replace(self, events=deque(self.events, maxlen=self.events.maxlen))

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "event_count": self.event_count,
            "events": [e.to_dict() for e in self.events],
            "severity": self.severity.value,
            "is_blocked": self.is_blocked,
            "blocked_at": self.blocked_at,
            "block_reason": self.block_reason,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any], history_limit: int = EVENT_HISTORY_LIMIT) -> "ThreatProfile":
        return cls(
            source=d["source"],
            first_seen=float(d["first_seen"]),
            last_seen=float(d["last_seen"]),
            event_count=int(d.get("event_count", 0)),
            events=deque(
                (ThreatEvent.from_dict(e) for e in d.get("events") or []),
                maxlen=history_limit,
            ),
            severity=Severity.parse(d.get("severity", Severity.LOW)),
            is_blocked=bool(d.get("is_blocked", False)),
            blocked_at=d.get("blocked_at"),
            block_reason=d.get("block_reason"),
        )


@dataclass(frozen=True, slots=True)
class SecurityNotice:
    kind: str
    source: str
    severity: Severity
    event_count: int
    timestamp: float
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return f"{self.kind.replace('_', ' ').title()}: {self.source}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "source": self.source,
            "severity": self.severity.value,
            "event_count": self.event_count,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }
