"""
security/tracker.py

ThreatProfileTracker — per-source accumulator of security events.

Per-source state machine:
    unknown → tracked(severity) → blocked   (until an explicit unblock)

Severity is recomputed from the source's events inside the rolling window
(default 24 h) on every new event:

    critical  ≥3 critical events  or ≥50 events
    high      ≥1 critical event   or ≥5 high events  or ≥20 events
    medium    ≥2 high events      or ≥10 events
    low       otherwise

The moment a profile becomes critical and is not already blocked, the
source is blocked and a SOURCE_AUTO_BLOCKED notice goes onto the outbox.
Whitelisted sources are tracked but never auto-blocked.

Manual block()/unblock() flip the flag directly; they never go through
severity computation.

Persistence is the caller's job: the tracker only records which profiles
changed (take_dirty_profiles) and which events still have to reach the
audit log (take_audit_events). Neither call does I/O.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from ..clock import SYSTEM_CLOCK, Clock
from ..metrics import Counter
from ..models import Severity
from ..pipeline import NotificationOutbox
from .models import (
    EVENT_HISTORY_LIMIT,
    SOURCE_AUTO_BLOCKED,
    SecurityNotice,
    ThreatEvent,
    ThreatProfile,
)

logger = logging.getLogger(__name__)

THREAT_WINDOW_SECONDS = 24 * 3600
PROFILE_RETENTION_SECONDS = 7 * 24 * 3600
_AUDIT_BUFFER_SIZE = 5_000


def compute_threat_severity(
    events: Iterable[ThreatEvent],
    now: float,
    window_seconds: float = THREAT_WINDOW_SECONDS,
) -> Severity:
    """Severity of a source given its events; only events inside the window count."""
    total = critical = high = 0
    for event in events:
        if now - event.timestamp >= window_seconds:
            continue
        total += 1
        if event.severity is Severity.CRITICAL:
            critical += 1
        elif event.severity is Severity.HIGH:
            high += 1

    if critical >= 3 or total >= 50:
        return Severity.CRITICAL
    if critical >= 1 or high >= 5 or total >= 20:
        return Severity.HIGH
    if high >= 2 or total >= 10:
        return Severity.MEDIUM
    return Severity.LOW


class ThreatProfileTracker:
    """
    Args:
        clock:             Time source.
        outbox:            Receives SecurityNotice on auto-block.
        whitelist:         Sources that are never auto-blocked.
        history_limit:     Events retained per profile.
        window_seconds:    Rolling window for severity computation.
        retention_seconds: Idle unblocked profiles older than this are
                           dropped by sweep().
        audit_buffer_size: Recorded events awaiting take_audit_events();
                           oldest dropped when full.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        outbox: NotificationOutbox | None = None,
        whitelist: Iterable[str] = (),
        history_limit: int = EVENT_HISTORY_LIMIT,
        window_seconds: float = THREAT_WINDOW_SECONDS,
        retention_seconds: float = PROFILE_RETENTION_SECONDS,
        audit_buffer_size: int = _AUDIT_BUFFER_SIZE,
    ) -> None:
        self._clock = clock or SYSTEM_CLOCK
        self._outbox = outbox
        self._whitelist = frozenset(whitelist)
        self._history_limit = history_limit
        self._window = window_seconds
        self._retention = retention_seconds

        self._lock = threading.Lock()
        self._profiles: dict[str, ThreatProfile] = {}
        self._blocked: set[str] = set()
        self._dirty: set[str] = set()
        self._audit: deque[ThreatEvent] = deque(maxlen=audit_buffer_size)

        self.events_recorded = Counter()
        self.auto_blocks = Counter()
        self.audit_dropped = Counter()

        logger.info(
            "ThreatProfileTracker initialised — window=%ss history=%d whitelist=%d source(s)",
            window_seconds, history_limit, len(self._whitelist),
        )

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def record(
        self,
        source: str,
        event_type: str,
        severity: Severity | str,
        details: dict[str, Any] | None = None,
        user_agent: str | None = None,
        user_id: str | None = None,
        action: str | None = None,
    ) -> ThreatEvent:
        """Build a ThreatEvent stamped with the tracker clock and record it."""
        event = ThreatEvent(
            source=source,
            event_type=event_type,
            severity=Severity.parse(severity),
            timestamp=self._clock.now(),
            details=dict(details or {}),
            user_agent=user_agent,
            user_id=user_id,
            action=action,
        )
        self.record_event(event)
        return event

    def record_event(self, event: ThreatEvent) -> ThreatProfile:
        """
        Add ``event`` to its source's profile, recompute severity and
        auto-block when the profile has just become critical.

        Always succeeds. Returns a copy of the updated profile.
        """
        notice: SecurityNotice | None = None
        now = self._clock.now()

        with self._lock:
            profile = self._profiles.get(event.source)
            if profile is None:
                profile = self._new_profile(event.source, event.timestamp)
                self._profiles[event.source] = profile

            profile.events.append(event)
            profile.event_count += 1
            profile.last_seen = max(profile.last_seen, event.timestamp)
            profile.severity = compute_threat_severity(profile.events, now, self._window)

            if (
                profile.severity is Severity.CRITICAL
                and not profile.is_blocked
                and event.source not in self._whitelist
            ):
                profile.is_blocked = True
                profile.blocked_at = now
                profile.block_reason = "automatic: threat severity reached critical"
                self._blocked.add(event.source)
                notice = SecurityNotice(
                    kind=SOURCE_AUTO_BLOCKED,
                    source=event.source,
                    severity=Severity.CRITICAL,
                    event_count=profile.event_count,
                    timestamp=now,
                    details={"last_event_type": event.event_type},
                )

            self._dirty.add(event.source)
            self._append_audit(event)
            result = profile.copy()

        self.events_recorded.inc()
        logger.debug(
            "Threat event %s from %s (%s) — profile severity=%s count=%d",
            event.event_type, event.source, event.severity.value,
            result.severity.value, result.event_count,
        )

        if notice is not None:
            self.auto_blocks.inc()
            logger.error(
                "Source %s auto-blocked — %d event(s), severity critical",
                notice.source, notice.event_count,
            )
            if self._outbox is not None:
                self._outbox.put(notice)

        return result

    # ------------------------------------------------------------------
    # Manual blocking
    # ------------------------------------------------------------------

    def block(self, source: str, reason: str | None = None) -> ThreatProfile:
        """Block ``source``, creating its profile (severity high) if needed."""
        now = self._clock.now()
        with self._lock:
            profile = self._profiles.get(source)
            if profile is None:
                profile = self._new_profile(source, now)
                profile.severity = Severity.HIGH
                self._profiles[source] = profile
            profile.is_blocked = True
            profile.blocked_at = now
            profile.block_reason = reason or "manual block"
            self._blocked.add(source)
            self._dirty.add(source)
            result = profile.copy()

        logger.warning("Source %s blocked manually — reason=%r", source, result.block_reason)
        return result

    def unblock(self, source: str) -> bool:
        """Returns False when the source is not currently blocked."""
        with self._lock:
            profile = self._profiles.get(source)
            if profile is None or not profile.is_blocked:
                return False
            profile.is_blocked = False
            profile.blocked_at = None
            profile.block_reason = None
            self._blocked.discard(source)
            self._dirty.add(source)

        logger.warning("Source %s unblocked manually", source)
        return True

    def is_blocked(self, source: str) -> bool:
        return source in self._blocked

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_profile(self, source: str) -> ThreatProfile | None:
        with self._lock:
            profile = self._profiles.get(source)
            return profile.copy() if profile is not None else None

    def profiles(self) -> list[ThreatProfile]:
        with self._lock:
            return [p.copy() for p in self._profiles.values()]

    def recent_events(self, limit: int = 100, source: str | None = None) -> list[ThreatEvent]:
        """Events still held in profile histories, newest first."""
        with self._lock:
            if source is not None:
                profile = self._profiles.get(source)
                events = list(profile.events) if profile is not None else []
            else:
                events = [e for p in self._profiles.values() for e in p.events]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def statistics(self, top_n: int = 10) -> dict[str, Any]:
        with self._lock:
            breakdown = {s.value: 0 for s in Severity}
            for profile in self._profiles.values():
                breakdown[profile.severity.value] += 1
            ranked = sorted(
                self._profiles.values(), key=lambda p: p.event_count, reverse=True
            )
            top = [
                {
                    "source": p.source,
                    "event_count": p.event_count,
                    "severity": p.severity.value,
                    "is_blocked": p.is_blocked,
                    "last_seen": p.last_seen,
                }
                for p in ranked[:top_n]
            ]
            return {
                "total_profiles": len(self._profiles),
                "blocked_count": len(self._blocked),
                "severity_breakdown": breakdown,
                "top_threats": top,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    # ------------------------------------------------------------------
    # Periodic cleanup
    # ------------------------------------------------------------------

    def sweep(self) -> list[str]:
        """
        Recompute every severity against the current window and drop
        unblocked profiles idle for longer than the retention period.

        Never unblocks a source. Returns the sources that were dropped.
        """
        now = self._clock.now()
        with self._lock:
            stale = [
                source
                for source, p in self._profiles.items()
                if not p.is_blocked and now - p.last_seen > self._retention
            ]
            for source in stale:
                del self._profiles[source]
                self._dirty.discard(source)

            for source, profile in self._profiles.items():
                severity = compute_threat_severity(profile.events, now, self._window)
                if severity is not profile.severity:
                    profile.severity = severity
                    self._dirty.add(source)

        if stale:
            logger.info("Threat sweep dropped %d idle profile(s)", len(stale))
        return stale

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------

    def load(self, profiles: Iterable[ThreatProfile]) -> int:
        """Replace in-memory state with previously persisted profiles."""
        with self._lock:
            self._profiles.clear()
            self._blocked.clear()
            self._dirty.clear()
            for profile in profiles:
                loaded = profile.copy()
                if loaded.events.maxlen != self._history_limit:
                    loaded.events = deque(loaded.events, maxlen=self._history_limit)
                self._profiles[loaded.source] = loaded
                if loaded.is_blocked:
                    self._blocked.add(loaded.source)
            count = len(self._profiles)

        logger.info("Loaded %d threat profile(s), %d blocked", count, len(self._blocked))
        return count

    def take_dirty_profiles(self) -> list[ThreatProfile]:
        """Copies of every profile changed since the last call; clears the dirty set."""
        with self._lock:
            dirty = [self._profiles[s].copy() for s in self._dirty if s in self._profiles]
            self._dirty.clear()
        return dirty

    def mark_dirty(self, sources: Iterable[str]) -> None:
        """Re-queue profiles for persistence, e.g. after a failed write."""
        with self._lock:
            self._dirty.update(s for s in sources if s in self._profiles)

    def take_audit_events(self) -> list[ThreatEvent]:
        with self._lock:
            events = list(self._audit)
            self._audit.clear()
        return events

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_profile(self, source: str, first_seen: float) -> ThreatProfile:
        return ThreatProfile(
            source=source,
            first_seen=first_seen,
            last_seen=first_seen,
            events=deque(maxlen=self._history_limit),
        )

    def _append_audit(self, event: ThreatEvent) -> None:
        if len(self._audit) == self._audit.maxlen:
            self.audit_dropped.inc()
        self._audit.append(event)
