"""
tests/test_threat_tracker.py

ThreatProfileTracker — severity escalation, auto-block, manual block,
sweep and persistence hooks.
"""

from __future__ import annotations

import pytest

from pulsewatch.backend.clock import ManualClock
from pulsewatch.backend.models import Severity
from pulsewatch.backend.pipeline import NotificationOutbox
from pulsewatch.backend.security import (
    SecurityNotice,
    ThreatEvent,
    ThreatProfile,
    ThreatProfileTracker,
    compute_threat_severity,
)

DAY = 24 * 3600


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def outbox() -> NotificationOutbox:
    return NotificationOutbox(maxsize=10)


@pytest.fixture
def tracker(clock, outbox) -> ThreatProfileTracker:
    return ThreatProfileTracker(clock=clock, outbox=outbox)


def events(n: int, severity: Severity, ts: float, source: str = "1.2.3.4") -> list[ThreatEvent]:
    return [ThreatEvent(source=source, event_type="TEST", severity=severity, timestamp=ts) for _ in range(n)]


# ---------------------------------------------------------------------------
# compute_threat_severity
# ---------------------------------------------------------------------------

class TestSeverity:

    NOW = 1_000_000.0

    @pytest.mark.parametrize("counts, expected", [
        ({}, Severity.LOW),
        ({Severity.LOW: 9}, Severity.LOW),
        ({Severity.LOW: 10}, Severity.MEDIUM),
        ({Severity.HIGH: 2}, Severity.MEDIUM),
        ({Severity.HIGH: 5}, Severity.HIGH),
        ({Severity.CRITICAL: 1}, Severity.HIGH),
        ({Severity.LOW: 20}, Severity.HIGH),
        ({Severity.CRITICAL: 3}, Severity.CRITICAL),
        ({Severity.LOW: 50}, Severity.CRITICAL),
        ({Severity.LOW: 49}, Severity.HIGH),
    ])
    def test_thresholds(self, counts, expected):
        evs = [e for sev, n in counts.items() for e in events(n, sev, self.NOW)]
        assert compute_threat_severity(evs, self.NOW) is expected

    def test_only_window_counts(self):
        old = events(5, Severity.CRITICAL, self.NOW - DAY - 1)
        assert compute_threat_severity(old, self.NOW) is Severity.LOW


# ---------------------------------------------------------------------------
# record_event
# ---------------------------------------------------------------------------

class TestRecordEvent:

    def test_first_event_creates_profile(self, tracker, clock):
        profile = tracker.record_event(events(1, Severity.LOW, clock.now())[0])
        assert profile.first_seen == clock.now()
        assert profile.event_count == 1
        assert profile.severity is Severity.LOW
        assert not profile.is_blocked

    def test_record_convenience_stamps_clock(self, tracker, clock):
        event = tracker.record("5.5.5.5", "SCANNING_ATTEMPT", "medium", details={"url": "/admin"})
        assert event.timestamp == clock.now()
        assert event.severity is Severity.MEDIUM
        assert tracker.get_profile("5.5.5.5").events[-1].details == {"url": "/admin"}

    def test_history_bounded_to_50_fifo(self, tracker, clock):
        for i in range(60):
            tracker.record_event(ThreatEvent(
                source="s", event_type=f"E{i}", severity=Severity.LOW, timestamp=clock.now(),
            ))
        profile = tracker.get_profile("s")
        assert len(profile.events) == 50
        assert profile.events[0].event_type == "E10"
        assert profile.event_count == 60

    def test_last_seen_updates(self, tracker, clock):
        tracker.record("s", "E", Severity.LOW)
        clock.advance(100)
        tracker.record("s", "E", Severity.LOW)
        profile = tracker.get_profile("s")
        assert profile.last_seen - profile.first_seen == 100

    def test_escalates_at_50_events_and_auto_blocks(self, tracker, clock, outbox):
        for _ in range(49):
            tracker.record("9.9.9.9", "SCANNING_ATTEMPT", Severity.LOW)
        assert tracker.get_profile("9.9.9.9").severity is Severity.HIGH
        assert not tracker.is_blocked("9.9.9.9")

        profile = tracker.record_event(events(1, Severity.LOW, clock.now(), "9.9.9.9")[0])

        assert profile.severity is Severity.CRITICAL
        assert profile.is_blocked
        assert tracker.is_blocked("9.9.9.9")
        notices = [n for n in outbox.drain() if isinstance(n, SecurityNotice)]
        assert len(notices) == 1
        assert notices[0].kind == "SOURCE_AUTO_BLOCKED"
        assert notices[0].source == "9.9.9.9"

    def test_auto_block_notice_emitted_once(self, tracker, outbox):
        for _ in range(5):
            tracker.record("7.7.7.7", "MALICIOUS_QUERY_PAYLOAD", Severity.CRITICAL)
        assert len(outbox.drain()) == 1
        assert tracker.auto_blocks.value == 1

    def test_whitelisted_source_never_auto_blocked(self, clock, outbox):
        tracker = ThreatProfileTracker(clock=clock, outbox=outbox, whitelist=["10.0.0.1"])
        for _ in range(3):
            tracker.record("10.0.0.1", "E", Severity.CRITICAL)
        assert tracker.get_profile("10.0.0.1").severity is Severity.CRITICAL
        assert not tracker.is_blocked("10.0.0.1")
        assert outbox.drain() == []

    def test_profiles_are_copies(self, tracker):
        tracker.record("s", "E", Severity.LOW)
        copy = tracker.get_profile("s")
        copy.events.clear()
        copy.is_blocked = True
        assert len(tracker.get_profile("s").events) == 1
        assert not tracker.is_blocked("s")


# ---------------------------------------------------------------------------
# Manual block / unblock
# ---------------------------------------------------------------------------

class TestBlocking:

    def test_block_unknown_source_creates_high_profile(self, tracker):
        profile = tracker.block("8.8.8.8", reason="abuse report")
        assert profile.severity is Severity.HIGH
        assert profile.block_reason == "abuse report"
        assert tracker.is_blocked("8.8.8.8")

    def test_block_unblock_round_trip(self, tracker):
        tracker.record("8.8.4.4", "E", Severity.LOW)
        tracker.block("8.8.4.4")
        assert tracker.is_blocked("8.8.4.4")
        assert tracker.unblock("8.8.4.4") is True
        assert not tracker.is_blocked("8.8.4.4")
        assert tracker.get_profile("8.8.4.4").severity is Severity.LOW

    def test_unblock_unknown_or_unblocked(self, tracker):
        assert tracker.unblock("nobody") is False
        tracker.record("s", "E", Severity.LOW)
        assert tracker.unblock("s") is False

    def test_block_does_not_recompute_severity(self, tracker):
        tracker.record("s", "E", Severity.LOW)
        assert tracker.block("s").severity is Severity.LOW

    def test_manual_block_emits_no_notice(self, tracker, outbox):
        tracker.block("s")
        assert outbox.drain() == []


# ---------------------------------------------------------------------------
# statistics / sweep
# ---------------------------------------------------------------------------

class TestStatistics:

    def test_statistics(self, tracker):
        for _ in range(3):
            tracker.record("a", "E", Severity.LOW)
        tracker.record("b", "E", Severity.LOW)
        tracker.block("c")
        stats = tracker.statistics(top_n=2)
        assert stats["total_profiles"] == 3
        assert stats["blocked_count"] == 1
        assert stats["severity_breakdown"] == {"low": 2, "medium": 0, "high": 1, "critical": 0}
        assert [t["source"] for t in stats["top_threats"]] == ["a", "b"]


class TestSweep:

    def test_severity_decays_after_window(self, tracker, clock):
        tracker.record("s", "E", Severity.CRITICAL)
        assert tracker.get_profile("s").severity is Severity.HIGH
        clock.advance(DAY + 1)
        tracker.sweep()
        assert tracker.get_profile("s").severity is Severity.LOW

    def test_sweep_never_unblocks(self, tracker, clock):
        for _ in range(3):
            tracker.record("s", "E", Severity.CRITICAL)
        clock.advance(30 * DAY)
        tracker.sweep()
        assert tracker.is_blocked("s")
        assert tracker.get_profile("s") is not None

    def test_idle_unblocked_profiles_dropped(self, tracker, clock):
        tracker.record("old", "E", Severity.LOW)
        clock.advance(8 * DAY)
        tracker.record("new", "E", Severity.LOW)
        assert tracker.sweep() == ["old"]
        assert tracker.get_profile("old") is None
        assert tracker.get_profile("new") is not None


# ---------------------------------------------------------------------------
# Persistence hooks
# ---------------------------------------------------------------------------

class TestPersistenceHooks:

    def test_dirty_profiles_taken_once(self, tracker):
        tracker.record("a", "E", Severity.LOW)
        tracker.record("b", "E", Severity.LOW)
        assert {p.source for p in tracker.take_dirty_profiles()} == {"a", "b"}
        assert tracker.take_dirty_profiles() == []

    def test_mark_dirty_requeues(self, tracker):
        tracker.record("a", "E", Severity.LOW)
        tracker.take_dirty_profiles()
        tracker.mark_dirty(["a", "unknown"])
        assert [p.source for p in tracker.take_dirty_profiles()] == ["a"]

    def test_audit_events(self, tracker):
        tracker.record("a", "E1", Severity.LOW)
        tracker.record("a", "E2", Severity.LOW)
        assert [e.event_type for e in tracker.take_audit_events()] == ["E1", "E2"]
        assert tracker.take_audit_events() == []

    def test_audit_buffer_bounded(self, clock):
        tracker = ThreatProfileTracker(clock=clock, audit_buffer_size=3)
        for i in range(5):
            tracker.record("a", f"E{i}", Severity.LOW)
        assert [e.event_type for e in tracker.take_audit_events()] == ["E2", "E3", "E4"]
        assert tracker.audit_dropped.value == 2

    def test_load_restores_blocked_set(self, tracker, clock):
        source = ThreatProfileTracker(clock=clock)
        source.record("x", "E", Severity.LOW)
        source.block("x")
        tracker.load(source.profiles())
        assert tracker.is_blocked("x")
        assert tracker.get_profile("x").event_count == 1

    def test_profile_dict_round_trip(self, tracker):
        tracker.record("a", "E", Severity.HIGH, details={"k": 1})
        profile = tracker.get_profile("a")
        restored = ThreatProfile.from_dict(profile.to_dict())
        assert restored.to_dict() == profile.to_dict()
