"""
backend/service.py

MonitoringService — wires the components together and owns the periodic work.

    aggregator  ← request samples, cache outcomes
    engine      ← snapshots, on the alert tick only
    tracker     ← security events
    outbox      ← new alerts + security notices
    dispatcher  ← drains the outbox on the event loop

Periodic tasks:
    monitor   every MONITOR_INTERVAL_SECONDS  — snapshot history + threat sweep
    alerts    every ALERT_INTERVAL_SECONDS    — evaluate rules
    persist   every PERSIST_INTERVAL_SECONDS  — dirty profiles + audit events
    dispatch  every 0.5s                      — drain outbox into channels

Taking a snapshot never evaluates rules; check_alerts() is the only path
into AlertRuleEngine.evaluate().
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Any

from .aggregation import Aggregator
from .clock import Clock
from .config import Settings, settings
from .engine import AlertNotification, AlertRuleEngine
from .models import SystemMetricsSnapshot
from .notify import EmailChannel, NotificationDispatcher, WebhookChannel, WebSocketChannel
from .pipeline import NotificationOutbox
from .scheduler import PeriodicTask
from .security import BruteForceGuard, RequestInspector, ThreatEvent, ThreatProfileTracker
from .storage import Database, ThreatRepository

if TYPE_CHECKING:
    from .api.ws_manager import WebSocketManager

logger = logging.getLogger(__name__)

_DISPATCH_INTERVAL = 0.5
_UNSAVED_EVENTS_LIMIT = 5_000


class MonitoringService:
    """
    Handle passed to the HTTP adapter. Construct directly in tests, or with
    from_settings() in the application.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        engine: AlertRuleEngine,
        tracker: ThreatProfileTracker,
        outbox: NotificationOutbox,
        dispatcher: NotificationDispatcher | None = None,
        repository: ThreatRepository | None = None,
        clock: Clock | None = None,
        inspector: RequestInspector | None = None,
        brute_force: BruteForceGuard | None = None,
        monitor_interval: float = 30.0,
        alert_interval: float = 60.0,
        persist_interval: float = 30.0,
        snapshot_history_seconds: float = 86_400,
    ) -> None:
        self.aggregator = aggregator
        self.engine = engine
        self.tracker = tracker
        self.outbox = outbox
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.repository = repository
        self.inspector = inspector or RequestInspector()
        self.brute_force = brute_force or BruteForceGuard(clock=clock)
        self._history_seconds = snapshot_history_seconds

        self._history: deque[SystemMetricsSnapshot] = deque()
        self._history_lock = threading.Lock()
        self._unsaved_events: deque[ThreatEvent] = deque(maxlen=_UNSAVED_EVENTS_LIMIT)
        self._dropped_sources: set[str] = set()

        self._tasks = [
            PeriodicTask("monitor", monitor_interval, self.refresh),
            PeriodicTask("alerts", alert_interval, self.check_alerts),
            PeriodicTask("persist", persist_interval, self.persist),
            PeriodicTask("dispatch", _DISPATCH_INTERVAL, self.drain_notifications),
        ]
        self._started = False

    @classmethod
    def from_settings(
        cls,
        cfg: Settings = settings,
        clock: Clock | None = None,
        ws_manager: "WebSocketManager | None" = None,
        with_storage: bool = True,
    ) -> "MonitoringService":
        """Build every component from configuration."""
        outbox = NotificationOutbox(maxsize=cfg.NOTIFICATION_QUEUE_SIZE)

        channels = []
        if cfg.SMTP_HOST and cfg.ALERT_EMAIL_TO:
            channels.append(EmailChannel(
                host=cfg.SMTP_HOST,
                port=cfg.SMTP_PORT,
                recipients=cfg.ALERT_EMAIL_TO,
                sender=cfg.ALERT_EMAIL_FROM,
                username=cfg.SMTP_USERNAME,
                password=cfg.SMTP_PASSWORD,
                use_tls=cfg.SMTP_USE_TLS,
            ))
        if cfg.WEBHOOK_URL:
            channels.append(WebhookChannel(cfg.WEBHOOK_URL, timeout=cfg.WEBHOOK_TIMEOUT_SECONDS))
        if ws_manager is not None:
            channels.append(WebSocketChannel(ws_manager))

        repository = None
        if with_storage:
            db = Database(cfg.DB_PATH)
            db.init_schema()
            repository = ThreatRepository(db)

        return cls(
            aggregator=Aggregator(
                clock=clock,
                capacity=cfg.SAMPLE_CAPACITY,
                top_endpoints=cfg.TOP_ENDPOINTS_LIMIT,
                trend_points=cfg.MEMORY_TREND_POINTS,
            ),
            engine=AlertRuleEngine(
                clock=clock,
                history_limit=cfg.ALERT_HISTORY_LIMIT,
                outbox=outbox,
            ),
            tracker=ThreatProfileTracker(
                clock=clock,
                outbox=outbox,
                whitelist=cfg.WHITELIST_IPS,
                history_limit=cfg.THREAT_EVENT_HISTORY_LIMIT,
                window_seconds=cfg.THREAT_WINDOW_SECONDS,
                retention_seconds=cfg.THREAT_PROFILE_RETENTION_SECONDS,
                audit_buffer_size=cfg.THREAT_AUDIT_BUFFER_SIZE,
            ),
            outbox=outbox,
            dispatcher=NotificationDispatcher(channels),
            repository=repository,
            clock=clock,
            brute_force=BruteForceGuard(
                threshold=cfg.BRUTE_FORCE_THRESHOLD,
                window_seconds=cfg.BRUTE_FORCE_WINDOW_SECONDS,
                clock=clock,
            ),
            monitor_interval=cfg.MONITOR_INTERVAL_SECONDS,
            alert_interval=cfg.ALERT_INTERVAL_SECONDS,
            persist_interval=cfg.PERSIST_INTERVAL_SECONDS,
            snapshot_history_seconds=cfg.SNAPSHOT_HISTORY_SECONDS,
        )

    # ------------------------------------------------------------------
    # Periodic work (each also callable on demand)
    # ------------------------------------------------------------------

    def refresh(self) -> SystemMetricsSnapshot:
        """Record a snapshot in the rolling history and sweep stale threat data."""
        snapshot = self.aggregator.current_snapshot()
        cutoff = snapshot.timestamp - self._history_seconds
        with self._history_lock:
            self._history.append(snapshot)
            while self._history and self._history[0].timestamp < cutoff:
                self._history.popleft()
        self._dropped_sources.update(self.tracker.sweep())
        return snapshot

    def check_alerts(self) -> list[AlertNotification]:
        return self.engine.evaluate(self.aggregator.current_snapshot())

    async def persist(self) -> bool:
        """
        Write dirty profiles and pending audit events.

        Runs the SQLite calls in a worker thread. On failure the profiles
        are re-marked dirty and the events kept for the next attempt.
        """
        if self.repository is None:
            self.tracker.take_dirty_profiles()
            self.tracker.take_audit_events()
            return True

        profiles = self.tracker.take_dirty_profiles()
        ok = await asyncio.to_thread(self.repository.save_profiles, profiles)
        if not ok:
            self.tracker.mark_dirty(p.source for p in profiles)
            logger.warning("Threat profile persistence failed — %d profile(s) re-queued", len(profiles))

        # a swept source that came back owns its row again
        dropped = [s for s in self._dropped_sources if self.tracker.get_profile(s) is None]
        self._dropped_sources.clear()
        if not await asyncio.to_thread(self.repository.delete_profiles, dropped):
            self._dropped_sources.update(dropped)
            ok = False

        events = [*self._unsaved_events, *self.tracker.take_audit_events()]
        self._unsaved_events.clear()
        events_ok = await asyncio.to_thread(self.repository.append_events, events)
        if not events_ok:
            self._unsaved_events.extend(events)
            logger.warning("Audit log persistence failed — %d event(s) kept for retry", len(events))

        return ok and events_ok

    async def drain_notifications(self) -> int:
        items = self.outbox.drain()
        for item in items:
            await self.dispatcher.dispatch(item)
        return len(items)

    # ------------------------------------------------------------------
    # Reads / administration
    # ------------------------------------------------------------------

    def snapshot_history(self, since: float | None = None) -> list[SystemMetricsSnapshot]:
        with self._history_lock:
            if since is None:
                return list(self._history)
            return [s for s in self._history if s.timestamp >= since]

    def reset(self) -> None:
        """Zero the aggregator and forget the snapshot history."""
        self.aggregator.reset()
        with self._history_lock:
            self._history.clear()
        logger.info("Monitoring data reset")

    def load_state(self) -> int:
        if self.repository is None:
            return 0
        return self.tracker.load(self.repository.load_profiles())

    def stats(self) -> dict[str, Any]:
        return {
            "aggregator": self.aggregator.stats,
            "engine": dict(self.engine.stats),
            "tracker": {
                "profiles": len(self.tracker),
                "events_recorded": self.tracker.events_recorded.value,
                "auto_blocks": self.tracker.auto_blocks.value,
            },
            "outbox": self.outbox.as_dict(),
            "dispatcher": self.dispatcher.as_dict(),
            "tasks": {
                t.name: {"ticks": t.ticks.value, "failures": t.failures.value, "running": t.running}
                for t in self._tasks
            },
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        loaded = await asyncio.to_thread(self.load_state)
        for task in self._tasks:
            task.start()
        self._started = True
        logger.info("MonitoringService started — %d threat profile(s) restored", loaded)

    async def stop(self) -> None:
        if not self._started:
            return
        for task in self._tasks:
            await task.stop()
        await self.persist()
        await self.drain_notifications()
        await self.dispatcher.aclose()
        if self.repository is not None:
            self.repository.close()
        self._started = False
        logger.info("MonitoringService stopped — stats=%s", self.stats())
