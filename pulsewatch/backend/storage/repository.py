"""
storage/repository.py

ThreatRepository — durable store for threat profiles and the security
event audit log.

Write methods return False instead of raising on sqlite3.Error: the caller
(the persistence task) re-queues the data and in-memory state stays
authoritative.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Iterable

from ..security.models import ThreatEvent, ThreatProfile
from .database import Database

logger = logging.getLogger(__name__)

_MAX_EVENTS_PAGE = 500


class ThreatRepository:
    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = threading.Lock()

    # ==================================================================
    # Write methods
    # ==================================================================

    def save_profiles(self, profiles: Iterable[ThreatProfile]) -> bool:
        rows = [self._profile_row(p) for p in profiles]
        if not rows:
            return True
        with self._lock:
            try:
                self._db.executemany(
                    """
                    INSERT INTO threat_profiles (
                        source, first_seen, last_seen, event_count, severity,
                        is_blocked, blocked_at, block_reason, events, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source) DO UPDATE SET
                        first_seen   = excluded.first_seen,
                        last_seen    = excluded.last_seen,
                        event_count  = excluded.event_count,
                        severity     = excluded.severity,
                        is_blocked   = excluded.is_blocked,
                        blocked_at   = excluded.blocked_at,
                        block_reason = excluded.block_reason,
                        events       = excluded.events,
                        updated_at   = excluded.updated_at
                    """,
                    rows,
                )
                self._db.commit()
            except sqlite3.Error as exc:
                self._db.rollback()
                logger.error("save_profiles DB write failed (%d profile(s)): %s", len(rows), exc)
                return False
        logger.debug("Persisted %d threat profile(s)", len(rows))
        return True

    def delete_profiles(self, sources: Iterable[str]) -> bool:
        params = [(s,) for s in sources]
        if not params:
            return True
        with self._lock:
            try:
                self._db.executemany("DELETE FROM threat_profiles WHERE source = ?", params)
                self._db.commit()
            except sqlite3.Error as exc:
                self._db.rollback()
                logger.error("delete_profiles failed: %s", exc)
                return False
        return True

    def append_events(self, events: Iterable[ThreatEvent]) -> bool:
        rows = [
            (
                e.event_id, e.timestamp, e.source, e.event_type, e.severity.value,
                json.dumps(e.details, default=str), e.user_agent, e.user_id, e.action,
            )
            for e in events
        ]
        if not rows:
            return True
        with self._lock:
            try:
                self._db.executemany(
                    """
                    INSERT OR IGNORE INTO security_events (
                        event_id, timestamp, source, event_type, severity,
                        details, user_agent, user_id, action
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                self._db.commit()
            except sqlite3.Error as exc:
                self._db.rollback()
                logger.error("append_events DB write failed (%d event(s)): %s", len(rows), exc)
                return False
        return True

    # ==================================================================
    # Read methods
    # ==================================================================

    def load_profiles(self) -> list[ThreatProfile]:
        with self._lock:
            rows = self._db.execute("SELECT * FROM threat_profiles").fetchall()
        profiles = []
        for row in rows:
            try:
                profiles.append(self._row_to_profile(row))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping unreadable threat profile %r: %s", row["source"], exc)
        return profiles

    def get_recent_events(self, limit: int = 100, source: str | None = None) -> list[ThreatEvent]:
        limit = max(1, min(limit, _MAX_EVENTS_PAGE))
        sql = "SELECT * FROM security_events"
        params: list[Any] = []
        if source is not None:
            sql += " WHERE source = ?"
            params.append(source)
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._db.execute(sql, tuple(params)).fetchall()
        return [self._row_to_event(r) for r in rows]

    def count_events(self) -> int:
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM security_events").fetchone()
        return row[0] if row else 0

    # ==================================================================
    # Row mapping
    # ==================================================================

    @staticmethod
    def _profile_row(p: ThreatProfile) -> tuple:
        return (
            p.source,
            p.first_seen,
            p.last_seen,
            p.event_count,
            p.severity.value,
            int(p.is_blocked),
            p.blocked_at,
            p.block_reason,
            json.dumps([e.to_dict() for e in p.events], default=str),
            time.time(),
        )

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> ThreatProfile:
        d = dict(row)
        d["events"] = json.loads(d["events"] or "[]")
        d["is_blocked"] = bool(d["is_blocked"])
        return ThreatProfile.from_dict(d)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ThreatEvent:
        d = dict(row)
        try:
            d["details"] = json.loads(d["details"] or "{}")
        except (json.JSONDecodeError, TypeError):
            d["details"] = {}
        return ThreatEvent.from_dict(d)

    def close(self) -> None:
        self._db.close()
