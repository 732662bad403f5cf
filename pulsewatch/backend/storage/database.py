"""
storage/database.py

SQLite connection and schema for threat persistence.

  - WAL journal mode: the API can read events while the persistence task writes.
  - check_same_thread=False: writes happen in a worker thread via
    asyncio.to_thread; the repository serialises them with its own lock.
  - busy_timeout=5000ms: wait for a concurrent reader instead of raising
    SQLITE_BUSY straight away.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class Database:
    """
    Usage:
        db = Database("data/pulsewatch.db")
        db.init_schema()
        repo = ThreatRepository(db)
        ...
        db.close()

    ``":memory:"`` is accepted for tests.
    """

    def __init__(self, db_path: str = "data/pulsewatch.db") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._configure()
        logger.info("Database opened — path=%r", db_path)

    def _configure(self) -> None:
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA busy_timeout=5000")
        cur.execute("PRAGMA synchronous=NORMAL")
        self.conn.commit()

    def init_schema(self) -> None:
        """Create tables and indexes if they don't already exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS threat_profiles (
                source       TEXT PRIMARY KEY,
                first_seen   REAL NOT NULL,
                last_seen    REAL NOT NULL,
                event_count  INTEGER NOT NULL,
                severity     TEXT NOT NULL,
                is_blocked   INTEGER NOT NULL DEFAULT 0,
                blocked_at   REAL,
                block_reason TEXT,
                events       TEXT NOT NULL,
                updated_at   REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS security_events (
                event_id    TEXT PRIMARY KEY,
                timestamp   REAL NOT NULL,
                source      TEXT NOT NULL,
                event_type  TEXT NOT NULL,
                severity    TEXT NOT NULL,
                details     TEXT NOT NULL,
                user_agent  TEXT,
                user_id     TEXT,
                action      TEXT
            );

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_timestamp
                ON security_events(timestamp DESC);
            CREATE INDEX IF NOT EXISTS idx_events_source
                ON security_events(source);
            CREATE INDEX IF NOT EXISTS idx_profiles_blocked
                ON threat_profiles(is_blocked);
        """)
        self.conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, time.time()),
        )
        self.conn.commit()
        logger.info("Schema initialised (version=%d)", SCHEMA_VERSION)

    def schema_version(self) -> int:
        row = self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        try:
            self.conn.commit()
            self.conn.close()
            logger.info("Database closed — path=%r", self.db_path)
        except sqlite3.Error as exc:
            logger.warning("Error closing database: %s", exc)

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list) -> None:
        self.conn.executemany(sql, params_list)

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()
