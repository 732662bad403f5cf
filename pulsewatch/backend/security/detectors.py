"""
security/detectors.py

Request inspectors that turn suspicious HTTP traffic into findings.
They never touch the tracker themselves; the middleware converts findings
into ThreatEvents.

RequestInspector  — path scanning patterns, malicious payloads in nested
                    query/body structures
BruteForceGuard   — per-source attempt counter over a fixed window
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


SCANNING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.\./"),                                   # path traversal
    re.compile(r"/admin", re.I),
    re.compile(r"/wp-admin", re.I),
    re.compile(r"/phpmyadmin", re.I),
    re.compile(r"/backup", re.I),
    re.compile(r"/config", re.I),
    re.compile(r"/database", re.I),
    re.compile(r"/sql", re.I),
    re.compile(r"\.(env|config|backup|sql|db)$", re.I),
    re.compile(r"\.(php|asp|jsp|cgi)$", re.I),
)

MALICIOUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    # SQL injection
    re.compile(r"union\s+select", re.I),
    re.compile(r"or\s+1\s*=\s*1", re.I),
    re.compile(r"drop\s+table", re.I),
    re.compile(r"delete\s+from", re.I),
    re.compile(r"insert\s+into", re.I),
    re.compile(r"'(\s*or\s*'?1'?\s*=\s*'?1|admin'?\s*--)", re.I),
    # XSS
    re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.I),
    re.compile(r"javascript\s*:", re.I),
    re.compile(r"on\w+\s*=", re.I),
    re.compile(r"<iframe", re.I),
    # command injection
    re.compile(r";.*rm\s+-rf", re.I),
    re.compile(r"\|\s*nc\s", re.I),
    re.compile(r"bash\s+-i", re.I),
    re.compile(r"/bin/sh", re.I),
    # LDAP injection
    re.compile(r"\(\|\("),
    re.compile(r"\)\)\("),
    # NoSQL injection
    re.compile(r"\$where", re.I),
    re.compile(r"\$ne", re.I),
    re.compile(r"\$gt", re.I),
    re.compile(r"\$regex", re.I),
)

_MAX_DEPTH = 16


@dataclass(frozen=True, slots=True)
class PayloadFinding:
    path: str
    """Dotted location of the offending value, e.g. 'filter.name'."""
    pattern: str


class RequestInspector:
    """Stateless pattern matcher; safe to share between requests."""

    def __init__(
        self,
        scanning_patterns: tuple[re.Pattern[str], ...] = SCANNING_PATTERNS,
        malicious_patterns: tuple[re.Pattern[str], ...] = MALICIOUS_PATTERNS,
    ) -> None:
        self._scanning = scanning_patterns
        self._malicious = malicious_patterns

    def scanning_pattern(self, url: str) -> str | None:
        """Source of the first scanning pattern matching ``url``, else None."""
        for pattern in self._scanning:
            if pattern.search(url):
                return pattern.pattern
        return None

    def find_payload(self, payload: Any, path: str = "") -> PayloadFinding | None:
        """
        Walk strings, mappings and lists looking for a malicious pattern.
        Mapping keys are checked as well as values (NoSQL operators live in keys).
        """
        return self._walk(payload, path, 0)

    def _walk(self, obj: Any, path: str, depth: int) -> PayloadFinding | None:
        if depth > _MAX_DEPTH:
            return None
        if isinstance(obj, str):
            for pattern in self._malicious:
                if pattern.search(obj):
                    return PayloadFinding(path=path or "$", pattern=pattern.pattern)
            return None
        if isinstance(obj, Mapping):
            for key, value in obj.items():
                child = f"{path}.{key}" if path else str(key)
                found = self._walk(str(key), child, depth + 1) or self._walk(value, child, depth + 1)
                if found:
                    return found
            return None
        if isinstance(obj, (list, tuple)):
            for i, value in enumerate(obj):
                found = self._walk(value, f"{path}[{i}]", depth + 1)
                if found:
                    return found
        return None


class BruteForceGuard:
    """
    Counts attempts per source. The window starts at a source's first
    attempt and expires ``window_seconds`` later; a source is over the
    limit once it has made more than ``threshold`` attempts in one window.
    """

    def __init__(
        self,
        threshold: int = 5,
        window_seconds: float = 900.0,
        clock: Clock | None = None,
    ) -> None:
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock or SYSTEM_CLOCK
        self._attempts: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def hit(self, source: str) -> int:
        """Record one attempt; returns the attempt count in the current window."""
        now = self._clock.now()
        with self._lock:
            self._prune(now)
            count, first = self._attempts.get(source, (0, now))
            count += 1
            self._attempts[source] = (count, first)
        return count

    def exceeded(self, source: str) -> bool:
        now = self._clock.now()
        with self._lock:
            entry = self._attempts.get(source)
            if entry is None:
                return False
            count, first = entry
            if now - first > self.window_seconds:
                del self._attempts[source]
                return False
            return count > self.threshold

    def reset(self, source: str | None = None) -> None:
        with self._lock:
            if source is None:
                self._attempts.clear()
            else:
                self._attempts.pop(source, None)

    def _prune(self, now: float) -> None:
        expired = [s for s, (_, first) in self._attempts.items() if now - first > self.window_seconds]
        for s in expired:
            del self._attempts[s]
