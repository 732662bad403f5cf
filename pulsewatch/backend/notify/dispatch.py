"""
notify/dispatch.py

NotificationDispatcher — maps an alert or security notice to an urgency and
a channel set, then fans out to the registered channels.

Routing by severity:
    critical → urgent, log + email
    high     → high,   log
    medium   → medium, log
    low      → info,   log

For rule alerts the rule's own flags refine the route: email is only used
when both the route and the rule ask for it, webhook is added when the rule
asks for it. A registered "websocket" channel receives everything.

The log channel is awaited inline. Every other channel runs as a
fire-and-forget task; its failure is logged and counted, never raised.
Channels named in a route but not registered are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from ..engine.models import AlertNotification
from ..models import Severity
from ..security.models import SecurityNotice
from .channels import BaseChannel, LogChannel
from .models import Notification, Urgency

logger = logging.getLogger(__name__)

ROUTES: dict[Severity, tuple[Urgency, tuple[str, ...]]] = {
    Severity.CRITICAL: (Urgency.URGENT, ("log", "email")),
    Severity.HIGH: (Urgency.HIGH, ("log",)),
    Severity.MEDIUM: (Urgency.MEDIUM, ("log",)),
    Severity.LOW: (Urgency.INFO, ("log",)),
}


def route(item: AlertNotification | SecurityNotice) -> Notification:
    """Build the Notification for ``item``. Raises TypeError for anything else."""
    if isinstance(item, AlertNotification):
        urgency, channels = ROUTES[item.severity]
        selected = [c for c in channels if c != "email" or item.notifications.email]
        if item.notifications.webhook:
            selected.append("webhook")
        return Notification(
            kind="alert",
            title=item.title,
            message=item.message,
            severity=item.severity,
            urgency=urgency,
            channels=(*selected, "websocket"),
            timestamp=item.triggered_at,
            payload=item.to_dict(),
        )

    if isinstance(item, SecurityNotice):
        urgency, channels = ROUTES[item.severity]
        return Notification(
            kind="security",
            title=item.title,
            message=(
                f"Source {item.source} — {item.kind} after {item.event_count} event(s)"
            ),
            severity=item.severity,
            urgency=urgency,
            channels=(*channels, "websocket"),
            timestamp=item.timestamp,
            payload=item.to_dict(),
        )

    raise TypeError(f"cannot dispatch {type(item).__name__}")


class NotificationDispatcher:
    """
    Holds channel registrations only; no per-notification state survives
    beyond the in-flight send tasks.
    """

    def __init__(self, channels: Iterable[BaseChannel] = ()) -> None:
        self._channels: dict[str, BaseChannel] = {"log": LogChannel()}
        for channel in channels:
            self.register(channel)
        self._pending: set[asyncio.Task] = set()
        self.stats: dict[str, int] = {
            "dispatched": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
        }

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, channel: BaseChannel) -> None:
        self._channels[channel.name] = channel
        logger.info("Notification channel registered: %s", channel.name)

    def unregister(self, name: str) -> bool:
        return self._channels.pop(name, None) is not None

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, item: AlertNotification | SecurityNotice) -> Notification | None:
        """
        Route and fan out ``item``. Never raises: an unroutable item is
        logged and None is returned.
        """
        try:
            notification = route(item)
        except TypeError as exc:
            logger.error("Dropping notification: %s", exc)
            return None

        self.stats["dispatched"] += 1
        for name in notification.channels:
            channel = self._channels.get(name)
            if channel is None:
                self.stats["skipped"] += 1
                continue
            if name == "log":
                await self._send(channel, notification)
            else:
                task = asyncio.create_task(
                    self._send(channel, notification), name=f"notify-{name}"
                )
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        return notification

    async def aclose(self) -> None:
        """Wait for in-flight sends, then close every channel."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        for channel in self._channels.values():
            try:
                await channel.aclose()
            except Exception as exc:
                logger.warning("Error closing channel %s: %s", channel.name, exc)

    def as_dict(self) -> dict[str, Any]:
        return {
            **self.stats,
            "pending": len(self._pending),
            "channels": self.channel_names,
        }

    async def _send(self, channel: BaseChannel, notification: Notification) -> None:
        try:
            await channel.send(notification)
            self.stats["sent"] += 1
        except Exception as exc:
            self.stats["failed"] += 1
            logger.error(
                "Notification channel %s failed for %r: %s",
                channel.name, notification.title, exc,
            )
