"""
notify/channels.py

Channel senders used by NotificationDispatcher.

    LogChannel        — stdlib logging, level follows urgency
    EmailChannel      — SMTP via smtplib, run in a worker thread
    WebhookChannel    — JSON POST via httpx.AsyncClient
    WebSocketChannel  — broadcast to dashboard clients via WebSocketManager

Every channel exposes ``async send(notification)``. Channels raise on
failure; the dispatcher is the one that catches and logs.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import TYPE_CHECKING, Iterable

import httpx

from .models import Notification, Urgency

if TYPE_CHECKING:
    from ..api.ws_manager import WebSocketManager

logger = logging.getLogger(__name__)


class BaseChannel(ABC):
    name: str = "base"

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        ...

    async def aclose(self) -> None:
        """Release any held resources. Default: nothing to release."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class LogChannel(BaseChannel):
    name = "log"

    _LEVELS = {
        Urgency.URGENT: logging.ERROR,
        Urgency.HIGH: logging.WARNING,
        Urgency.MEDIUM: logging.INFO,
        Urgency.INFO: logging.INFO,
    }

    def __init__(self, logger_name: str = "pulsewatch.notifications") -> None:
        self._log = logging.getLogger(logger_name)

    async def send(self, notification: Notification) -> None:
        self._log.log(
            self._LEVELS[notification.urgency],
            "[%s] %s — %s",
            notification.urgency.value.upper(), notification.title, notification.message,
        )


class EmailChannel(BaseChannel):
    name = "email"

    def __init__(
        self,
        host: str,
        recipients: Iterable[str],
        sender: str = "pulsewatch@localhost",
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.recipients = list(recipients)
        self.sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.recipients)

    def build_message(self, notification: Notification) -> EmailMessage:
        sent_at = datetime.fromtimestamp(notification.timestamp, tz=timezone.utc)
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = f"[PulseWatch][{notification.urgency.value.upper()}] {notification.title}"
        msg.set_content(
            f"{notification.message}\n\n"
            f"Severity: {notification.severity.value}\n"
            f"Time: {sent_at.isoformat()}\n"
        )
        return msg

    async def send(self, notification: Notification) -> None:
        if not self.configured:
            logger.debug("Email channel not configured — skipping %s", notification.title)
            return
        await asyncio.to_thread(self._deliver, self.build_message(notification))

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)
        logger.info("Alert email sent to %d recipient(s): %s", len(self.recipients), msg["Subject"])


class WebhookChannel(BaseChannel):
    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def send(self, notification: Notification) -> None:
        payload = {"source": "pulsewatch", **notification.to_dict()}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()
        logger.debug("Webhook delivered — %s status=%d", self.url, resp.status_code)


class WebSocketChannel(BaseChannel):
    name = "websocket"

    def __init__(self, manager: "WebSocketManager", channel: str = "alerts") -> None:
        self._manager = manager
        self._channel = channel

    async def send(self, notification: Notification) -> None:
        await self._manager.broadcast(
            self._channel,
            {"type": notification.kind, "data": notification.to_dict()},
        )
