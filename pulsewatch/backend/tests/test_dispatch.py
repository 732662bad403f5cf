"""
tests/test_dispatch.py

Notification routing and channel fan-out.
"""

from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from pulsewatch.backend.engine import AlertNotification, NotificationFlags, Operator
from pulsewatch.backend.models import Severity
from pulsewatch.backend.notify import (
    BaseChannel,
    EmailChannel,
    NotificationDispatcher,
    Urgency,
    WebhookChannel,
    WebSocketChannel,
    route,
)
from pulsewatch.backend.security import SecurityNotice


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_alert(severity: Severity = Severity.HIGH, **flags) -> AlertNotification:
    return AlertNotification(
        rule_id="r1",
        title="Error rate high",
        metric="error_rate",
        operator=Operator.GT,
        threshold=5.0,
        severity=severity,
        current_value=12.0,
        message="Error rate above 5%. Current value: 12.00, threshold: > 5",
        triggered_at=1_700_000_000.0,
        notifications=NotificationFlags(**flags),
    )


def make_notice() -> SecurityNotice:
    return SecurityNotice(
        kind="SOURCE_AUTO_BLOCKED",
        source="6.6.6.6",
        severity=Severity.CRITICAL,
        event_count=50,
        timestamp=1_700_000_000.0,
    )


class RecordingChannel(BaseChannel):
    def __init__(self, name: str) -> None:
        self.name = name
        self.received: list = []
        self.closed = False

    async def send(self, notification) -> None:
        self.received.append(notification)

    async def aclose(self) -> None:
        self.closed = True


class FailingChannel(BaseChannel):
    name = "email"

    async def send(self, notification) -> None:
        raise ConnectionError("smtp down")


class FakeManager:
    def __init__(self) -> None:
        self.messages: list[tuple[str, dict]] = []

    async def broadcast(self, channel: str, message: dict) -> int:
        self.messages.append((channel, message))
        return 1


async def settle(dispatcher: NotificationDispatcher) -> None:
    """Wait for fire-and-forget sends started by dispatch()."""
    await asyncio.gather(*list(dispatcher._pending), return_exceptions=True)


# ---------------------------------------------------------------------------
# route()
# ---------------------------------------------------------------------------

class TestRoute:

    @pytest.mark.parametrize("severity, urgency", [
        (Severity.CRITICAL, Urgency.URGENT),
        (Severity.HIGH, Urgency.HIGH),
        (Severity.MEDIUM, Urgency.MEDIUM),
        (Severity.LOW, Urgency.INFO),
    ])
    def test_urgency_by_severity(self, severity, urgency):
        assert route(make_alert(severity)).urgency is urgency

    def test_critical_alert_uses_email_only_when_rule_opts_in(self):
        assert "email" not in route(make_alert(Severity.CRITICAL)).channels
        assert "email" in route(make_alert(Severity.CRITICAL, email=True)).channels

    def test_email_flag_alone_does_not_email_non_critical(self):
        assert "email" not in route(make_alert(Severity.HIGH, email=True)).channels

    def test_webhook_flag_adds_webhook(self):
        assert route(make_alert(Severity.LOW, webhook=True)).channels == ("log", "webhook", "websocket")

    def test_security_notice_route(self):
        notification = route(make_notice())
        assert notification.kind == "security"
        assert notification.urgency is Urgency.URGENT
        assert notification.channels == ("log", "email", "websocket")
        assert "6.6.6.6" in notification.message

    def test_alert_payload(self):
        notification = route(make_alert())
        assert notification.kind == "alert"
        assert notification.payload["rule_id"] == "r1"
        assert notification.timestamp == 1_700_000_000.0

    def test_unknown_item_raises(self):
        with pytest.raises(TypeError):
            route({"severity": "high"})


# ---------------------------------------------------------------------------
# NotificationDispatcher
# ---------------------------------------------------------------------------

class TestDispatcher:

    def test_log_channel_registered_by_default(self):
        assert NotificationDispatcher().channel_names == ["log"]

    @pytest.mark.asyncio
    async def test_log_channel_writes_inline(self, caplog):
        dispatcher = NotificationDispatcher()
        with caplog.at_level(logging.WARNING, logger="pulsewatch.notifications"):
            await dispatcher.dispatch(make_alert(Severity.HIGH))
        assert any("Error rate high" in r.getMessage() for r in caplog.records)
        assert dispatcher.stats["sent"] == 1

    @pytest.mark.asyncio
    async def test_fans_out_to_registered_channels(self):
        ws = RecordingChannel("websocket")
        email = RecordingChannel("email")
        dispatcher = NotificationDispatcher([ws, email])

        await dispatcher.dispatch(make_alert(Severity.CRITICAL, email=True))
        await settle(dispatcher)

        assert len(ws.received) == 1
        assert len(email.received) == 1
        assert dispatcher.stats["sent"] == 3

    @pytest.mark.asyncio
    async def test_unregistered_channels_are_skipped(self):
        dispatcher = NotificationDispatcher()
        await dispatcher.dispatch(make_alert(Severity.CRITICAL, email=True, webhook=True))
        # email, webhook and websocket are not registered
        assert dispatcher.stats["skipped"] == 3

    @pytest.mark.asyncio
    async def test_failing_channel_is_counted_not_raised(self):
        dispatcher = NotificationDispatcher([FailingChannel()])
        notification = await dispatcher.dispatch(make_notice())
        await settle(dispatcher)
        assert notification is not None
        assert dispatcher.stats["failed"] == 1
        assert dispatcher.stats["sent"] == 1

    @pytest.mark.asyncio
    async def test_unroutable_item_returns_none(self):
        dispatcher = NotificationDispatcher()
        assert await dispatcher.dispatch("not a notification") is None
        assert dispatcher.stats["dispatched"] == 0

    @pytest.mark.asyncio
    async def test_aclose_waits_and_closes(self):
        ws = RecordingChannel("websocket")
        dispatcher = NotificationDispatcher([ws])
        await dispatcher.dispatch(make_alert())
        await dispatcher.aclose()
        assert len(ws.received) == 1
        assert ws.closed

    def test_unregister(self):
        dispatcher = NotificationDispatcher([RecordingChannel("websocket")])
        assert dispatcher.unregister("websocket") is True
        assert dispatcher.unregister("websocket") is False
        assert dispatcher.as_dict()["channels"] == ["log"]


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class TestWebhookChannel:

    @pytest.mark.asyncio
    async def test_posts_json(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        channel = WebhookChannel("https://hooks.example.test/in", transport=httpx.MockTransport(handler))
        await channel.send(route(make_alert(webhook=True)))

        body = json.loads(seen[0].content)
        assert seen[0].method == "POST"
        assert body["source"] == "pulsewatch"
        assert body["kind"] == "alert"
        assert body["severity"] == "high"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        channel = WebhookChannel(
            "https://hooks.example.test/in",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await channel.send(route(make_alert()))


class TestEmailChannel:

    def test_not_configured_without_recipients(self):
        assert not EmailChannel(host="smtp.example.test", recipients=[]).configured

    def test_build_message(self):
        channel = EmailChannel(host="smtp.example.test", recipients=["ops@example.test", "sec@example.test"])
        msg = channel.build_message(route(make_notice()))
        assert msg["Subject"].startswith("[PulseWatch][URGENT]")
        assert msg["To"] == "ops@example.test, sec@example.test"
        assert "Severity: critical" in msg.get_content()

    @pytest.mark.asyncio
    async def test_unconfigured_send_is_noop(self):
        await EmailChannel(host="", recipients=[]).send(route(make_notice()))


class TestWebSocketChannel:

    @pytest.mark.asyncio
    async def test_broadcasts_typed_message(self):
        manager = FakeManager()
        await WebSocketChannel(manager).send(route(make_notice()))
        channel, message = manager.messages[0]
        assert channel == "alerts"
        assert message["type"] == "security"
        assert message["data"]["payload"]["source"] == "6.6.6.6"
