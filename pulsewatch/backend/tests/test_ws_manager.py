"""
tests/test_ws_manager.py

Tests for api/ws_manager.py — WebSocket channel manager.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from pulsewatch.backend.api.ws_manager import WebSocketManager


@pytest.fixture
def manager():
    return WebSocketManager()


def mock_ws():
    ws = AsyncMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_accepts_and_registers(self, manager):
        ws = mock_ws()
        await manager.connect(ws, "alerts")
        ws.accept.assert_called_once()
        assert manager.connection_count("alerts") == 1

    @pytest.mark.asyncio
    async def test_disconnect_removes_connection(self, manager):
        ws = mock_ws()
        await manager.connect(ws, "alerts")
        await manager.disconnect(ws, "alerts")
        assert manager.connection_count("alerts") == 0

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, manager):
        await manager.disconnect(mock_ws(), "alerts")
        assert manager.connection_count("alerts") == 0


class TestBroadcast:

    @pytest.mark.asyncio
    async def test_broadcast_sends_json_to_all(self, manager):
        ws1, ws2 = mock_ws(), mock_ws()
        await manager.connect(ws1, "alerts")
        await manager.connect(ws2, "alerts")

        message = {"type": "alert", "data": {"rule_id": "error-rate-high"}}
        assert await manager.broadcast("alerts", message) == 2

        expected = json.dumps(message, default=str)
        ws1.send_text.assert_called_once_with(expected)
        ws2.send_text.assert_called_once_with(expected)

    @pytest.mark.asyncio
    async def test_broadcast_drops_dead_connections(self, manager):
        good, bad = mock_ws(), mock_ws()
        bad.send_text = AsyncMock(side_effect=RuntimeError("connection reset"))
        await manager.connect(good, "alerts")
        await manager.connect(bad, "alerts")

        assert await manager.broadcast("alerts", {"type": "security"}) == 1
        assert manager.connection_count("alerts") == 1

    @pytest.mark.asyncio
    async def test_broadcast_to_empty_channel(self, manager):
        assert await manager.broadcast("alerts", {"type": "alert"}) == 0

    @pytest.mark.asyncio
    async def test_all_counts(self, manager):
        await manager.connect(mock_ws(), "alerts")
        assert manager.all_counts() == {"alerts": 1}
