"""
api/ws_manager.py

WebSocketManager — dashboard clients subscribed to named channels.

Channels:
    "alerts" — every dispatched notification (rule alerts and security notices)

Called only from coroutines on the event loop.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:

    def __init__(self) -> None:
        self._channels: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, channel: str) -> None:
        await websocket.accept()
        self._channels[channel].add(websocket)
        logger.debug("WS connected — channel=%r total=%d", channel, self.connection_count(channel))

    async def disconnect(self, websocket: WebSocket, channel: str) -> None:
        self._channels[channel].discard(websocket)
        logger.debug("WS disconnected — channel=%r remaining=%d", channel, self.connection_count(channel))

    async def broadcast(self, channel: str, message: dict) -> int:
        """
        Send ``message`` as JSON to every client on ``channel``.

        Clients whose send fails are dropped. Returns the number of clients
        that received the message.
        """
        clients = list(self._channels.get(channel, ()))
        if not clients:
            return 0

        payload = json.dumps(message, default=str)
        delivered = 0
        for ws in clients:
            try:
                await ws.send_text(payload)
                delivered += 1
            except Exception as exc:
                logger.debug("WS send failed (channel=%r): %s — removing", channel, exc)
                self._channels[channel].discard(ws)
        return delivered

    def connection_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def all_counts(self) -> dict[str, int]:
        return {ch: len(conns) for ch, conns in self._channels.items()}


ws_manager = WebSocketManager()
