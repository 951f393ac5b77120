from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WSManager:
    """WebSocket clients grouped by channel name ("notifications", "track:<customer>", ...)."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._channels: Dict[str, Set[WebSocket]] = {}

    async def connect(self, channel: str, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._channels.setdefault(channel, set()).add(ws)

    async def disconnect(self, channel: str, ws: WebSocket) -> None:
        async with self._lock:
            clients = self._channels.get(channel)
            if clients is not None:
                clients.discard(ws)
                if not clients:
                    del self._channels[channel]

    async def broadcast(self, channel: str, payload: Any) -> None:
        async with self._lock:
            clients = list(self._channels.get(channel, ()))

        dead: list[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug(f"Dropping websocket on {channel}: {e}")
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._channels.get(channel, set()).discard(ws)
