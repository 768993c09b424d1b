from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger("worksite.ws")

SUPERVISORS = "supervisors"


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, channel: str = SUPERVISORS) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[channel].add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for channel in list(self._connections.keys()):
                self._connections[channel].discard(websocket)
                if not self._connections[channel]:
                    del self._connections[channel]

    def connection_count(self, channel: str = SUPERVISORS) -> int:
        return len(self._connections.get(channel, ()))

    async def broadcast(self, message: dict[str, Any], channel: str = SUPERVISORS) -> None:
        async with self._lock:
            targets = list(self._connections.get(channel, set()))
        stale: list[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_json(message)
            except Exception:
                logger.debug("Dropping websocket that failed to receive '%s'", message.get("type"))
                stale.append(ws)
        for ws in stale:
            await self.disconnect(ws)

    async def publish(self, event_type: str, payload: dict[str, Any], channel: str = SUPERVISORS) -> None:
        if not self.connection_count(channel):
            return
        await self.broadcast({"type": event_type, "payload": payload}, channel=channel)


ws_manager = ConnectionManager()
