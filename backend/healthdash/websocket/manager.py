"""WebSocket connection manager for broadcasting sync status updates."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel

from healthdash.config import get_settings
from healthdash.websocket.schemas import ConnectionEstablishedMessage, HeartbeatMessage

logger = logging.getLogger(__name__)
settings = get_settings()

# Close code for "try again later"
TRY_AGAIN_LATER = 1013


class ConnectionManager:
    """
    Manages WebSocket connections and broadcasts status messages.

    Designed for single-instance deployment. Connections beyond
    max_connections are accepted and immediately closed with 1013.
    """

    def __init__(self, max_connections: int = settings.ws_max_connections):
        self.max_connections = max_connections
        self._connections: dict[WebSocket, datetime] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        """Number of active connections."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> bool:
        """Accept a new WebSocket connection; returns False if it was refused."""
        await websocket.accept()
        async with self._lock:
            if len(self._connections) >= self.max_connections:
                refused = True
            else:
                refused = False
                self._connections[websocket] = datetime.now(UTC)

        if refused:
            logger.warning(
                f"WebSocket refused: max connections reached ({self.max_connections})"
            )
            await websocket.close(code=TRY_AGAIN_LATER, reason="Too many connections")
            return False

        logger.info(f"WebSocket connected. Total connections: {self.connection_count}")
        await self._send_safe(
            websocket, ConnectionEstablishedMessage(timestamp=datetime.now(UTC))
        )
        return True

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a disconnected WebSocket."""
        async with self._lock:
            if websocket in self._connections:
                del self._connections[websocket]
        logger.info(f"WebSocket disconnected. Total connections: {self.connection_count}")

    async def broadcast(self, message: BaseModel | dict[str, Any]) -> int:
        """
        Send message to every connected client.

        Clients whose send fails are dropped. Returns the number of clients
        the message was sent to.
        """
        async with self._lock:
            websockets = list(self._connections)
        if not websockets:
            return 0

        results = await asyncio.gather(
            *(self._send_safe(websocket, message) for websocket in websockets)
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast {message_type(message)} to {delivered} clients")
        return delivered

    async def send_heartbeat(self) -> int:
        return await self.broadcast(HeartbeatMessage(timestamp=datetime.now(UTC)))

    async def _send_safe(self, websocket: WebSocket, message: BaseModel | dict[str, Any]) -> bool:
        """Send message to websocket, dropping the connection on failure."""
        payload = message.model_dump(mode="json") if isinstance(message, BaseModel) else message
        try:
            await websocket.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to websocket: {e}")
            await self.disconnect(websocket)
            return False


def message_type(message: BaseModel | dict[str, Any]) -> str:
    if isinstance(message, BaseModel):
        return getattr(message, "type", type(message).__name__)
    return str(message.get("type"))


# Global singleton instance
manager = ConnectionManager()
