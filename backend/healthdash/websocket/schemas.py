"""WebSocket message schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ConnectionEstablishedMessage(BaseModel):
    """Sent once, right after a client connects."""

    type: Literal["connection_established"] = "connection_established"
    timestamp: datetime


class SyncStatusMessage(BaseModel):
    """Refresh admission result or sync lifecycle change."""

    type: Literal["sync_status"] = "sync_status"
    # scheduled, buffered, rejected, running, success, failed
    status: str
    message: str
    timestamp: datetime | None = None


class HeartbeatMessage(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime


class PingMessage(BaseModel):
    """Ping message for keep-alive."""

    type: Literal["ping"] = "ping"


class PongMessage(BaseModel):
    """Pong response for keep-alive."""

    type: Literal["pong"] = "pong"


class ErrorMessage(BaseModel):
    """Error message from server."""

    type: Literal["error"] = "error"
    message: str
