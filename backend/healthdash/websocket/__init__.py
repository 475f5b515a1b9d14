"""WebSocket module for sync status push updates."""

from healthdash.websocket.manager import ConnectionManager
from healthdash.websocket.router import router as websocket_router

__all__ = ["ConnectionManager", "websocket_router"]
