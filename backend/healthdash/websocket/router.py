"""WebSocket router for sync status push updates."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from healthdash.websocket.manager import manager
from healthdash.websocket.schemas import ErrorMessage, PongMessage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_status(websocket: WebSocket):
    """
    WebSocket endpoint for sync status updates.

    Message formats:
    Client -> Server:
        {"type": "ping"}

    Server -> Client:
        {"type": "connection_established", "timestamp": "..."}
        {"type": "sync_status", "status": "buffered", "message": "...", "timestamp": "..."}
        {"type": "heartbeat", "timestamp": "..."}
        {"type": "pong"}
        {"type": "error", "message": "..."}
    """
    if not await manager.connect(websocket):
        return

    try:
        while True:
            raw_message = await websocket.receive_text()

            try:
                data = json.loads(raw_message)
            except json.JSONDecodeError:
                await websocket.send_json(ErrorMessage(message="Invalid JSON").model_dump())
                continue

            msg_type = data.get("type") if isinstance(data, dict) else None
            if msg_type == "ping":
                await websocket.send_json(PongMessage().model_dump())
            else:
                error = ErrorMessage(message=f"Unknown message type: {msg_type}")
                await websocket.send_json(error.model_dump())

    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        await manager.disconnect(websocket)
