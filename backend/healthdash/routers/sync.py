"""Manual refresh and sync status endpoints."""

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.database import get_db
from healthdash.limiter import BURST_LIMIT, limiter
from healthdash.schemas import RefreshResponse, SyncStatusResponse
from healthdash.services.sync_service import SyncOrchestrator, get_sync_service
from healthdash.websocket.manager import manager as ws_manager
from healthdash.websocket.schemas import SyncStatusMessage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"model": RefreshResponse}},
)
@limiter.limit(BURST_LIMIT)
async def request_refresh(
    request: Request,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_service)],
    admin: bool = Query(False, description="Bypass the hourly quota"),
):
    """
    Ask for a full refresh.

    Returns scheduled, buffered (deferred to the next window) or rejected
    (quota used and a request already buffered, HTTP 429).
    """
    result = await orchestrator.request_manual_refresh(client_ip(request), is_admin=admin)

    if result.status == "rejected":
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=result.model_dump(mode="json", by_alias=True),
        )

    await ws_manager.broadcast(
        SyncStatusMessage(
            status=result.status,
            message=result.message,
            timestamp=datetime.now(UTC),
        )
    )
    return result


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_service)],
) -> SyncStatusResponse:
    """Whether a sync is running, plus the most recent runs."""
    return await orchestrator.get_status(db)
