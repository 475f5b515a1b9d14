"""Dashboard snapshot endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.database import get_db
from healthdash.schemas import DashboardResponse
from healthdash.services.dashboard import build_dashboard

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DashboardResponse:
    """
    Aggregated view of every dataset plus cache metadata.

    Reads the store as it is; never triggers a sync.
    """
    return await build_dashboard(db)
