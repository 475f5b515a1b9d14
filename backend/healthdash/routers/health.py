"""Health and status endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from healthdash.config import get_settings

settings = get_settings()

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime


class StatusResponse(BaseModel):
    status: str
    version: str
    environment: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check."""
    return HealthResponse(status="ok", timestamp=datetime.now(UTC))


@router.get(f"{settings.api_prefix}/status", response_model=StatusResponse)
async def api_status() -> StatusResponse:
    return StatusResponse(
        status="running",
        version=settings.version,
        environment=settings.environment,
    )
