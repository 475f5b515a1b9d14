"""Pydantic schemas for manual refresh and sync status."""

from datetime import datetime
from typing import Literal

from healthdash.schemas.base import CamelModel


class RefreshResponse(CamelModel):
    """Admission decision for a manual refresh request."""

    status: Literal["scheduled", "buffered", "rejected"]
    message: str
    scheduled_time: datetime | None = None


class SyncRunOut(CamelModel):
    id: int
    sync_type: str
    trigger_type: str
    triggered_by: str
    status: str
    records_processed: int
    error_message: str | None = None
    duration_ms: int | None = None
    started_at: datetime
    completed_at: datetime | None = None


class SyncStatusResponse(CamelModel):
    is_syncing: bool
    last_run: SyncRunOut | None = None
    recent_runs: list[SyncRunOut] = []
