"""SyncRun model: append-only log of sync attempts."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class SyncRun(Base):
    """
    One attempt to refresh some or all datasets.

    Created with status 'running' when a sync starts and updated exactly once
    to 'success' or 'failed' when it settles. Rows are never deleted.
    """

    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(primary_key=True)

    # disease, wastewater, vaccination, news, all
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # scheduled, manual, buffered
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # 'system', 'user:<ip>', 'admin:<ip>', 'system:buffer_processor'
    triggered_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")

    # running -> success | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    duration_ms: Mapped[int | None] = mapped_column(Integer)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("idx_sync_log_started_at", started_at),)

    def __repr__(self) -> str:
        return f"<SyncRun {self.id} {self.sync_type}/{self.trigger_type}: {self.status}>"
