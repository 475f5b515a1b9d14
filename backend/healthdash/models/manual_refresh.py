"""ManualRefreshRequest model for rate-limited refreshes deferred to the next window."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class ManualRefreshRequest(Base):
    """
    A buffered refresh request.

    At most one un-executed request exists per source IP. The buffered-request
    sweep flips executed/notification_sent once scheduled_for has passed.
    """

    __tablename__ = "manual_refresh_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    request_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100))

    request_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    executed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notification_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_manual_refresh_pending", source_ip, executed),
        Index("idx_manual_refresh_request_time", request_time),
        Index(
            "uq_manual_refresh_pending_ip",
            "source_ip",
            unique=True,
            postgresql_where=text("NOT executed"),
            sqlite_where=text("executed = 0"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ManualRefreshRequest {self.request_id} {self.source_ip} executed={self.executed}>"
