"""RateLimitWindow model: per-IP request counts per aligned window."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class RateLimitWindow(Base):
    """Counts immediately-accepted manual refreshes per (hour_window, source_ip)."""

    __tablename__ = "rate_limit_tracking"

    id: Mapped[int] = mapped_column(primary_key=True)
    hour_window: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_request_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("hour_window", "source_ip", name="uq_rate_limit_window_ip"),
    )

    def __repr__(self) -> str:
        return f"<RateLimitWindow {self.source_ip}@{self.hour_window}: {self.request_count}>"
