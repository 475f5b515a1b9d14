"""DiseaseStat model for notifiable disease counts (CDC NNDSS, NYC COVID, ILINet)."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class DiseaseStat(Base):
    """
    Current count for one tracked disease in one region.

    Snapshot-replaced per region on each sync. The *_ago_count columns keep
    the client's trend shape and stay at zero.
    """

    __tablename__ = "disease_stats"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    week_ago_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    month_ago_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    two_months_ago_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    year_ago_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit: Mapped[str | None] = mapped_column(String(50))
    last_updated: Mapped[str | None] = mapped_column(String(50))  # As reported upstream
    data_source: Mapped[str | None] = mapped_column(String(100))
    source_url: Mapped[str | None] = mapped_column(Text)
    region: Mapped[str] = mapped_column(String(10), default="nyc", nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<DiseaseStat {self.region}/{self.name}: {self.current_count}>"
