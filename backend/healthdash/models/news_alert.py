"""NewsAlert model for public-health press releases and CDC alerts."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class NewsAlert(Base):
    __tablename__ = "news_data"

    id: Mapped[int] = mapped_column(primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    date: Mapped[str | None] = mapped_column(String(100))  # As published
    severity: Mapped[str] = mapped_column(String(20), default="info", nullable=False)
    source: Mapped[str | None] = mapped_column(String(100))
    url: Mapped[str | None] = mapped_column(Text)
    region: Mapped[str | None] = mapped_column(String(10), index=True)  # nyc, nys, usa

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<NewsAlert {self.alert_id}: {self.title}>"
