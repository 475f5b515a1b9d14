"""WastewaterSample model for NYS wastewater surveillance samples."""

from datetime import datetime

from sqlalchemy import DateTime, Float, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class WastewaterSample(Base):
    """
    One treatment-plant sample.

    average_concentration, alert_level, last_updated and pathogens describe the
    whole snapshot and are repeated on every row of it.
    """

    __tablename__ = "wastewater_data"

    id: Mapped[int] = mapped_column(primary_key=True)
    sample_date: Mapped[str | None] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    location: Mapped[str | None] = mapped_column(String(255))
    concentration: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    trend: Mapped[str] = mapped_column(String(20), default="stable", nullable=False)
    pathogen: Mapped[str | None] = mapped_column(String(50))

    average_concentration: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    alert_level: Mapped[str] = mapped_column(String(20), default="low", nullable=False)
    last_updated: Mapped[str | None] = mapped_column(String(50))
    pathogens: Mapped[str | None] = mapped_column(Text)  # JSON list

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<WastewaterSample {self.sample_date} {self.location}: {self.concentration}>"
