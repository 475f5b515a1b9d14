"""VaccinationRecord model for NYC childhood and NYS seasonal vaccination data."""

from datetime import datetime

from sqlalchemy import DateTime, Float, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class VaccinationRecord(Base):
    __tablename__ = "vaccination_data"

    id: Mapped[int] = mapped_column(primary_key=True)
    region: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # nyc, nys
    vaccine_name: Mapped[str] = mapped_column(String(255), nullable=False)
    current_year: Mapped[float | None] = mapped_column(Float)
    five_years_ago: Mapped[float | None] = mapped_column(Float)  # -1 when unavailable
    ten_years_ago: Mapped[float | None] = mapped_column(Float)
    last_available_rate: Mapped[float | None] = mapped_column(Float)
    last_available_date: Mapped[str | None] = mapped_column(String(100))
    collection_method: Mapped[str | None] = mapped_column(Text)
    source_url: Mapped[str | None] = mapped_column(Text)
    calculation_details: Mapped[str | None] = mapped_column(Text)  # JSON object

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<VaccinationRecord {self.region}/{self.vaccine_name}: {self.current_year}>"
