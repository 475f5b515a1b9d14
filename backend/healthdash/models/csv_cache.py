"""CsvCacheEntry model: metadata for locally cached CSV downloads."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from healthdash.database import Base


class CsvCacheEntry(Base):
    """
    Metadata describing the current cached generation of one remote CSV.

    The file at local_path is written before this row, and local_file_hash is
    the SHA-256 of its bytes. A missing file or a hash mismatch is a cache miss.
    """

    __tablename__ = "csv_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)

    remote_last_modified: Mapped[str | None] = mapped_column(String(100))
    remote_etag: Mapped[str | None] = mapped_column(String(255))
    local_file_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    download_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_checked: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "url", "remote_last_modified", "remote_etag", name="uq_csv_cache_generation"
        ),
    )

    def __repr__(self) -> str:
        return f"<CsvCacheEntry {self.url}: {self.filename}>"
