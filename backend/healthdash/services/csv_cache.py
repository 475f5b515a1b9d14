"""Local download cache for large, periodically refreshed CSV resources."""

import asyncio
import hashlib
import logging
import secrets
from dataclasses import dataclass
from pathlib import Path

import httpx
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.database import upsert_insert
from healthdash.models import CsvCacheEntry
from healthdash.schemas.dashboard import CSVCacheStats
from healthdash.services.clock import Clock, as_utc, utcnow
from healthdash.services.open_data_client import OpenDataClient

logger = logging.getLogger(__name__)
settings = get_settings()


class CSVDownloadError(Exception):
    """Raised when a CSV cannot be downloaded and no cached copy is usable."""

    pass


@dataclass
class CSVCacheResult:
    data: str
    filename: str
    from_cache: bool
    last_modified: str | None = None


class CSVCacheService:
    """
    Conditional-GET cache for remote CSV files.

    Metadata lives in the csv_cache table, bytes live in cache_dir. Every
    generation gets a fresh filename so an in-flight read of the previous
    file is never overwritten. Served content is re-hashed first; a missing
    file or a hash mismatch is treated as a cache miss and re-downloaded.
    """

    def __init__(
        self,
        db: AsyncSession,
        client: OpenDataClient | None = None,
        cache_dir: str | Path = settings.csv_cache_path,
        max_size_bytes: int = settings.csv_cache_max_bytes,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.client = client or OpenDataClient()
        self.cache_dir = Path(cache_dir)
        self.max_size_bytes = max_size_bytes
        self.clock = clock

    @staticmethod
    def _hash(content: bytes) -> str:
        return hashlib.sha256(content).hexdigest()

    def _generate_filename(self, url: str) -> str:
        """<md5 of url>-<UTC timestamp>-<random suffix>.csv"""
        url_hash = hashlib.md5(url.encode("utf-8")).hexdigest()
        timestamp = self.clock().strftime("%Y%m%dT%H%M%S%fZ")
        return f"{url_hash}-{timestamp}-{secrets.token_hex(4)}.csv"

    @staticmethod
    def _decode(content: bytes) -> str:
        return content.decode("utf-8", errors="replace")

    # Blocking filesystem helpers, run via asyncio.to_thread

    @staticmethod
    def _read_bytes(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _write_bytes(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".part")
        tmp_path.write_bytes(content)
        tmp_path.replace(path)

    @staticmethod
    def _unlink(path: Path) -> None:
        path.unlink(missing_ok=True)

    def _list_files(self) -> list[tuple[Path, int, float]]:
        if not self.cache_dir.is_dir():
            return []
        files = []
        for path in self.cache_dir.iterdir():
            if path.is_file():
                stat = path.stat()
                files.append((path, stat.st_size, stat.st_mtime))
        return files

    async def _get_entry(self, url: str) -> CsvCacheEntry | None:
        result = await self.db.execute(
            select(CsvCacheEntry)
            .where(CsvCacheEntry.url == url)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_cached_csv(self, url: str, force_download: bool = False) -> CSVCacheResult:
        """
        Return the CSV at url, re-validating any cached copy with a conditional GET.

        Falls back to the verified cached copy when re-validation fails; raises
        CSVDownloadError only when there is no usable cached copy.
        """
        entry = await self._get_entry(url)

        if force_download:
            logger.info(f"CSV cache bypassed: url={url} reason=force_download")
            return await self._download(url, entry)

        if entry is None:
            logger.info(f"CSV cache miss: url={url} reason=no cache entry")
            return await self._download(url, None)

        content = await asyncio.to_thread(self._read_bytes, Path(entry.local_path))
        if content is None:
            logger.info(f"CSV cache miss: url={url} reason=cached file not found")
            return await self._download(url, entry)

        if self._hash(content) != entry.local_file_hash:
            logger.warning(f"CSV cache miss: url={url} reason=file integrity check failed")
            return await self._download(url, entry)

        cached = CSVCacheResult(
            data=self._decode(content),
            filename=entry.filename,
            from_cache=True,
            last_modified=entry.remote_last_modified,
        )

        try:
            response = await self.client.conditional_get(
                url, entry.remote_last_modified, entry.remote_etag
            )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to revalidate CSV, using cached version: url={url} error={e!r}")
            return cached

        if response.status_code == 304:
            logger.debug(f"CSV cache hit: url={url} last_modified={entry.remote_last_modified}")
            await self._touch(url)
            return cached

        if response.is_success:
            logger.info(
                f"CSV cache miss: url={url} reason=remote content updated (HTTP {response.status_code})"
            )
            return await self._store(
                url,
                response.content,
                response.headers.get("Last-Modified"),
                response.headers.get("ETag"),
                previous_path=entry.local_path,
            )

        logger.warning(
            f"Failed to revalidate CSV, using cached version: url={url} "
            f"status={response.status_code}"
        )
        return cached

    async def _touch(self, url: str) -> None:
        await self.db.execute(
            update(CsvCacheEntry)
            .where(CsvCacheEntry.url == url)
            .values(last_checked=self.clock())
        )
        await self.db.commit()

    async def _download(self, url: str, previous: CsvCacheEntry | None) -> CSVCacheResult:
        """Unconditional fetch; nothing to fall back to on failure."""
        try:
            response = await self.client.conditional_get(url)
        except httpx.HTTPError as e:
            logger.error(f"Failed to download CSV: url={url} error={e!r}")
            raise CSVDownloadError(f"Failed to download CSV from {url}: {e!r}") from e

        if not response.is_success:
            logger.error(f"Failed to download CSV: url={url} status={response.status_code}")
            raise CSVDownloadError(f"HTTP {response.status_code}: Failed to download CSV from {url}")

        return await self._store(
            url,
            response.content,
            response.headers.get("Last-Modified"),
            response.headers.get("ETag"),
            previous_path=previous.local_path if previous else None,
        )

    async def _store(
        self,
        url: str,
        content: bytes,
        last_modified: str | None,
        etag: str | None,
        previous_path: str | None = None,
    ) -> CSVCacheResult:
        """Write the file, then upsert its metadata row (one row per URL)."""
        filename = self._generate_filename(url)
        path = self.cache_dir / filename
        file_hash = self._hash(content)
        now = self.clock()

        await asyncio.to_thread(self._write_bytes, path, content)

        stmt = upsert_insert(self.db, CsvCacheEntry).values(
            url=url,
            filename=filename,
            local_path=str(path),
            remote_last_modified=last_modified,
            remote_etag=etag,
            local_file_hash=file_hash,
            download_count=1,
            last_checked=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["url"],
            set_={
                "filename": stmt.excluded.filename,
                "local_path": stmt.excluded.local_path,
                "remote_last_modified": stmt.excluded.remote_last_modified,
                "remote_etag": stmt.excluded.remote_etag,
                "local_file_hash": stmt.excluded.local_file_hash,
                "download_count": CsvCacheEntry.download_count + 1,
                "last_checked": now,
            },
        )

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            # Row not written, so the new file must not outlive it
            await asyncio.to_thread(self._unlink, path)
            raise

        if previous_path and previous_path != str(path):
            await asyncio.to_thread(self._unlink, Path(previous_path))

        await self.enforce_size_limit(keep=path)

        logger.info(
            f"CSV downloaded and cached: url={url} filename={filename} "
            f"last_modified={last_modified} etag={etag}"
        )
        return CSVCacheResult(
            data=self._decode(content),
            filename=filename,
            from_cache=False,
            last_modified=last_modified,
        )

    async def enforce_size_limit(self, keep: Path | None = None) -> int:
        """
        Evict files until the cache directory fits in max_size_bytes.

        Orphan files (no metadata row) go first, then the oldest entries.
        The keep path is never evicted. Returns the number of files removed.
        """
        files = await asyncio.to_thread(self._list_files)
        total = sum(size for _, size, _ in files)
        if total <= self.max_size_bytes:
            return 0

        result = await self.db.execute(
            select(CsvCacheEntry).order_by(CsvCacheEntry.created_at, CsvCacheEntry.id)
        )
        entries = list(result.scalars().all())
        referenced = {Path(entry.local_path) for entry in entries}
        sizes = {path: size for path, size, _ in files}
        removed = 0

        orphans = sorted(
            (f for f in files if f[0] not in referenced and f[0] != keep), key=lambda f: f[2]
        )
        for path, size, _ in orphans:
            if total <= self.max_size_bytes:
                break
            await asyncio.to_thread(self._unlink, path)
            total -= size
            removed += 1

        for entry in entries:
            if total <= self.max_size_bytes:
                break
            path = Path(entry.local_path)
            if path == keep:
                continue
            await asyncio.to_thread(self._unlink, path)
            await self.db.execute(delete(CsvCacheEntry).where(CsvCacheEntry.id == entry.id))
            total -= sizes.get(path, 0)
            removed += 1

        await self.db.commit()
        if removed:
            logger.info(f"Evicted {removed} cached CSV files to fit {self.max_size_bytes} bytes")
        return removed

    async def clear_cache(self) -> None:
        """Delete every cached file and metadata row."""
        try:
            files = await asyncio.to_thread(self._list_files)
            for path, _, _ in files:
                await asyncio.to_thread(self._unlink, path)
            await self.db.execute(delete(CsvCacheEntry))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to clear CSV cache: {e}")
            raise
        logger.info("CSV cache cleared")

    async def get_cache_stats(self) -> CSVCacheStats:
        """Entry count, on-disk size and oldest/newest entry creation times."""
        result = await self.db.execute(
            select(
                func.count(CsvCacheEntry.id),
                func.min(CsvCacheEntry.created_at),
                func.max(CsvCacheEntry.created_at),
            )
        )
        count, oldest, newest = result.one()
        files = await asyncio.to_thread(self._list_files)

        return CSVCacheStats(
            total_entries=count or 0,
            total_size=sum(size for _, size, _ in files),
            oldest_entry=as_utc(oldest),
            newest_entry=as_utc(newest),
        )
