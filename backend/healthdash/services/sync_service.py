"""
Sync orchestrator: scheduled and manual full syncs, refresh admission and
buffered-request replay.

Only one full sync runs at a time, process-wide. The flag is checked and
set with no await in between, which is atomic on the event loop.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthdash.config import Settings, get_settings
from healthdash.database import async_session_maker
from healthdash.models import SyncRun
from healthdash.schemas.sync import RefreshResponse, SyncRunOut, SyncStatusResponse
from healthdash.services.clock import Clock, as_utc, utcnow
from healthdash.services.dashboard import record_snapshot
from healthdash.services.disease import DiseaseService
from healthdash.services.news import NewsService
from healthdash.services.rate_limiter import RateLimiter
from healthdash.services.vaccination import VaccinationService
from healthdash.services.wastewater import WastewaterService
from healthdash.websocket.manager import manager as ws_manager

logger = logging.getLogger(__name__)

SYNC_IN_PROGRESS = "sync in progress"
BUFFER_PROCESSOR = "system:buffer_processor"
INTERRUPTED_MESSAGE = "Interrupted: process exited before the sync completed"


class DatasetAdapter(Protocol):
    label: str

    async def sync_data(self) -> int: ...


AdapterFactory = Callable[[AsyncSession], DatasetAdapter]
StatusCallback = Callable[[dict[str, Any]], Awaitable[None]]

DEFAULT_ADAPTERS: tuple[AdapterFactory, ...] = (
    DiseaseService,
    WastewaterService,
    VaccinationService,
    NewsService,
)


class SyncSourceError(Exception):
    """An adapter failure, labeled with the adapter that raised it."""

    def __init__(self, label: str, error: BaseException):
        self.label = label
        self.error = error
        super().__init__(f"{label}: {error}")


@dataclass
class SyncResult:
    success: bool
    errors: list[str] = field(default_factory=list)
    run_id: int | None = None
    records_processed: int = 0
    duration_ms: int = 0
    rejected: bool = False


class SyncOrchestrator:
    """
    Coordinates full syncs across the dataset adapters.

    Features:
    - Global mutual exclusion; a sync requested while one runs is rejected, not queued
    - Adapters run concurrently, each with its own session; failures are isolated
    - Every run leaves exactly one terminal sync_log row
    - Manual refresh admission: admin bypass, per-IP window quota, one buffered request per IP
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] = async_session_maker,
        adapter_factories: tuple[AdapterFactory, ...] | list[AdapterFactory] = DEFAULT_ADAPTERS,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        on_status: StatusCallback | None = None,
        record_snapshots: bool = True,
    ):
        self.session_maker = session_maker
        self.adapter_factories = tuple(adapter_factories)
        self.settings = settings or get_settings()
        self.clock = clock
        self.on_status = on_status
        self.record_snapshots = record_snapshots

        self._is_syncing = False
        self._admission_lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def _rate_limiter(self, db: AsyncSession) -> RateLimiter:
        return RateLimiter(
            db,
            max_per_window=self.settings.manual_refresh_max_per_hour,
            window_minutes=self.settings.rate_limit_window_minutes,
            buffer_first_request=self.settings.buffer_immediate_first_request,
            clock=self.clock,
        )

    async def _notify(self, status: str, message: str) -> None:
        if self.on_status is None:
            return
        try:
            await self.on_status(
                {
                    "type": "sync_status",
                    "status": status,
                    "message": message,
                    "timestamp": self.clock().isoformat(),
                }
            )
        except Exception as e:
            logger.warning(f"Failed to publish sync status: status={status} error={e}")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run coro in the background; the caller does not wait for it."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for every spawned sync to settle (tests and shutdown)."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _start_run(self, trigger_type: str, triggered_by: str) -> int:
        async with self.session_maker() as db:
            run = SyncRun(
                sync_type="all",
                trigger_type=trigger_type,
                triggered_by=triggered_by,
                status="running",
                started_at=self.clock(),
            )
            db.add(run)
            await db.commit()
            return run.id

    async def _finish_run(
        self,
        run_id: int | None,
        trigger_type: str,
        triggered_by: str,
        values: dict[str, Any],
    ) -> int:
        async with self.session_maker() as db:
            if run_id is None:
                # The start row was never written; record the outcome on its own
                run = SyncRun(
                    sync_type="all",
                    trigger_type=trigger_type,
                    triggered_by=triggered_by,
                    **values,
                )
                db.add(run)
                await db.commit()
                return run.id

            await db.execute(update(SyncRun).where(SyncRun.id == run_id).values(**values))
            await db.commit()
            return run_id

    async def _run_adapter(self, factory: AdapterFactory) -> int:
        async with self.session_maker() as db:
            adapter = factory(db)
            try:
                count = await adapter.sync_data()
            except Exception as e:
                logger.error(f"Sync source failed: source={adapter.label} error={e!r}")
                raise SyncSourceError(adapter.label, e) from e
            return count or 0

    async def _record_snapshot(self) -> None:
        try:
            async with self.session_maker() as db:
                await record_snapshot(db, self.clock)
        except Exception as e:
            logger.error(f"Failed to store dashboard snapshot: {e}", exc_info=True)

    async def run_full_sync(
        self, trigger_type: str = "scheduled", triggered_by: str = "system"
    ) -> SyncResult:
        """
        Run every adapter once, concurrently.

        Returns a rejected result without side effects if a sync is already
        running. The run succeeds only if no adapter failed.
        """
        if self._is_syncing:
            logger.warning(
                f"Sync rejected: reason={SYNC_IN_PROGRESS} trigger={trigger_type} "
                f"triggered_by={triggered_by}"
            )
            return SyncResult(success=False, errors=[SYNC_IN_PROGRESS], rejected=True)
        self._is_syncing = True

        started = time.monotonic()
        values: dict[str, Any] = {"started_at": self.clock()}
        run_id: int | None = None
        errors: list[str] = []
        records = 0

        try:
            logger.info(
                f"Sync started: source=all trigger={trigger_type} triggered_by={triggered_by}"
            )
            run_id = await self._start_run(trigger_type, triggered_by)
            await self._notify("running", f"Sync started ({trigger_type})")

            results = await asyncio.gather(
                *(self._run_adapter(factory) for factory in self.adapter_factories),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    errors.append(str(result))
                else:
                    records += result

            if self.record_snapshots:
                await self._record_snapshot()
        except Exception as e:
            logger.error(f"Sync error: source=all error={e!r}", exc_info=True)
            errors.append(f"Sync: {e}")
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            values.update(
                status="failed" if errors else "success",
                records_processed=records,
                error_message="; ".join(errors) or None,
                duration_ms=duration_ms,
                completed_at=self.clock(),
            )
            try:
                run_id = await self._finish_run(run_id, trigger_type, triggered_by, values)
            except Exception as e:
                logger.error(f"Failed to record sync completion: {e}", exc_info=True)
            self._is_syncing = False

        if errors:
            logger.error(
                f"Sync failed: source=all trigger={trigger_type} duration_ms={duration_ms} "
                f"records={records} error={'; '.join(errors)}"
            )
            await self._notify("failed", f"Sync failed: {'; '.join(errors)}")
        else:
            logger.info(
                f"Sync completed: source=all trigger={trigger_type} duration_ms={duration_ms} "
                f"records={records}"
            )
            await self._notify("success", f"Sync completed: {records} records")

        return SyncResult(
            success=not errors,
            errors=errors,
            run_id=run_id,
            records_processed=records,
            duration_ms=duration_ms,
        )

    async def request_manual_refresh(
        self, source_ip: str, is_admin: bool = False, user_id: str | None = None
    ) -> RefreshResponse:
        """
        Decide scheduled / buffered / rejected for a manual refresh.

        Accepted refreshes start in the background; only the decision is awaited.
        """
        if is_admin and self.settings.admin_bypass_rate_limit:
            self._spawn(self.run_full_sync("manual", f"admin:{source_ip}"))
            logger.info(f"Manual refresh scheduled: ip={source_ip} admin=true")
            return RefreshResponse(
                status="scheduled",
                message="Admin refresh triggered, rate limit bypassed",
            )

        async with self._admission_lock:
            async with self.session_maker() as db:
                limiter = self._rate_limiter(db)

                if await limiter.check_rate_limit(source_ip):
                    await limiter.track_request(source_ip)
                    self._spawn(self.run_full_sync("manual", f"user:{source_ip}"))
                    logger.info(f"Manual refresh scheduled: ip={source_ip}")
                    return RefreshResponse(status="scheduled", message="Refresh triggered")

                request = await limiter.buffer_request(source_ip, user_id)
                if request is not None:
                    return RefreshResponse(
                        status="buffered",
                        message="Rate limit exceeded, buffered for next window",
                        scheduled_time=as_utc(request.scheduled_for),
                    )

        logger.info(f"Manual refresh rejected: ip={source_ip} reason=buffer full")
        return RefreshResponse(status="rejected", message="Rate limit exceeded and buffer full")

    async def process_buffered_requests(self) -> SyncResult | None:
        """
        Replay every due buffered request with a single sync.

        Returns None when nothing is due. If the sync is rejected because
        another one is running, the requests stay pending for the next sweep.
        """
        async with self.session_maker() as db:
            due = await self._rate_limiter(db).get_due_requests()
            request_ids = [request.id for request in due]

        if not request_ids:
            return None

        logger.info(f"Processing buffered refresh requests: count={len(request_ids)}")
        result = await self.run_full_sync("buffered", BUFFER_PROCESSOR)
        if result.rejected:
            logger.info(f"Buffered refresh requests deferred: count={len(request_ids)}")
            return result

        async with self.session_maker() as db:
            await self._rate_limiter(db).mark_executed(request_ids)
        return result

    async def recover_interrupted_runs(self) -> int:
        """Mark runs left 'running' by a previous process as failed."""
        if self._is_syncing:
            return 0
        async with self.session_maker() as db:
            result = await db.execute(
                update(SyncRun)
                .where(SyncRun.status == "running")
                .values(
                    status="failed",
                    error_message=INTERRUPTED_MESSAGE,
                    completed_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount:
            logger.warning(f"Marked interrupted sync runs as failed: count={result.rowcount}")
        return result.rowcount

    async def get_running_run(self) -> SyncRun | None:
        """Newest sync_log row still marked 'running', by any process."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(SyncRun)
                .where(SyncRun.status == "running")
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def initialize(self) -> None:
        """Startup recovery; the buffered sweep itself is run by the scheduler."""
        await self.recover_interrupted_runs()

    async def housekeeping(self) -> tuple[int, int]:
        async with self.session_maker() as db:
            windows, requests = await self._rate_limiter(db).prune()
        if windows or requests:
            logger.info(f"Pruned rate limit windows={windows} executed_requests={requests}")
        return windows, requests

    async def get_status(self, db: AsyncSession, limit: int = 10) -> SyncStatusResponse:
        result = await db.execute(
            select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
        )
        runs = [SyncRunOut.model_validate(run) for run in result.scalars().all()]
        return SyncStatusResponse(
            is_syncing=self._is_syncing,
            last_run=runs[0] if runs else None,
            recent_runs=runs,
        )


# Process-wide orchestrator
sync_service = SyncOrchestrator(on_status=ws_manager.broadcast)


def get_sync_service() -> SyncOrchestrator:
    """Dependency to get the orchestrator."""
    return sync_service
