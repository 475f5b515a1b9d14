"""Background task scheduler: daily sync, buffered sweep, housekeeping, heartbeat."""

import logging
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from healthdash.config import Settings, get_settings
from healthdash.services.sync_service import SyncOrchestrator, sync_service
from healthdash.websocket.manager import ConnectionManager
from healthdash.websocket.manager import manager as ws_manager

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


def build_daily_trigger(settings: Settings) -> CronTrigger:
    """Cron trigger for the configured wall-clock time in the configured time zone."""
    hour, minute = settings.schedule_hour_minute
    return CronTrigger(hour=hour, minute=minute, timezone=ZoneInfo(settings.tz))


async def scheduled_sync_job(orchestrator: SyncOrchestrator) -> None:
    """Daily full sync. Rejected (not retried) if another sync is running."""
    logger.info("Starting scheduled full sync")
    try:
        result = await orchestrator.run_full_sync("scheduled", "system")
        if result.rejected:
            logger.warning("Scheduled sync skipped: another sync is running")
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}", exc_info=True)


async def buffered_sweep_job(orchestrator: SyncOrchestrator) -> None:
    try:
        await orchestrator.process_buffered_requests()
    except Exception as e:
        logger.error(f"Buffered request sweep failed: {e}", exc_info=True)


async def housekeeping_job(orchestrator: SyncOrchestrator) -> None:
    try:
        await orchestrator.housekeeping()
    except Exception as e:
        logger.error(f"Housekeeping failed: {e}", exc_info=True)


async def heartbeat_job(connections: ConnectionManager) -> None:
    if connections.connection_count:
        await connections.send_heartbeat()


def setup_scheduler(
    orchestrator: SyncOrchestrator = sync_service,
    settings: Settings | None = None,
    connections: ConnectionManager = ws_manager,
) -> AsyncIOScheduler:
    """Set up and start the background task scheduler."""
    global scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler(timezone=ZoneInfo(settings.tz))
    now = datetime.now(UTC)

    scheduler.add_job(
        scheduled_sync_job,
        trigger=build_daily_trigger(settings),
        args=[orchestrator],
        id="scheduled_full_sync",
        name="Daily full sync of all datasets",
        replace_existing=True,
    )

    # First sweep runs immediately to replay requests buffered before a restart
    scheduler.add_job(
        buffered_sweep_job,
        trigger=IntervalTrigger(minutes=settings.buffer_sweep_interval_minutes),
        args=[orchestrator],
        next_run_time=now,
        id="buffered_request_sweep",
        name="Replay due buffered refresh requests",
        replace_existing=True,
    )

    scheduler.add_job(
        housekeeping_job,
        trigger=IntervalTrigger(hours=1),
        args=[orchestrator],
        next_run_time=now + timedelta(minutes=1),
        id="housekeeping",
        name="Prune rate limit windows and executed requests",
        replace_existing=True,
    )

    scheduler.add_job(
        heartbeat_job,
        trigger=IntervalTrigger(seconds=settings.ws_heartbeat_interval_seconds),
        args=[connections],
        id="ws_heartbeat",
        name="WebSocket heartbeat",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        f"Scheduler started: daily sync at {settings.sync_schedule_time} {settings.tz}"
    )

    return scheduler


def shutdown_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global scheduler

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
        scheduler = None
