"""Aggregated dashboard reads and the post-sync snapshot cache."""

import logging
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.models import DashboardCache
from healthdash.schemas.dashboard import CacheMetadata, DashboardResponse, DiseaseStatsOut
from healthdash.services.clock import Clock, as_utc, utcnow
from healthdash.services.csv_cache import CSVCacheService
from healthdash.services.disease import DiseaseService
from healthdash.services.news import NewsService
from healthdash.services.vaccination import VaccinationService
from healthdash.services.wastewater import WastewaterService

logger = logging.getLogger(__name__)
settings = get_settings()

SNAPSHOT_RETENTION = 5


async def get_cache_metadata(db: AsyncSession, clock: Clock = utcnow) -> CacheMetadata:
    """Fetch time, latest snapshot freshness and CSV cache statistics."""
    now = clock()
    result = await db.execute(
        select(DashboardCache).order_by(DashboardCache.last_updated.desc()).limit(1)
    )
    latest = result.scalar_one_or_none()

    expires_at = as_utc(latest.expires_at) if latest else None
    return CacheMetadata(
        last_fetched=now,
        last_synced=as_utc(latest.last_updated) if latest else None,
        is_stale=expires_at is None or expires_at <= now,
        csv_cache=await CSVCacheService(db).get_cache_stats(),
    )


async def build_dashboard(db: AsyncSession, clock: Clock = utcnow) -> DashboardResponse:
    """Read the current state of every dataset. Never triggers a sync."""
    return DashboardResponse(
        vaccination_data=await VaccinationService(db).get_data(),
        disease_stats=DiseaseStatsOut(nyc=await DiseaseService(db).get_data("nyc")),
        wastewater_data=await WastewaterService(db).get_data(),
        news_data=await NewsService(db).get_data(),
        cache_metadata=await get_cache_metadata(db, clock),
    )


async def record_snapshot(db: AsyncSession, clock: Clock = utcnow) -> DashboardCache:
    """Store the current dashboard as JSON with a TTL and prune older snapshots."""
    now = clock()
    dashboard = await build_dashboard(db, clock)

    snapshot = DashboardCache(
        data_json=dashboard.model_dump_json(by_alias=True),
        last_updated=now,
        expires_at=now + timedelta(hours=settings.cache_ttl_hours),
        is_stale=False,
    )
    db.add(snapshot)
    await db.flush()

    keep = (
        select(DashboardCache.id)
        .order_by(DashboardCache.last_updated.desc(), DashboardCache.id.desc())
        .limit(SNAPSHOT_RETENTION)
    )
    await db.execute(
        delete(DashboardCache)
        .where(DashboardCache.id.not_in(keep))
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(f"Dashboard snapshot stored: id={snapshot.id} expires_at={snapshot.expires_at}")
    return snapshot
