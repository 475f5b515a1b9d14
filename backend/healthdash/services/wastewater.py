"""Wastewater adapter: NYS treatment-plant SARS-CoV-2 surveillance samples."""

import json
import logging
import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.models import WastewaterSample
from healthdash.schemas.dashboard import WastewaterDataOut, WastewaterSampleOut
from healthdash.services.clock import utcnow
from healthdash.services.dataset_store import replace_snapshot
from healthdash.services.open_data_client import OpenDataClient

logger = logging.getLogger(__name__)
settings = get_settings()

WASTEWATER_PARAMS = {"$order": "samplecollectdate DESC", "$limit": 1000}
DEFAULT_PATHOGEN = "SARS-CoV-2"
HIGH_ALERT_THRESHOLD = 1000.0  # copies/L


def parse_concentration(value) -> float:
    """Unparseable or non-finite readings count as zero."""
    try:
        concentration = float(value)
    except (TypeError, ValueError):
        return 0.0
    return concentration if math.isfinite(concentration) else 0.0


def alert_level_for(average: float) -> str:
    return "high" if average > HIGH_ALERT_THRESHOLD else "low"


def build_wastewater_rows(records: list[dict], now_iso: str) -> list[dict]:
    """Normalize raw samples; snapshot-wide fields are repeated on every row."""
    samples = []
    for record in records:
        samples.append(
            {
                "sample_date": (record.get("samplecollectdate") or "").split("T")[0],
                "location": record.get("wwtpname"),
                "concentration": parse_concentration(record.get("pcrtargetavgconc")),
                "trend": "stable",
                "pathogen": record.get("pcrtarget") or DEFAULT_PATHOGEN,
            }
        )

    if not samples:
        return []

    average = sum(s["concentration"] for s in samples) / len(samples)
    pathogens = json.dumps(sorted({s["pathogen"] for s in samples}))
    for sample in samples:
        sample.update(
            average_concentration=average,
            alert_level=alert_level_for(average),
            last_updated=now_iso,
            pathogens=pathogens,
        )
    return samples


class WastewaterService:
    """Sync and read the wastewater_data dataset."""

    label = "Wastewater"

    def __init__(self, db: AsyncSession, client: OpenDataClient | None = None):
        self.db = db
        self.client = client or OpenDataClient()

    async def sync_data(self) -> int:
        logger.info("Starting wastewater sync")
        records = await self.client.fetch_records(settings.wastewater_url, WASTEWATER_PARAMS)

        rows = build_wastewater_rows(records, utcnow().isoformat())
        if not rows:
            # Keep the last good snapshot rather than publishing an empty one
            logger.warning("Wastewater source returned no usable samples; keeping previous data")
            return 0

        count = await replace_snapshot(self.db, WastewaterSample, rows)
        logger.info(f"Synced {count} wastewater samples (alert_level={rows[0]['alert_level']})")
        return count

    async def get_data(self) -> WastewaterDataOut:
        result = await self.db.execute(
            select(WastewaterSample).order_by(
                WastewaterSample.sample_date.desc(), WastewaterSample.id
            )
        )
        rows = list(result.scalars().all())

        if not rows:
            return WastewaterDataOut(
                samples=[],
                average_concentration=0.0,
                trend="stable",
                alert_level="low",
                last_updated=utcnow().isoformat(),
                pathogens=[],
            )

        first = rows[0]
        samples = [
            WastewaterSampleOut(
                date=row.sample_date,
                location=row.location,
                concentration=row.concentration,
                trend=row.trend,
                pathogen=row.pathogen,
            )
            for row in reversed(rows)
        ]
        return WastewaterDataOut(
            samples=samples,
            average_concentration=first.average_concentration,
            trend=first.trend,
            alert_level=first.alert_level,
            last_updated=first.last_updated or utcnow().isoformat(),
            pathogens=json.loads(first.pathogens or "[]"),
        )
