"""Disease statistics adapter: CDC NNDSS weekly counts plus NYC COVID and ILINet."""

import asyncio
import logging
import math
from collections.abc import Awaitable
from datetime import date, timedelta
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.models import DiseaseStat
from healthdash.schemas.dashboard import DiseaseStatOut, TrendPoint
from healthdash.services.clock import utcnow
from healthdash.services.dataset_store import replace_snapshot
from healthdash.services.open_data_client import OpenDataClient, UpstreamClientError

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")

TRACKED_DISEASES = [
    "Chikungunya virus disease",
    "Diphtheria",
    "Marburg virus disease",
    "Measles",
    "Mpox",
    "Influenza-associated pediatric mortality",
    "Novel Influenza A virus infections",
    "Pertussis",
    "Poliomyelitis, paralytic",
    "Rift Valley fever",
    "COVID-19",
]

NNDSS_PARAMS = {
    "$where": "(location1='NEW YORK' OR location1='NEW YORK CITY')",
    "$order": "year DESC, week DESC",
    "$limit": 5000,
}
NYC_COVID_PARAMS = {"$order": "date_of_interest DESC", "$limit": 5}

NNDSS_SOURCE = ("CDC NNDSS", "https://data.cdc.gov/NNDSS/NNDSS-Weekly-Data/x9gk-5huc")
NYC_COVID_SOURCE = (
    "NYC Open Data",
    "https://data.cityofnewyork.us/Health/COVID-19-Daily-Counts-of-Cases-Hospitalizations-/rc75-m7u3",
)
ILINET_SOURCE = ("CDC ILINet (Delphi)", "https://github.com/cmu-delphi/delphi-epidata")

FLUVIEW_LOOKBACK = timedelta(weeks=8)


def parse_count(value: Any) -> int:
    """Upstream counts arrive as strings; '-' and blanks mean no report."""
    if value is None or value == "" or value == "-":
        return 0
    try:
        count = float(str(value).replace(",", ""))
    except ValueError:
        return 0
    return int(count) if math.isfinite(count) else 0


def match_tracked_disease(label: str | None) -> str | None:
    if not label:
        return None
    for disease in TRACKED_DISEASES:
        if label in disease or disease in label:
            return disease
    return None


def epiweek(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}{week:02d}"


def _stat_row(name: str, count: int, unit: str, last_updated: str, source: tuple[str, str]) -> dict:
    data_source, source_url = source
    return {
        "name": name,
        "current_count": count,
        "week_ago_count": 0,
        "month_ago_count": 0,
        "two_months_ago_count": 0,
        "year_ago_count": 0,
        "unit": unit,
        "last_updated": last_updated,
        "data_source": data_source,
        "source_url": source_url,
        "region": "nyc",
    }


def build_disease_stats(
    nndss_records: list[dict],
    covid_records: list[dict],
    fluview: dict | None,
    now_iso: str,
) -> list[dict]:
    """
    Normalize the three upstream payloads into disease_stats rows.

    NNDSS weekly counts (column m1) are summed per tracked disease over the
    latest reporting year. A positive NYC COVID daily count replaces the
    NNDSS COVID-19 row, and a positive ILINet count adds an 'Influenza (ILI)' row.
    """
    covid_count = 0
    covid_date = now_iso
    if covid_records:
        latest = covid_records[0]
        covid_count = parse_count(latest.get("case_count")) + parse_count(
            latest.get("probable_case_count")
        )
        covid_date = latest.get("date_of_interest") or now_iso

    years = [parse_count(r.get("year")) for r in nndss_records if r.get("year")]
    latest_year = max(years) if years else None

    counts = {disease: 0 for disease in TRACKED_DISEASES}
    for record in nndss_records:
        if "NEW YORK" not in (record.get("location1") or "").upper():
            continue
        if latest_year is not None and parse_count(record.get("year")) != latest_year:
            continue
        disease = match_tracked_disease(record.get("label"))
        if disease is None:
            continue
        if disease == "COVID-19" and covid_count > 0:
            continue
        counts[disease] += parse_count(record.get("m1"))

    rows = []
    for disease, count in counts.items():
        if disease == "COVID-19" and covid_count > 0:
            rows.append(_stat_row(disease, covid_count, "cases (daily)", covid_date, NYC_COVID_SOURCE))
        else:
            rows.append(_stat_row(disease, count, "cases (YTD)", now_iso, NNDSS_SOURCE))

    epidata = (fluview or {}).get("epidata") or []
    if epidata:
        latest_flu = max(epidata, key=lambda r: r.get("epiweek") or 0)
        flu_count = parse_count(latest_flu.get("num_ili"))
        if flu_count > 0:
            rows.append(
                _stat_row("Influenza (ILI)", flu_count, "outpatient visits", now_iso, ILINET_SOURCE)
            )

    return rows


def to_schema(row: DiseaseStat) -> DiseaseStatOut:
    return DiseaseStatOut(
        name=row.name,
        current_count=row.current_count,
        week_ago=TrendPoint(count=row.week_ago_count),
        month_ago=TrendPoint(count=row.month_ago_count),
        two_months_ago=TrendPoint(count=row.two_months_ago_count),
        year_ago=TrendPoint(count=row.year_ago_count),
        unit=row.unit,
        last_updated=row.last_updated,
        data_source=row.data_source,
        source_url=row.source_url,
        region=row.region,
    )


class DiseaseService:
    """Sync and read the disease_stats dataset."""

    label = "Disease"

    def __init__(self, db: AsyncSession, client: OpenDataClient | None = None):
        self.db = db
        self.client = client or OpenDataClient()

    async def _optional(self, name: str, fetch: Awaitable[T], default: T) -> T:
        try:
            return await fetch
        except UpstreamClientError as e:
            logger.warning(f"Optional source unavailable: source={name} error={e}")
            return default

    async def sync_data(self) -> int:
        """
        Fetch, normalize and snapshot-replace disease stats for NYC.

        NNDSS is required; the COVID and ILINet feeds are optional enrichments
        and are cancelled if NNDSS fails.
        """
        logger.info("Starting disease stats sync")
        today = utcnow().date()
        fluview_params = {
            "regions": "hhs2",
            "epiweeks": f"{epiweek(today - FLUVIEW_LOOKBACK)}-{epiweek(today)}",
        }

        optional = asyncio.gather(
            self._optional(
                "nyc_covid",
                self.client.fetch_records(settings.nyc_covid_url, NYC_COVID_PARAMS),
                [],
            ),
            self._optional(
                "ilinet",
                self.client.fetch_json(settings.delphi_fluview_url, fluview_params),
                None,
            ),
        )
        try:
            nndss = await self.client.fetch_records(settings.nndss_url, NNDSS_PARAMS)
        except BaseException:
            optional.cancel()
            await asyncio.gather(optional, return_exceptions=True)
            raise
        covid, fluview = await optional
        if not isinstance(fluview, dict):
            fluview = None

        rows = build_disease_stats(nndss, covid, fluview, utcnow().isoformat())
        count = await replace_snapshot(self.db, DiseaseStat, rows, DiseaseStat.region == "nyc")
        logger.info(f"Synced {count} disease stats")
        return count

    async def get_data(self, region: str = "nyc") -> list[DiseaseStatOut]:
        result = await self.db.execute(
            select(DiseaseStat).where(DiseaseStat.region == region).order_by(DiseaseStat.id)
        )
        return [to_schema(row) for row in result.scalars().all()]
