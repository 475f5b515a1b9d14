"""Vaccination adapter: NYS seasonal dose totals and NYC childhood coverage CSV."""

import csv
import io
import json
import logging
import math
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.models import VaccinationRecord
from healthdash.schemas.dashboard import CalculationDetails, VaccinationDataOut, VaccinationOut
from healthdash.services.csv_cache import CSVCacheService
from healthdash.services.dataset_store import replace_snapshot
from healthdash.services.open_data_client import OpenDataClient

logger = logging.getLogger(__name__)
settings = get_settings()

NYS_POPULATION_EXCLUDING_NYC = 11_600_000
NYS_PARAMS = {"geography_level": "REST OF STATE", "$limit": 1000}
NYSIIS_METHOD = "NYS Immunization Information System (NYSIIS) - Weekly Aggregate Reports"
CIR_METHOD = "NYC Citywide Immunization Registry (CIR)"
UNAVAILABLE = -1.0

VACCINE_NAME_MAP = {
    "DTaP": "DTaP (Diphtheria, Tetanus, Pertussis)",
    "Polio": "IPV (Inactivated Polio Vaccine)",
    "MMR": "MMR (Measles, Mumps, Rubella)",
    "Varicella": "Varicella (Chickenpox)",
    "HepB": "Hepatitis B",
    "Hib": "Hib (Haemophilus influenzae type b)",
    "PCV": "PCV (Pneumococcal Conjugate)",
    "4313314": "Combined 7-Vaccine Series (4:3:1:3:3:1:4)",
    "4:3:1:3:3:1:4": "Combined 7-Vaccine Series (4:3:1:3:3:1:4)",
}


class VaccinationSyncError(Exception):
    """Raised after a partial vaccination sync; names each region that failed."""

    pass


def parse_number(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _record(
    region: str,
    name: str,
    current_year: float,
    rate: float,
    period: str,
    method: str,
    source_url: str,
    details: dict,
) -> dict:
    return {
        "region": region,
        "vaccine_name": name,
        "current_year": current_year,
        "five_years_ago": UNAVAILABLE,
        "ten_years_ago": UNAVAILABLE,
        "last_available_rate": rate,
        "last_available_date": period,
        "collection_method": method,
        "source_url": source_url,
        "calculation_details": json.dumps(details),
    }


def build_nys_records(records: list[dict], source_url: str) -> list[dict]:
    """Season dose totals for the rest of the state (NYC excluded)."""
    covid_total = sum(int(parse_number(r.get("covid_19_dose_count")) or 0) for r in records)
    flu_total = sum(int(parse_number(r.get("influenza_dose_count")) or 0) for r in records)

    latest = max(records, key=lambda r: r.get("week_ending") or "")
    latest_date = (latest.get("week_ending") or "").split("T")[0]
    season = latest.get("respiratory_season") or "unknown"
    period = f"{season} Season (as of {latest_date})"
    location = (
        f"NYS Open Data API: geography_level='REST OF STATE', respiratory_season='{season}'"
    )

    return [
        _record(
            "nys",
            name,
            0.0,
            float(total),
            period,
            NYSIIS_METHOD,
            source_url,
            {
                "numerator": total,
                "denominator": NYS_POPULATION_EXCLUDING_NYC,
                "logic": f"Sum of weekly '{column}' for REST OF STATE geography",
                "source_location": location,
            },
        )
        for name, total, column in (
            ("COVID-19 (Seasonal Doses)", covid_total, "covid_19_dose_count"),
            ("Influenza (Seasonal Doses)", flu_total, "influenza_dose_count"),
        )
    ]


def _year(row: dict) -> int | None:
    value = parse_number(row.get("YEAR_COVERAGE"))
    return int(value) if value is not None else None


def build_childhood_records(rows: list[dict], source_url: str) -> list[dict]:
    """
    Population-weighted coverage per vaccine group for the latest period.

    The latest YEAR_COVERAGE is used, narrowed to its latest QUARTER when the
    file has quarters. Rows without a usable denominator still count toward
    the vaccinated total.
    """
    years = [year for year in (_year(row) for row in rows) if year is not None]
    if not years:
        return []
    latest_year = max(years)

    in_year = [row for row in rows if _year(row) == latest_year]
    quarters = {(row.get("QUARTER") or "").strip() for row in in_year} - {""}
    latest_quarter = max(quarters) if quarters else None
    period = f"{latest_year} {latest_quarter}" if latest_quarter else str(latest_year)

    groups: dict[str, dict[str, float]] = {}
    for row in in_year:
        quarter = (row.get("QUARTER") or "").strip()
        if latest_quarter and quarter and quarter != latest_quarter:
            continue
        code = (row.get("VACCINE_GROUP") or "").strip()
        if not code:
            continue

        group = groups.setdefault(code, {"weighted": 0.0, "population": 0.0, "vaccinated": 0.0})
        population = parse_number(row.get("POP_DENOMINATOR"))
        percent = parse_number(row.get("PERC_VAC"))
        vaccinated = parse_number(row.get("COUNT_PEOPLE_VAC"))

        if population and population > 0 and percent is not None:
            group["weighted"] += percent * population
            group["population"] += population
        if vaccinated is not None:
            group["vaccinated"] += vaccinated

    records = []
    for code, group in groups.items():
        rate = round(group["weighted"] / group["population"], 1) if group["population"] else 0.0
        records.append(
            _record(
                "nyc",
                VACCINE_NAME_MAP.get(code, code),
                rate,
                rate,
                period,
                CIR_METHOD,
                source_url,
                {
                    "numerator": group["vaccinated"],
                    "denominator": group["population"],
                    "logic": "Weighted average of validated rates from source data across demographic groups",
                    "source_location": f"NYC Health GitHub CSV. Vaccine: {code}, Period: {period}",
                },
            )
        )
    return records


def parse_csv(data: str) -> list[dict]:
    reader = csv.DictReader(io.StringIO(data.lstrip("\ufeff")))
    return [row for row in reader if any(isinstance(v, str) and v.strip() for v in row.values())]


def to_schema(row: VaccinationRecord) -> VaccinationOut:
    details = None
    if row.calculation_details:
        details = CalculationDetails.model_validate(json.loads(row.calculation_details))
    return VaccinationOut(
        name=row.vaccine_name,
        current_year=row.current_year,
        five_years_ago=row.five_years_ago,
        ten_years_ago=row.ten_years_ago,
        collection_method=row.collection_method,
        source_url=row.source_url,
        last_available_rate=row.last_available_rate,
        last_available_date=row.last_available_date,
        calculation_details=details,
    )


class VaccinationService:
    """Sync and read the vaccination_data dataset (regions nyc and nys)."""

    label = "Vaccination"

    def __init__(
        self,
        db: AsyncSession,
        client: OpenDataClient | None = None,
        csv_cache: CSVCacheService | None = None,
    ):
        self.db = db
        self.client = client or OpenDataClient()
        self.csv_cache = csv_cache or CSVCacheService(db, self.client)

    async def _sync_nys(self) -> int:
        records = await self.client.fetch_records(settings.nys_vaccination_url, NYS_PARAMS)
        if not records:
            logger.warning("NYS vaccination source returned no records; keeping previous data")
            return 0
        rows = build_nys_records(records, settings.nys_vaccination_url)
        return await replace_snapshot(
            self.db, VaccinationRecord, rows, VaccinationRecord.region == "nys"
        )

    async def _sync_childhood(self) -> int:
        url = settings.childhood_vaccination_csv_url
        result = await self.csv_cache.get_cached_csv(url)
        logger.info(f"Childhood vaccination CSV loaded: from_cache={result.from_cache}")

        rows = build_childhood_records(parse_csv(result.data), url)
        if not rows:
            logger.warning("Childhood vaccination CSV had no usable rows; keeping previous data")
            return 0
        return await replace_snapshot(
            self.db, VaccinationRecord, rows, VaccinationRecord.region == "nyc"
        )

    async def sync_data(self) -> int:
        """
        Sync each region independently.

        A region that succeeds is persisted even when the other fails; the
        failure is then raised so the run is reported as failed.
        """
        logger.info("Starting vaccination sync")
        total = 0
        errors = []

        for region, sync in (("nys", self._sync_nys), ("nyc", self._sync_childhood)):
            try:
                count = await sync()
                logger.info(f"Synced {count} vaccination records: region={region}")
                total += count
            except Exception as e:
                logger.error(f"Vaccination sync failed: region={region} error={e}")
                errors.append(f"{region}: {e}")

        if errors:
            raise VaccinationSyncError("; ".join(errors))
        return total

    async def get_data(self) -> VaccinationDataOut:
        """NYC and NYS records; NYS flu/COVID rows are also listed under NYC."""
        result = await self.db.execute(select(VaccinationRecord).order_by(VaccinationRecord.id))
        nyc, nys = [], []
        for row in result.scalars().all():
            (nyc if row.region == "nyc" else nys).append(to_schema(row))

        nyc.extend(r for r in nys if "COVID" in r.name or "Influenza" in r.name)
        return VaccinationDataOut(nyc=nyc, nys=nys)
