"""Pydantic schemas for the normalized datasets and the dashboard snapshot."""

from datetime import datetime
from typing import Literal

from healthdash.schemas.base import CamelModel


class TrendPoint(CamelModel):
    """Historical comparison point. Trends are not computed; counts stay at zero."""

    count: int = 0
    trend: Literal["up", "down", "stable"] = "stable"
    percent_change: float = 0.0


class DiseaseStatOut(CamelModel):
    name: str
    current_count: int
    week_ago: TrendPoint = TrendPoint()
    month_ago: TrendPoint = TrendPoint()
    two_months_ago: TrendPoint = TrendPoint()
    year_ago: TrendPoint = TrendPoint()
    unit: str | None = None
    last_updated: str | None = None
    data_source: str | None = None
    source_url: str | None = None
    region: str = "nyc"


class DiseaseStatsOut(CamelModel):
    nyc: list[DiseaseStatOut]


class WastewaterSampleOut(CamelModel):
    date: str | None = None
    location: str | None = None
    concentration: float
    trend: str = "stable"
    pathogen: str | None = None


class WastewaterDataOut(CamelModel):
    samples: list[WastewaterSampleOut]
    average_concentration: float
    trend: str
    alert_level: Literal["low", "moderate", "high", "critical"]
    last_updated: str
    pathogens: list[str] = []


class CalculationDetails(CamelModel):
    numerator: float
    denominator: float
    logic: str
    source_location: str


class VaccinationOut(CamelModel):
    name: str
    current_year: float | None = None
    five_years_ago: float | None = None
    ten_years_ago: float | None = None
    collection_method: str | None = None
    source_url: str | None = None
    is_reporting_stopped: bool | None = None
    last_available_rate: float | None = None
    last_available_date: str | None = None
    calculation_details: CalculationDetails | None = None


class VaccinationDataOut(CamelModel):
    nyc: list[VaccinationOut]
    nys: list[VaccinationOut]


class NewsAlertOut(CamelModel):
    id: str
    title: str
    summary: str | None = None
    date: str | None = None
    severity: str = "info"
    source: str | None = None
    url: str | None = None
    region: str | None = None


class NewsDataOut(CamelModel):
    nyc: list[NewsAlertOut]
    nys: list[NewsAlertOut]
    usa: list[NewsAlertOut]
    last_updated: str


class CSVCacheStats(CamelModel):
    total_entries: int
    total_size: int
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class CacheMetadata(CamelModel):
    last_fetched: datetime
    last_synced: datetime | None = None
    is_stale: bool = True
    csv_cache: CSVCacheStats


class DashboardResponse(CamelModel):
    vaccination_data: VaccinationDataOut
    disease_stats: DiseaseStatsOut
    wastewater_data: WastewaterDataOut
    news_data: NewsDataOut
    cache_metadata: CacheMetadata
