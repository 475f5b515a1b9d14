"""Database models."""

from healthdash.models.csv_cache import CsvCacheEntry
from healthdash.models.dashboard_cache import DashboardCache
from healthdash.models.disease_stat import DiseaseStat
from healthdash.models.manual_refresh import ManualRefreshRequest
from healthdash.models.news_alert import NewsAlert
from healthdash.models.rate_limit import RateLimitWindow
from healthdash.models.sync_log import SyncRun
from healthdash.models.vaccination_record import VaccinationRecord
from healthdash.models.wastewater_sample import WastewaterSample

__all__ = [
    "CsvCacheEntry",
    "DashboardCache",
    "DiseaseStat",
    "ManualRefreshRequest",
    "NewsAlert",
    "RateLimitWindow",
    "SyncRun",
    "VaccinationRecord",
    "WastewaterSample",
]
