"""Pydantic schemas for API request/response validation."""

from healthdash.schemas.dashboard import (
    CacheMetadata,
    CSVCacheStats,
    DashboardResponse,
    DiseaseStatOut,
    NewsAlertOut,
    NewsDataOut,
    VaccinationDataOut,
    VaccinationOut,
    WastewaterDataOut,
)
from healthdash.schemas.sync import RefreshResponse, SyncRunOut, SyncStatusResponse

__all__ = [
    "CacheMetadata",
    "CSVCacheStats",
    "DashboardResponse",
    "DiseaseStatOut",
    "NewsAlertOut",
    "NewsDataOut",
    "RefreshResponse",
    "SyncRunOut",
    "SyncStatusResponse",
    "VaccinationDataOut",
    "VaccinationOut",
    "WastewaterDataOut",
]
