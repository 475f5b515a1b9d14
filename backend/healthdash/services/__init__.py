"""Services for dataset sync, caching and refresh orchestration."""

from healthdash.services.csv_cache import CSVCacheService
from healthdash.services.open_data_client import OpenDataClient
from healthdash.services.sync_service import SyncOrchestrator

__all__ = ["CSVCacheService", "OpenDataClient", "SyncOrchestrator"]
