"""API routers."""

from healthdash.routers.dashboard import router as dashboard_router
from healthdash.routers.health import router as health_router
from healthdash.routers.sync import router as sync_router

__all__ = ["dashboard_router", "health_router", "sync_router"]
