"""FastAPI application for the public-health dashboard backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from healthdash import __version__
from healthdash.config import get_settings
from healthdash.database import check_db_ready, init_db
from healthdash.limiter import limiter
from healthdash.logging_config import setup_logging
from healthdash.routers import dashboard_router, health_router, sync_router
from healthdash.services.sync_service import sync_service
from healthdash.tasks.scheduler import setup_scheduler, shutdown_scheduler
from healthdash.websocket import websocket_router

settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info(f"Starting health dashboard backend ({settings.environment})...")

    # Refuse to start without a usable database
    try:
        await init_db()
        await check_db_ready()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    await sync_service.initialize()

    # Start scheduler (daily sync, buffered sweep) once DB is ready.
    setup_scheduler(sync_service, settings)

    yield

    # Shutdown
    shutdown_scheduler()
    await sync_service.wait_for_background()
    logger.info("Health dashboard backend shut down")


# Create FastAPI app
app = FastAPI(
    title="Public Health Dashboard API",
    description="Disease, wastewater, vaccination and news data for NYC and NYS",
    version=__version__,
    lifespan=lifespan,
)

# Add burst limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(health_router)  # /health, /api/status
app.include_router(dashboard_router, prefix=settings.api_prefix)
app.include_router(sync_router, prefix=settings.api_prefix)
app.include_router(websocket_router)  # WebSocket at /ws


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "healthdash.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
