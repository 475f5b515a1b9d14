"""Database setup with SQLAlchemy async (SQLite via aiosqlite or PostgreSQL via asyncpg)."""

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from healthdash.config import get_settings

settings = get_settings()

REQUIRED_TABLES = (
    "dashboard_cache",
    "csv_cache",
    "sync_log",
    "manual_refresh_requests",
    "rate_limit_tracking",
    "vaccination_data",
    "disease_stats",
    "wastewater_data",
    "news_data",
)


def _engine_kwargs(database_url: str) -> dict:
    # SQLite file databases don't take server-side pool sizing.
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(settings.database_url),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def upsert_insert(db: AsyncSession, model):
    """
    Build a dialect-native INSERT supporting ON CONFLICT for the session's backend.

    Both SQLite and PostgreSQL expose on_conflict_do_update/on_conflict_do_nothing.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert not supported for dialect: {dialect}")


def _ensure_sqlite_directory(db_engine: AsyncEngine) -> None:
    url = db_engine.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def init_db(db_engine: AsyncEngine = engine) -> None:
    """Create missing tables (idempotent)."""
    # Import models so they register with Base.metadata
    import healthdash.models  # noqa: F401

    _ensure_sqlite_directory(db_engine)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_ready(db_engine: AsyncEngine = engine) -> None:
    """
    Verify database connectivity and expected schema.

    Raises RuntimeError listing any missing tables.
    """
    async with db_engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        missing = [table for table in REQUIRED_TABLES if table not in existing]
        if missing:
            raise RuntimeError(
                f"Database schema is missing tables: {', '.join(missing)} "
                "(run database init or check migrations)."
            )
