"""Pytest fixtures for health dashboard backend tests."""

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

# Settings are read once at import time, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CSV_CACHE_PATH", tempfile.mkdtemp(prefix="healthdash-csv-"))
os.environ.setdefault("BURST_PROTECTION_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from healthdash.config import Settings  # noqa: E402
from healthdash.database import get_db, init_db  # noqa: E402
from healthdash.main import app  # noqa: E402
from healthdash.services.sync_service import SyncOrchestrator, get_sync_service  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StubAdapter:
    def __init__(self, db, label: str, count: int = 0, error: Exception | None = None, gate=None):
        self.db = db
        self.label = label
        self.count = count
        self.error = error
        self.gate = gate
        self.calls = 0

    async def sync_data(self) -> int:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.count


def stub_adapter(label: str, count: int = 0, error: Exception | None = None, gate=None):
    """Adapter factory with the (db) -> adapter shape the orchestrator expects."""

    def factory(db):
        return StubAdapter(db, label, count=count, error=error, gate=gate)

    return factory


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 10, 5, 0, tzinfo=UTC))


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """File-backed SQLite so every session sees the same database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def orchestrator(session_maker, clock) -> SyncOrchestrator:
    """Orchestrator over stub adapters with one immediate refresh per window."""
    return SyncOrchestrator(
        session_maker=session_maker,
        adapter_factories=[stub_adapter("Disease", count=11), stub_adapter("News", count=4)],
        settings=make_settings(manual_refresh_max_per_hour=1, rate_limit_window_minutes=60),
        clock=clock,
        record_snapshots=False,
    )


@pytest_asyncio.fixture
async def client(session_maker, orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database and orchestrator overrides."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = lambda: orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    await orchestrator.wait_for_background()
    app.dependency_overrides.clear()
