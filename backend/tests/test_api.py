"""Tests for API endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from healthdash.database import get_db
from healthdash.main import app
from healthdash.models import DiseaseStat
from healthdash.services.sync_service import get_sync_service


class TestHealthEndpoints:
    """Tests for health and status endpoints."""

    @pytest.mark.asyncio
    async def test_health_endpoint(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_api_status(self, client):
        response = await client.get("/api/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert data["version"] == "1.0.0"
        assert "environment" in data


class TestDashboardEndpoint:
    """Tests for the aggregated dashboard endpoint."""

    @pytest.mark.asyncio
    async def test_empty_dashboard(self, client):
        """Test the dashboard shape before any sync has run."""
        response = await client.get("/api/dashboard")

        assert response.status_code == 200
        data = response.json()
        assert data["diseaseStats"] == {"nyc": []}
        assert data["vaccinationData"] == {"nyc": [], "nys": []}
        assert data["wastewaterData"]["samples"] == []
        assert data["wastewaterData"]["alertLevel"] == "low"
        assert data["newsData"]["usa"] == []
        assert data["cacheMetadata"]["isStale"] is True
        assert data["cacheMetadata"]["lastSynced"] is None
        assert data["cacheMetadata"]["csvCache"]["totalEntries"] == 0

    @pytest.mark.asyncio
    async def test_dashboard_reads_stored_data(self, client, db_session):
        db_session.add(DiseaseStat(name="Measles", current_count=5, unit="cases (YTD)", region="nyc"))
        await db_session.commit()

        response = await client.get("/api/dashboard")

        assert response.status_code == 200
        stats = response.json()["diseaseStats"]["nyc"]
        assert len(stats) == 1
        assert stats[0]["name"] == "Measles"
        assert stats[0]["currentCount"] == 5
        assert stats[0]["weekAgo"] == {"count": 0, "trend": "stable", "percentChange": 0.0}


class TestRefreshEndpoint:
    """Tests for POST /api/refresh."""

    @pytest.mark.asyncio
    async def test_scheduled_buffered_rejected(self, client, orchestrator):
        with patch("healthdash.routers.sync.ws_manager.broadcast", new=AsyncMock()) as broadcast:
            first = await client.post("/api/refresh")
            await orchestrator.wait_for_background()
            second = await client.post("/api/refresh")
            third = await client.post("/api/refresh")

        assert first.status_code == 200
        assert first.json()["status"] == "scheduled"

        assert second.status_code == 200
        assert second.json()["status"] == "buffered"
        assert second.json()["scheduledTime"].startswith("2026-03-02T11:00:00")

        assert third.status_code == 429
        assert third.json()["status"] == "rejected"
        assert third.json()["message"] == "Rate limit exceeded and buffer full"

        # Admission results are pushed to WebSocket clients, rejections are not
        statuses = [call.args[0].status for call in broadcast.await_args_list]
        assert statuses == ["scheduled", "buffered"]

    @pytest.mark.asyncio
    async def test_admin_refresh(self, client, orchestrator):
        with patch("healthdash.routers.sync.ws_manager.broadcast", new=AsyncMock()):
            for _ in range(3):
                response = await client.post("/api/refresh", params={"admin": "true"})
                await orchestrator.wait_for_background()
                assert response.status_code == 200
                assert response.json()["status"] == "scheduled"


class TestSyncStatusEndpoint:
    """Tests for GET /api/sync/status."""

    @pytest.mark.asyncio
    async def test_no_runs(self, client):
        response = await client.get("/api/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["isSyncing"] is False
        assert data["lastRun"] is None
        assert data["recentRuns"] == []

    @pytest.mark.asyncio
    async def test_after_sync(self, client, orchestrator):
        await orchestrator.run_full_sync("manual", "system:cli")

        response = await client.get("/api/sync/status")

        data = response.json()
        assert data["lastRun"]["status"] == "success"
        assert data["lastRun"]["triggerType"] == "manual"
        assert data["lastRun"]["recordsProcessed"] == 15


class TestErrorHandling:
    """Tests for the global exception handler."""

    @pytest.mark.asyncio
    async def test_unhandled_error_returns_500(self, session_maker):
        broken = MagicMock()
        broken.get_status = AsyncMock(side_effect=RuntimeError("boom"))

        async def override_get_db():
            async with session_maker() as session:
                yield session

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_sync_service] = lambda: broken
        try:
            async with AsyncClient(
                transport=ASGITransport(app=app, raise_app_exceptions=False),
                base_url="http://test",
            ) as client:
                response = await client.get("/api/sync/status")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
