"""Tests for health check endpoint."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


class TestHealthCheck:
    """Tests for GET /health."""

    async def test_health_check(self, client: AsyncClient):
        """Should return healthy status and the publish mode."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["mode"] == "DRY-RUN"
        assert data["executing_jobs"] == 0

    async def test_health_counts_scheduled_jobs(self, client: AsyncClient, scheduler, job_factory):
        """Should report the cron jobs registered on the scheduler."""
        job = await job_factory()
        scheduler.schedule_job(job)

        data = (await client.get("/health")).json()

        assert data["scheduled_jobs"] == 1
        assert data["scheduler"] == "stopped"

    async def test_health_needs_no_login(self, client: AsyncClient):
        client.cookies.clear()
        assert (await client.get("/health")).status_code == 200
