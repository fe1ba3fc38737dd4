"""Tests for rate limiting on publish job mutations."""

import pytest
from httpx import AsyncClient

from tests.conftest import LINEAGE_URN

pytestmark = pytest.mark.asyncio


def _payload(minute: int) -> dict:
    return {
        "hub_id": "b.hub-1",
        "project_id": "b.project-1",
        "items": [LINEAGE_URN],
        "cron_expression": f"{minute} 2 * * *",
    }


class TestRateLimiting:
    """Tests for the 10 requests / 15 seconds limit on job mutations."""

    async def test_rate_limit_allows_normal_usage(self, authed_client):
        """Should allow requests within rate limit."""
        client, _ = authed_client
        for i in range(3):
            response = await client.post("/api/publish/jobs", json=_payload(i))
            assert response.status_code == 201

    async def test_rate_limit_blocks_excessive_requests(self, authed_client):
        """Should block the 11th mutation within the window."""
        client, _ = authed_client
        responses = []
        for i in range(11):
            response = await client.post("/api/publish/jobs", json=_payload(i))
            responses.append(response.status_code)

        assert responses[:10] == [201] * 10
        assert responses[10] == 429

    async def test_rate_limit_error_message(self, authed_client):
        """Should return appropriate error message when rate limited."""
        client, _ = authed_client
        for i in range(10):
            await client.post("/api/publish/jobs", json=_payload(i))

        response = await client.post("/api/publish/jobs", json=_payload(30))

        assert response.status_code == 429
        assert "too many requests" in response.json()["detail"].lower()

    async def test_reads_are_not_limited(self, authed_client):
        """Listing jobs is not counted against the mutation limit."""
        client, _ = authed_client
        for i in range(10):
            await client.post("/api/publish/jobs", json=_payload(i))

        response = await client.get("/api/publish/jobs")

        assert response.status_code == 200
        assert len(response.json()["data"]) == 10

    async def test_limit_is_per_session(self, client: AsyncClient, login_session_factory):
        """Another signed-in user still has their own budget."""
        first = await login_session_factory()
        second = await login_session_factory()

        client.cookies.set("session_id", str(first.id))
        for i in range(10):
            await client.post("/api/publish/jobs", json=_payload(i))

        client.cookies.set("session_id", str(second.id))
        response = await client.post("/api/publish/jobs", json=_payload(0))

        assert response.status_code == 201
