"""Tests for run execution."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from accpublish.core.errors import CredentialError, ItemErrorKind
from accpublish.models import RunStatus
from accpublish.schemas.publish import ErrorResult, PublishResult, QueuedResult
from accpublish.services.publish_runner import AdHocRun, PublishRunner, RunSummary, compute_stats
from tests.conftest import LINEAGE_URN, LINEAGE_URN_2, VERSION_URN, FakeAps, make_publish_config

pytestmark = pytest.mark.asyncio

PROJECT_ID = "b.project-1"
TIP_URN = "urn:adsk.wipprod:fs.file:vf.AbC123?version=7"


@pytest.fixture
def real_runner(store, credentials, aps_client_factory) -> PublishRunner:
    config = make_publish_config(enable_real_publish=True, publish_max_retries=1)
    return PublishRunner(store, credentials, config, client_factory=aps_client_factory)


@pytest.fixture
def no_sleep():
    with patch("accpublish.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestDryRun:
    """Tests for execute_run with real publishing disabled."""

    async def test_every_item_is_queued_in_order(self, runner):
        run = AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN_2, LINEAGE_URN])

        summary = await runner.execute_run(run)

        assert summary.results == [
            QueuedResult(item=LINEAGE_URN_2),
            QueuedResult(item=LINEAGE_URN),
        ]
        assert summary.fail_count == 0

    async def test_duration_covers_simulated_delay(self, store, credentials):
        """Two items with a 20 ms delay take at least 40 ms."""
        runner = PublishRunner(store, credentials, make_publish_config(dry_run_delay_ms=20))
        run = AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN, LINEAGE_URN_2])

        summary = await runner.execute_run(run)

        # 1 ms slack for timer granularity
        assert summary.duration_ms >= 39

    async def test_no_region_probe(self, store, credentials, fake_aps: FakeAps, aps_client_factory):
        runner = PublishRunner(
            store, credentials, make_publish_config(dry_run_delay_ms=0), aps_client_factory
        )

        await runner.execute_run(AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN]))

        assert fake_aps.requests == []
        credentials.ensure_valid_token.assert_awaited_once()

    async def test_credential_failure_propagates(self, runner, credentials):
        credentials.ensure_valid_token.side_effect = CredentialError("APS token refresh failed")

        with pytest.raises(CredentialError):
            await runner.execute_run(
                AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN])
            )


class TestRealRun:
    """Tests for execute_run against the fake Data Management API."""

    async def test_publishes_resolved_versions(self, real_runner, fake_aps: FakeAps, no_sleep):
        fake_aps.projects["us"].add(PROJECT_ID)
        fake_aps.items["us"][LINEAGE_URN] = TIP_URN

        summary = await real_runner.execute_run(
            AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN, VERSION_URN])
        )

        assert summary.results == [
            PublishResult(item=LINEAGE_URN, version=TIP_URN, status="accepted", http=201, region="us"),
            PublishResult(
                item=VERSION_URN, version=VERSION_URN, status="accepted", http=201, region="us"
            ),
        ]
        assert summary.ok_count == 2

    async def test_failing_item_does_not_stop_the_run(self, real_runner, fake_aps: FakeAps, no_sleep):
        """A resolution failure is recorded and the next item still publishes."""
        fake_aps.projects["emea"].add(PROJECT_ID)
        fake_aps.items["emea"][LINEAGE_URN_2] = TIP_URN

        summary = await real_runner.execute_run(
            AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[LINEAGE_URN, LINEAGE_URN_2])
        )

        first, second = summary.results
        assert isinstance(first, ErrorResult)
        assert first.error == ItemErrorKind.RESOLUTION_ERROR
        assert first.message.startswith("Version resolution failed: ")
        assert isinstance(second, PublishResult)
        assert (second.status, second.region) == ("accepted", "emea")
        assert (summary.ok_count, summary.fail_count) == (1, 1)

    async def test_rejected_publish_is_a_failed_result(self, real_runner, fake_aps: FakeAps, no_sleep):
        fake_aps.projects["us"].add(PROJECT_ID)
        fake_aps.publish_statuses["us"] = [403]

        summary = await real_runner.execute_run(
            AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[VERSION_URN])
        )

        assert summary.results == [
            PublishResult(item=VERSION_URN, version=VERSION_URN, status="failed", http=403, region="us")
        ]

    async def test_unexpected_error_becomes_publish_error(self, real_runner, fake_aps: FakeAps):
        fake_aps.projects["us"].add(PROJECT_ID)

        with patch(
            "accpublish.services.aps_gateway.ApsGateway.publish",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            summary = await real_runner.execute_run(
                AdHocRun(user_id=uuid.uuid4(), project_id=PROJECT_ID, items=[VERSION_URN])
            )

        assert summary.results == [
            ErrorResult(item=VERSION_URN, message="boom", error=ItemErrorKind.PUBLISH_ERROR)
        ]


class TestRunLifecycle:
    """Tests for start_run / finish_run."""

    async def test_start_run_snapshots_items(self, runner, job_factory):
        job = await job_factory()

        run = await runner.start_run(job)

        assert run.status == RunStatus.RUNNING
        assert run.job_id == job.id
        assert run.items == job.models
        assert run.items is not job.models
        assert run.results == []
        assert run.started_at is not None

    async def test_finish_run_records_results_and_stats(self, runner, store, job_factory):
        job = await job_factory()
        run = await runner.start_run(job)
        summary = RunSummary(
            results=[
                QueuedResult(item=LINEAGE_URN),
                ErrorResult(item=LINEAGE_URN_2, message="x", error=ItemErrorKind.PUBLISH_ERROR),
            ],
            duration_ms=250,
        )

        await runner.finish_run(run, RunStatus.SUCCESS, summary)

        saved = await store.get_run(run.id)
        assert saved.status == RunStatus.SUCCESS
        assert saved.ended_at is not None
        assert saved.results[1] == {
            "item": LINEAGE_URN_2,
            "status": "failed",
            "message": "x",
            "error": "PUBLISH_ERROR",
        }
        assert saved.stats == {"duration_ms": 250, "items": 2, "ok_count": 1, "fail_count": 1}

    async def test_finished_run_is_never_rewritten(self, runner, store, job_factory, run_factory):
        job = await job_factory()
        run = await run_factory(job, status=RunStatus.SUCCESS, message=None)

        await runner.finish_run(run, RunStatus.FAILED, message="late failure")

        saved = await store.get_run(run.id)
        assert saved.status == RunStatus.SUCCESS
        assert saved.message is None


class TestHealthCheck:
    """Tests for health_check."""

    async def test_reports_project_region(self, real_runner, fake_aps: FakeAps):
        fake_aps.projects["emea"].add(PROJECT_ID)

        health = await real_runner.health_check(uuid.uuid4(), PROJECT_ID)

        assert health["healthy"] is True
        assert health["project_region"] == "emea"
        assert health["project_region_label"] == "EMEA"
        assert health["config"]["enable_real"] is True

    async def test_credential_failure_is_unhealthy(self, runner, credentials):
        credentials.ensure_valid_token.side_effect = CredentialError("Missing refresh token")

        health = await runner.health_check(uuid.uuid4(), PROJECT_ID)

        assert health == {
            "healthy": False,
            "error": "Missing refresh token",
            "regions": ["us", "emea"],
        }


async def test_compute_stats():
    results = [{"status": "accepted"}, {"status": "failed"}, {"status": "queued"}]

    assert compute_stats(results, 12) == {
        "duration_ms": 12,
        "items": 3,
        "ok_count": 2,
        "fail_count": 1,
    }
