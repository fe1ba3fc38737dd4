"""
Execution of publish runs.

A run snapshots the job's items, then publishes them one after the other:
- Dry run (ENABLE_REAL_PUBLISH=false): each item is simulated and marked queued
- Real run: item URN -> version URN -> C4R publish command, region-aware

A failing item is recorded and the loop moves on. Only setup failures (no
access token) escape ``execute_run``.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from accpublish.config import PublishConfig, get_config
from accpublish.core.datetime_utils import utc_now
from accpublish.core.errors import ItemErrorKind, ResolutionError
from accpublish.core.logging import get_logger
from accpublish.models.publish_job import PublishJob
from accpublish.models.publish_run import PublishRun, RunStatus
from accpublish.schemas.publish import (
    ErrorResult,
    PublishResult,
    QueuedResult,
    dump_results,
    is_failed,
)
from accpublish.services.aps_gateway import ApsGateway, ResolvedVersion, region_label
from accpublish.services.publish_store import PublishStore

logger = get_logger(__name__)

ItemOutcome = QueuedResult | PublishResult | ErrorResult


class CredentialProvider(Protocol):
    async def ensure_valid_token(self, user_id: uuid.UUID) -> str: ...


class RunLike(Protocol):
    """What ``execute_run`` needs from a run (a PublishRun or an AdHocRun)."""

    id: Any
    user_id: uuid.UUID
    project_id: str
    items: list[str]


@dataclass
class AdHocRun:
    """Items published immediately, outside any job and without a run record."""

    user_id: uuid.UUID
    project_id: str
    items: list[str]
    id: str = "direct"


@dataclass
class RunSummary:
    """Results of one execution, in item order."""

    results: list[ItemOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok_count(self) -> int:
        return sum(1 for r in self.results if not is_failed(r))

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if is_failed(r))


def compute_stats(results: list[dict[str, Any]], duration_ms: int) -> dict[str, Any]:
    fail_count = sum(1 for r in results if is_failed(r))
    return {
        "duration_ms": duration_ms,
        "items": len(results),
        "ok_count": len(results) - fail_count,
        "fail_count": fail_count,
    }


class PublishRunner:
    """Creates, executes and finalizes publish runs."""

    def __init__(
        self,
        store: PublishStore,
        credentials: CredentialProvider,
        config: PublishConfig | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.config = config or get_config().publish
        self.client_factory = client_factory or httpx.AsyncClient

    @property
    def mode(self) -> str:
        return f"REAL({self.config.command})" if self.config.enable_real else "DRY-RUN"

    @asynccontextmanager
    async def open_gateway(self, user_id: uuid.UUID) -> AsyncIterator[ApsGateway]:
        """
        Gateway authenticated as the user, on a client closed on exit.

        Raises:
            CredentialError: No valid access token for the user
        """
        access_token = await self.credentials.ensure_valid_token(user_id)
        async with self.client_factory() as client:
            yield ApsGateway(client, access_token, self.config)

    async def resolve_item(
        self,
        user_id: uuid.UUID,
        project_id: str,
        urn: str,
        region_hint: str | None = None,
    ) -> ResolvedVersion:
        """Resolve one item to its latest version without publishing it."""
        async with self.open_gateway(user_id) as gateway:
            hint = region_hint or await gateway.detect_region(project_id)
            return await gateway.resolve_to_version(project_id, urn, hint)

    async def start_run(self, job: PublishJob) -> PublishRun:
        """Create the run record with a copy of the job's items."""
        run = await self.store.create_run(
            job_id=job.id,
            user_id=job.user_id,
            hub_id=job.hub_id,
            project_id=job.project_id,
            items=list(job.models or []),
            status=RunStatus.RUNNING,
            started_at=utc_now(),
            results=[],
            stats={},
        )
        logger.bind(run_id=str(run.id), job_id=str(job.id), items=len(run.items)).info(
            "publish_run_started"
        )
        return run

    async def execute_run(self, run: RunLike) -> RunSummary:
        """
        Publish every item of the run, sequentially and in order.

        Raises:
            CredentialError: No valid access token for the run's user
        """
        started = time.monotonic()
        results: list[ItemOutcome] = []

        async with self.open_gateway(run.user_id) as gateway:
            project_region = None
            if self.config.enable_real:
                # Hint only, every call still falls back to the other regions
                project_region = await gateway.detect_region(run.project_id)

            logger.bind(
                run_id=str(run.id),
                mode=self.mode,
                project_id=run.project_id,
                region=region_label(project_region),
                items=len(run.items),
            ).info("publish_run_executing")

            for item in run.items:
                results.append(await self._process_item(gateway, run, item, project_region))

        summary = RunSummary(
            results=results,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.bind(
            run_id=str(run.id),
            duration_ms=summary.duration_ms,
            ok=summary.ok_count,
            failed=summary.fail_count,
        ).info("publish_run_executed")
        return summary

    async def _process_item(
        self,
        gateway: ApsGateway,
        run: RunLike,
        item: str,
        project_region: str | None,
    ) -> ItemOutcome:
        try:
            if not self.config.enable_real:
                await asyncio.sleep(self.config.dry_run_delay_ms / 1000)
                logger.bind(run_id=str(run.id), item=item).info("publish_item_dry_run")
                return QueuedResult(item=item)

            try:
                resolved = await gateway.resolve_to_version(run.project_id, item, project_region)
            except ResolutionError as e:
                message = f"Version resolution failed: {e}"
                logger.bind(run_id=str(run.id), item=item, error=str(e)).error(
                    "publish_item_resolution_failed"
                )
                return ErrorResult(item=item, message=message, error=ItemErrorKind.RESOLUTION_ERROR)

            hint = resolved.region or project_region
            outcome = await gateway.publish(run.project_id, resolved.version_urn, hint)
            result = PublishResult(
                item=item,
                version=resolved.version_urn,
                status=outcome.outcome,
                http=outcome.http,
                region=outcome.region or hint,
            )
            log = logger.bind(
                run_id=str(run.id),
                version=resolved.version_urn,
                http=outcome.http,
                region=region_label(result.region),
            )
            if outcome.accepted:
                log.info("publish_item_accepted")
            else:
                log.warning("publish_item_failed")
            return result

        except Exception as e:
            message = str(e) or "Unknown publish error"
            logger.bind(run_id=str(run.id), item=item, error=message).exception(
                "publish_item_crashed"
            )
            return ErrorResult(item=item, message=message, error=ItemErrorKind.PUBLISH_ERROR)

    async def finish_run(
        self,
        run: PublishRun,
        status: RunStatus,
        summary: RunSummary | None = None,
        message: str | None = None,
    ) -> PublishRun:
        """Move the run to its terminal status with results and stats."""
        if run.status.is_terminal:
            logger.bind(run_id=str(run.id), status=run.status.value).warning(
                "publish_run_already_finished"
            )
            return run

        results = dump_results(summary.results) if summary else []
        duration_ms = summary.duration_ms if summary else 0

        values: dict[str, Any] = {
            "status": status,
            "ended_at": utc_now(),
            "results": results,
            "stats": {**(run.stats or {}), **compute_stats(results, duration_ms)},
        }
        if message:
            values["message"] = message

        # The in-memory run only turns terminal once the row has
        await self.store.update_run(run.id, **values)
        for name, value in values.items():
            setattr(run, name, value)
        logger.bind(run_id=str(run.id), status=status.value, **run.stats).info(
            "publish_run_finished"
        )
        return run

    async def health_check(self, user_id: uuid.UUID, project_id: str) -> dict[str, Any]:
        """Check credentials and region reachability for a project."""
        config = {
            "enable_real": self.config.enable_real,
            "command": self.config.command,
            "item_timeout_seconds": self.config.item_timeout_seconds,
            "max_retries": self.config.max_retries,
        }
        try:
            async with self.open_gateway(user_id) as gateway:
                region = await gateway.detect_region(project_id)
        except Exception as e:
            logger.bind(project_id=project_id, error=str(e)).warning("publish_health_check_failed")
            return {"healthy": False, "error": str(e), "regions": self.config.regions}

        return {
            "healthy": True,
            "project_region": region,
            "project_region_label": region_label(region),
            "regions": self.config.regions,
            "config": config,
        }
