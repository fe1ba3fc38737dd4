"""Publish job, run and direct publish API endpoints."""

import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import ValidationError

from accpublish.core.rate_limit import JOB_MUTATION_LIMIT, limiter
from accpublish.core.scheduler import get_job_schedules
from accpublish.dependencies import CurrentUser, OwnedJob, Scheduler
from accpublish.models.publish_run import RunStatus
from accpublish.schemas.publish import (
    DirectRunResponse,
    JobListResponse,
    PublishJobCreate,
    PublishJobResponse,
    PublishJobUpdate,
    PublishRunResponse,
    ResolveRequest,
    ResolveResponse,
    RunNowResponse,
    dump_results,
    is_lineage_urn,
    is_version_urn,
)
from accpublish.services import publish_jobs
from accpublish.services.publish_runner import AdHocRun

router = APIRouter()

MAX_RUNS_LIMIT = 200


# =============================================================================
# Jobs
# =============================================================================


@router.post("/jobs", response_model=PublishJobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(JOB_MUTATION_LIMIT)
async def create_publish_job(
    request: Request,
    payload: PublishJobCreate,
    user: CurrentUser,
    scheduler: Scheduler,
) -> PublishJobResponse:
    """
    Create a publish job and schedule it when enabled.

    Returns 409 if the user already has an identical job (same hub, project,
    cron, timezone and items in the same order).
    """
    job = await publish_jobs.create_job(scheduler, user.id, payload)
    return PublishJobResponse.model_validate(job)


@router.get("/jobs", response_model=JobListResponse)
async def list_publish_jobs(
    user: CurrentUser,
    scheduler: Scheduler,
    project_id: str | None = Query(default=None),
    hub_id: str | None = Query(default=None),
    active: bool | None = Query(default=None, description="Filter on schedule_enabled"),
) -> JobListResponse:
    """List the current user's jobs, newest first."""
    jobs = await scheduler.store.list_jobs(
        user_id=user.id,
        project_id=project_id,
        hub_id=hub_id,
        schedule_enabled=active,
        newest_first=True,
    )
    return JobListResponse(
        data=[PublishJobResponse.model_validate(j) for j in jobs],
        real_publish_enabled=scheduler.runner.config.enable_real,
    )


@router.patch("/jobs/{job_id}", response_model=PublishJobResponse)
@limiter.limit(JOB_MUTATION_LIMIT)
async def update_publish_job(
    request: Request,
    payload: PublishJobUpdate,
    job: OwnedJob,
    scheduler: Scheduler,
) -> PublishJobResponse:
    """Partially update a job, then re-schedule or unschedule it."""
    try:
        job = await publish_jobs.update_job(scheduler, job, payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        ) from e

    return PublishJobResponse.model_validate(job)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(JOB_MUTATION_LIMIT)
async def delete_publish_job(
    request: Request,
    job: OwnedJob,
    scheduler: Scheduler,
) -> None:
    """Unschedule and delete a job. Its run history is kept."""
    await publish_jobs.delete_job(scheduler, job.id)


@router.post("/jobs/{job_id}/run", response_model=RunNowResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(JOB_MUTATION_LIMIT)
async def run_publish_job_now(
    request: Request,
    job: OwnedJob,
    scheduler: Scheduler,
) -> RunNowResponse:
    """
    Start a job immediately.

    Returns as soon as the run exists; poll the runs endpoints for results.
    Returns 409 if the job is already executing.
    """
    result = await scheduler.run_job_now(job.id)
    if result.already_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is already running",
        )
    return RunNowResponse(started=result.started, run_id=result.run_id)


# =============================================================================
# Runs
# =============================================================================


@router.get("/runs", response_model=list[PublishRunResponse])
async def list_publish_runs(
    user: CurrentUser,
    scheduler: Scheduler,
    project_id: str | None = Query(default=None),
    job_id: uuid.UUID | None = Query(default=None),
    status_filter: RunStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1),
) -> list[PublishRunResponse]:
    """List the current user's runs, most recent first (at most 200)."""
    runs = await scheduler.store.list_runs(
        user_id=user.id,
        project_id=project_id,
        job_id=job_id,
        status=status_filter,
        limit=min(limit, MAX_RUNS_LIMIT),
    )
    return [PublishRunResponse.model_validate(r) for r in runs]


@router.get("/jobs/{job_id}/runs", response_model=list[PublishRunResponse])
async def list_publish_job_runs(
    job: OwnedJob,
    scheduler: Scheduler,
    limit: int = Query(default=50, ge=1),
) -> list[PublishRunResponse]:
    """List the runs of one job, most recent first."""
    runs = await scheduler.store.list_runs(
        user_id=job.user_id,
        job_id=job.id,
        limit=min(limit, MAX_RUNS_LIMIT),
    )
    return [PublishRunResponse.model_validate(r) for r in runs]


# =============================================================================
# Direct publish and diagnostics
# =============================================================================


@router.post("/direct/resolve", response_model=ResolveResponse)
async def resolve_item(
    payload: ResolveRequest,
    user: CurrentUser,
    scheduler: Scheduler,
) -> ResolveResponse:
    """Resolve an item URN to its latest version URN, without publishing."""
    if not (is_lineage_urn(payload.urn) or is_version_urn(payload.urn)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unexpected URN (neither lineage nor version)",
        )

    resolved = await scheduler.runner.resolve_item(
        user.id, payload.project_id, payload.urn, payload.region_hint
    )
    return ResolveResponse(
        project_id=payload.project_id,
        input=payload.urn,
        version_urn=resolved.version_urn,
        region=resolved.region,
    )


@router.post("/direct/run", response_model=DirectRunResponse)
async def run_direct_publish(
    payload: ResolveRequest,
    user: CurrentUser,
    scheduler: Scheduler,
) -> DirectRunResponse:
    """Publish one item right away, outside any job. Real publish mode only."""
    runner = scheduler.runner
    if not runner.config.enable_real:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Real publishing is disabled (ENABLE_REAL_PUBLISH=false)",
        )

    summary = await runner.execute_run(
        AdHocRun(user_id=user.id, project_id=payload.project_id, items=[payload.urn])
    )
    return DirectRunResponse(
        mode=runner.mode,
        command=runner.config.command,
        project_id=payload.project_id,
        duration_ms=summary.duration_ms,
        results=dump_results(summary.results),
    )


@router.get("/direct/version")
async def get_version_details(
    user: CurrentUser,
    scheduler: Scheduler,
    project_id: str = Query(min_length=1),
    urn: str = Query(min_length=1, description="Version URN"),
    region_hint: str | None = Query(default=None),
) -> dict[str, Any]:
    """Attributes of a version, from whichever region knows it."""
    async with scheduler.runner.open_gateway(user.id) as gateway:
        return await gateway.get_version_details(project_id, urn, region_hint)


@router.get("/direct/folder")
async def list_folder_items(
    user: CurrentUser,
    scheduler: Scheduler,
    project_id: str = Query(min_length=1),
    folder_urn: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, Any]:
    """List a folder of the project (its root folder by default)."""
    async with scheduler.runner.open_gateway(user.id) as gateway:
        return await gateway.list_folder_items(project_id, folder_urn, limit)


@router.get("/health/{project_id}")
async def publish_health(
    project_id: str,
    user: CurrentUser,
    scheduler: Scheduler,
) -> dict[str, Any]:
    """Check the user's credentials and the project's region."""
    return await scheduler.runner.health_check(user.id, project_id)


@router.get("/schedules")
async def list_schedules(user: CurrentUser, scheduler: Scheduler) -> list[dict[str, Any]]:
    """Registered cron jobs of the current user's publish jobs."""
    owned = {str(j.id) for j in await scheduler.store.list_jobs(user_id=user.id)}
    return [s for s in get_job_schedules(scheduler) if s["id"] in owned]
