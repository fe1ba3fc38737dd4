"""Publish job management: validated create/update/delete kept in sync with the scheduler."""

import uuid
from typing import Any

from accpublish.core.errors import DuplicateJobError, JobNotFoundError
from accpublish.core.logging import get_logger
from accpublish.core.scheduler import PublishScheduler
from accpublish.models.publish_job import PublishJob
from accpublish.schemas.publish import PublishJobCreate, PublishJobUpdate
from accpublish.services.publish_store import assign_fields

logger = get_logger(__name__)

# Fields that change when or whether the cron job fires
SCHEDULE_FIELDS = {"schedule_enabled", "cron_expression", "timezone"}


async def find_duplicate(
    scheduler: PublishScheduler,
    user_id: uuid.UUID,
    data: PublishJobCreate,
) -> PublishJob | None:
    """Find a job of the same user with the same target, schedule and items (in order)."""
    candidates = await scheduler.store.list_jobs(
        user_id=user_id,
        hub_id=data.hub_id,
        project_id=data.project_id,
        cron_expression=data.cron_expression,
        timezone=data.timezone,
    )
    for job in candidates:
        if list(job.models or []) == data.models:
            return job
    return None


async def create_job(
    scheduler: PublishScheduler,
    user_id: uuid.UUID,
    data: PublishJobCreate,
) -> PublishJob:
    """
    Create a publish job and schedule it when enabled.

    Raises:
        DuplicateJobError: The user already has an identical job
    """
    existing = await find_duplicate(scheduler, user_id, data)
    if existing is not None:
        raise DuplicateJobError(existing.id)

    job = await scheduler.store.create_job(user_id=user_id, **data.model_dump())

    if job.schedule_enabled:
        job.next_run = scheduler.schedule_job(job)
        await scheduler.store.update_job(job.id, assign_fields({"next_run": job.next_run}))

    logger.bind(
        job_id=str(job.id),
        user_id=str(user_id),
        items=len(job.models),
        cron=job.cron_expression,
        timezone=job.timezone,
    ).info("publish_job_created")
    return job


def _merged_payload(job: PublishJob, changes: dict[str, Any]) -> dict[str, Any]:
    current = {name: getattr(job, name) for name in PublishJobCreate.model_fields}
    return {**current, **changes}


async def update_job(
    scheduler: PublishScheduler,
    job: PublishJob,
    data: PublishJobUpdate,
) -> PublishJob:
    """
    Apply a partial update, validate the merged job and re-sync its schedule.

    Raises:
        pydantic.ValidationError: The merged job is invalid
        JobNotFoundError: The job was deleted meanwhile
    """
    changes = data.model_dump(exclude_unset=True)
    merged = PublishJobCreate.model_validate(_merged_payload(job, changes))

    values = {name: getattr(merged, name) for name in changes}
    for name, value in values.items():
        setattr(job, name, value)

    if SCHEDULE_FIELDS & changes.keys():
        values["next_run"] = job.next_run = scheduler.schedule_job(job)

    # Only the edited columns are written; run bookkeeping stays untouched
    updated = await scheduler.store.update_job(job.id, assign_fields(values))
    if updated is None:
        scheduler.unschedule_job(job.id)
        raise JobNotFoundError(job.id)

    logger.bind(job_id=str(job.id), fields=sorted(changes)).info("publish_job_updated")
    return updated


async def delete_job(scheduler: PublishScheduler, job_id: uuid.UUID) -> None:
    """
    Unschedule and delete a job. Its runs are kept.

    Raises:
        JobNotFoundError: Unknown job
    """
    scheduler.unschedule_job(job_id)
    if not await scheduler.store.delete_job(job_id):
        raise JobNotFoundError(job_id)
    logger.bind(job_id=str(job_id)).info("publish_job_deleted")
