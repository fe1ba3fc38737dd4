"""Persistence for publish jobs and runs.

Each operation runs in its own short session so that long publish runs never
hold a connection while they wait on Autodesk. Returned objects are detached
(``expire_on_commit=False``). Writes never insert: a row deleted in the
meantime stays deleted.
"""

import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accpublish.core.database import session_scope
from accpublish.models.publish_job import PublishJob
from accpublish.models.publish_run import PublishRun, RunStatus


def as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def assign_fields(values: dict[str, Any]) -> Callable[[PublishJob], None]:
    """Mutation for ``update_job`` that sets the given columns."""

    def apply(job: PublishJob) -> None:
        for name, value in values.items():
            setattr(job, name, value)

    return apply


class PublishStore:
    """Create/read/update/delete for ``PublishJob`` and ``PublishRun``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        # None means the application database
        self.session_factory = session_factory

    def session(self) -> AbstractAsyncContextManager[AsyncSession]:
        return session_scope(self.session_factory)

    # --- Jobs -----------------------------------------------------------------

    async def create_job(self, **fields: Any) -> PublishJob:
        job = PublishJob(**fields)
        async with self.session() as db:
            db.add(job)
            await db.flush()
            await db.refresh(job)
        return job

    async def get_job(self, job_id: uuid.UUID | str) -> PublishJob | None:
        async with self.session() as db:
            return await db.get(PublishJob, as_uuid(job_id))

    async def list_jobs(
        self,
        *,
        user_id: uuid.UUID | None = None,
        hub_id: str | None = None,
        project_id: str | None = None,
        schedule_enabled: bool | None = None,
        cron_expression: str | None = None,
        timezone: str | None = None,
        newest_first: bool = False,
    ) -> list[PublishJob]:
        query = select(PublishJob)
        if user_id is not None:
            query = query.where(PublishJob.user_id == user_id)
        if hub_id is not None:
            query = query.where(PublishJob.hub_id == hub_id)
        if project_id is not None:
            query = query.where(PublishJob.project_id == project_id)
        if schedule_enabled is not None:
            query = query.where(PublishJob.schedule_enabled == schedule_enabled)
        if cron_expression is not None:
            query = query.where(PublishJob.cron_expression == cron_expression)
        if timezone is not None:
            query = query.where(PublishJob.timezone == timezone)

        order = PublishJob.created_at.desc() if newest_first else PublishJob.created_at.asc()
        async with self.session() as db:
            result = await db.execute(query.order_by(order))
            return list(result.scalars().all())

    async def update_job(
        self, job_id: uuid.UUID | str, mutate: Callable[[PublishJob], None]
    ) -> PublishJob | None:
        """
        Apply ``mutate`` to the current row, in one locked transaction.

        Only the columns ``mutate`` touches are written, so concurrent edits to
        other columns survive. Returns None when the job no longer exists.
        """
        query = select(PublishJob).where(PublishJob.id == as_uuid(job_id)).with_for_update()
        async with self.session() as db:
            job = (await db.execute(query)).scalar_one_or_none()
            if job is None:
                return None
            mutate(job)
            await db.flush()
            # updated_at is computed by the database
            await db.refresh(job)
        return job

    async def delete_job(self, job_id: uuid.UUID | str) -> bool:
        async with self.session() as db:
            job = await db.get(PublishJob, as_uuid(job_id))
            if job is None:
                return False
            await db.delete(job)
            return True

    # --- Runs -----------------------------------------------------------------

    async def create_run(self, **fields: Any) -> PublishRun:
        run = PublishRun(**fields)
        async with self.session() as db:
            db.add(run)
            await db.flush()
            await db.refresh(run)
        return run

    async def get_run(self, run_id: uuid.UUID | str) -> PublishRun | None:
        async with self.session() as db:
            return await db.get(PublishRun, as_uuid(run_id))

    async def list_runs(
        self,
        *,
        user_id: uuid.UUID | None = None,
        job_id: uuid.UUID | None = None,
        project_id: str | None = None,
        status: RunStatus | None = None,
        limit: int | None = None,
    ) -> list[PublishRun]:
        query = select(PublishRun)
        if user_id is not None:
            query = query.where(PublishRun.user_id == user_id)
        if job_id is not None:
            query = query.where(PublishRun.job_id == job_id)
        if project_id is not None:
            query = query.where(PublishRun.project_id == project_id)
        if status is not None:
            query = query.where(PublishRun.status == status)

        query = query.order_by(PublishRun.created_at.desc(), PublishRun.started_at.desc())
        if limit is not None:
            query = query.limit(limit)

        async with self.session() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def update_run(self, run_id: uuid.UUID | str, **values: Any) -> bool:
        """Set columns of a run. False when no such run exists."""
        statement = update(PublishRun).where(PublishRun.id == as_uuid(run_id)).values(**values)
        async with self.session() as db:
            result = await db.execute(statement)
        return result.rowcount > 0
