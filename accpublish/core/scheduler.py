"""
APScheduler integration for FastAPI.

Each enabled publish job gets its own cron job in an in-process
AsyncIOScheduler, keyed by the publish job id. Schedules are rebuilt from the
database at startup, so the in-memory job store is enough.

Guarantees:
- At most one execution per publish job at a time (scheduled or manual)
- Runs left "running" by a previous process are marked failed at startup
- A scheduled tick never raises; failures end up on the run and the job
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from accpublish.config import SchedulerConfig, get_config, get_settings
from accpublish.core.cron import build_trigger, next_fire_time
from accpublish.core.datetime_utils import utc_now
from accpublish.core.errors import JobNotFoundError
from accpublish.core.logging import get_logger
from accpublish.models.publish_job import JobStatus, PublishJob
from accpublish.models.publish_run import PublishRun, RunStatus
from accpublish.services.publish_runner import PublishRunner
from accpublish.services.publish_store import PublishStore, assign_fields

logger = get_logger(__name__)

RECOVERY_MESSAGE = "Process restart while running"


@dataclass
class RunNowResult:
    """Outcome of a manual trigger."""

    started: bool
    run_id: uuid.UUID | None = None
    already_running: bool = False


class PublishScheduler:
    """Owns the cron job of every enabled publish job and runs them."""

    def __init__(
        self,
        store: PublishStore,
        runner: PublishRunner,
        config: SchedulerConfig | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.config = config or get_config().scheduler
        self.scheduler = scheduler or AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self.config.misfire_grace_seconds,
            },
        )
        # publish job id -> APScheduler job
        self.tasks: dict[str, Job] = {}
        # publish job ids with an execution in flight
        self.executing: set[str] = set()
        self._background: set[asyncio.Task] = set()

    # --- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler, then recover and load jobs from the database."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("scheduler_started")
        await self.init()

    def shutdown(self) -> None:
        """Stop firing. Runs already in flight are not awaited."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.bind(in_flight=len(self.executing)).info("scheduler_stopped")
        self.tasks.clear()

    async def recover(self) -> int:
        """Mark runs left "running" by a previous process as failed."""
        hanging = await self.store.list_runs(status=RunStatus.RUNNING)
        now = utc_now()
        for run in hanging:
            await self.store.update_run(
                run.id, status=RunStatus.FAILED, message=RECOVERY_MESSAGE, ended_at=now
            )

        if hanging:
            logger.bind(count=len(hanging)).warning("scheduler_crash_recovery_runs_failed")
        return len(hanging)

    async def init(self) -> int:
        """Crash recovery, then schedule every enabled job (oldest first)."""
        try:
            await self.recover()
        except Exception as e:
            logger.bind(error=str(e)).error("scheduler_crash_recovery_error")

        jobs = await self.store.list_jobs(schedule_enabled=True)
        for job in jobs:
            fire_time = self.schedule_job(job)
            if fire_time != job.next_run:
                await self.store.update_job(job.id, assign_fields({"next_run": fire_time}))

        logger.bind(count=len(self.tasks)).info("scheduler_jobs_loaded")
        return len(self.tasks)

    # --- Registration ---------------------------------------------------------

    def schedule_job(self, job: PublishJob) -> datetime | None:
        """(Re)register the cron job of a publish job.

        Returns:
            Next fire time (naive UTC), or None when nothing was registered
        """
        key = str(job.id)
        self.unschedule_job(key)

        if not job.schedule_enabled:
            return None

        try:
            trigger = build_trigger(job.cron_expression, job.timezone or "UTC")
        except ValueError as e:
            logger.bind(
                job_id=key,
                cron=job.cron_expression,
                timezone=job.timezone,
                error=str(e),
            ).error("scheduler_invalid_cron")
            return None

        self.tasks[key] = self.scheduler.add_job(
            self.run_job,
            trigger=trigger,
            args=[key],
            id=key,
            name=f"publish:{key}",
            replace_existing=True,
        )
        fire_time = next_fire_time(trigger)
        logger.bind(
            job_id=key,
            cron=job.cron_expression,
            timezone=job.timezone,
            next_run=fire_time.isoformat() if fire_time else None,
        ).info("scheduler_job_scheduled")
        return fire_time

    def unschedule_job(self, job_id: uuid.UUID | str) -> None:
        """Cancel the cron job of a publish job. No-op when there is none."""
        key = str(job_id)
        if self.tasks.pop(key, None) is None:
            return
        if self.scheduler.get_job(key) is not None:
            self.scheduler.remove_job(key)
        logger.bind(job_id=key).info("scheduler_job_unscheduled")

    def is_scheduled(self, job_id: uuid.UUID | str) -> bool:
        return str(job_id) in self.tasks

    # --- Execution ------------------------------------------------------------

    async def run_job(self, job_id: uuid.UUID | str) -> None:
        """Execute a publish job once. Used by cron ticks; never raises."""
        key = str(job_id)
        if key in self.executing:
            logger.bind(job_id=key).warning("scheduler_job_skipped_already_running")
            return

        self.executing.add(key)
        try:
            try:
                run = await self._begin(key)
            except JobNotFoundError:
                logger.bind(job_id=key).warning("scheduler_job_missing")
                self.unschedule_job(key)
                return
            except Exception as e:
                logger.bind(job_id=key, error=str(e)).error("scheduler_job_start_failed")
                return

            await self._complete(key, run)
        finally:
            self.executing.discard(key)

    async def run_job_now(self, job_id: uuid.UUID | str) -> RunNowResult:
        """
        Start a publish job immediately and return once its run exists.

        The run continues in a background task.

        Raises:
            JobNotFoundError: Unknown job
            Exception: Any failure before the run was created
        """
        key = str(job_id)
        if key in self.executing:
            logger.bind(job_id=key).info("scheduler_run_now_already_running")
            return RunNowResult(started=False, already_running=True)

        self.executing.add(key)
        try:
            run = await self._begin(key)
        except Exception:
            self.executing.discard(key)
            raise

        task = asyncio.create_task(self._complete_in_background(key, run))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        logger.bind(job_id=key, run_id=str(run.id)).info("scheduler_run_now_started")
        return RunNowResult(started=True, run_id=run.id)

    async def _complete_in_background(self, key: str, run: PublishRun) -> None:
        try:
            await self._complete(key, run)
        finally:
            self.executing.discard(key)

    async def _begin(self, key: str) -> PublishRun:
        """Mark the job running and create its run.

        Raises:
            JobNotFoundError: The job does not exist (anymore)
        """

        def mark_running(job: PublishJob) -> None:
            job.status = JobStatus.RUNNING
            job.last_run = utc_now()

        job = await self.store.update_job(key, mark_running)
        if job is None:
            raise JobNotFoundError(key)

        try:
            return await self.runner.start_run(job)
        except Exception as e:
            await self._fail(key, None, e)
            raise

    async def _complete(self, key: str, run: PublishRun) -> None:
        """Execute the run and record the outcome on the run and the job."""
        try:
            summary = await self.runner.execute_run(run)
            await self.runner.finish_run(run, RunStatus.SUCCESS, summary)
        except Exception as e:
            await self._fail(key, run, e)
            return

        finished_at = utc_now().isoformat()

        def record_success(job: PublishJob) -> None:
            job.status = JobStatus.IDLE
            job.statistics = {
                **(job.statistics or {}),
                "last": {
                    "at": finished_at,
                    "duration_ms": summary.duration_ms,
                    "items": len(summary.results),
                    "ok": True,
                },
            }
            self._append_history(
                job,
                {
                    "at": finished_at,
                    "status": "done",
                    "duration_ms": summary.duration_ms,
                    "results": run.results,
                },
            )
            job.next_run = self._next_run(job)

        try:
            job = await self.store.update_job(key, record_success)
        except Exception as e:
            await self._fail(key, run, e)
            return

        log = logger.bind(job_id=key, run_id=str(run.id))
        if job is None:
            log.info("scheduler_job_deleted_during_run")
            return
        log.bind(ok=summary.ok_count, failed=summary.fail_count).info("scheduler_job_completed")

    async def _fail(self, key: str, run: PublishRun | None, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        logger.bind(
            job_id=key,
            run_id=str(run.id) if run else None,
            error=message,
        ).error("scheduler_job_failed")

        if run is not None and not run.status.is_terminal:
            try:
                await self.runner.finish_run(run, RunStatus.FAILED, message=message)
            except Exception as e:
                logger.bind(run_id=str(run.id), error=str(e)).exception(
                    "scheduler_run_failure_not_saved"
                )

        def record_failure(job: PublishJob) -> None:
            job.status = JobStatus.ERROR
            self._append_history(
                job, {"at": utc_now().isoformat(), "status": "error", "message": message}
            )
            job.next_run = self._next_run(job)

        try:
            if await self.store.update_job(key, record_failure) is None:
                logger.bind(job_id=key).info("scheduler_job_deleted_during_run")
        except Exception as e:
            logger.bind(job_id=key, error=str(e)).exception("scheduler_job_failure_not_saved")

    def _append_history(self, job: PublishJob, entry: dict[str, Any]) -> None:
        history = [*(job.history or []), entry]
        job.history = history[-self.config.history_limit :]

    def _next_run(self, job: PublishJob) -> datetime | None:
        if not job.schedule_enabled:
            return None
        try:
            return next_fire_time(build_trigger(job.cron_expression, job.timezone or "UTC"))
        except ValueError:
            return None


# Global scheduler instance
scheduler: PublishScheduler | None = None


def build_scheduler() -> PublishScheduler:
    """Wire a scheduler against the application database and APS."""
    from accpublish.core.database import AsyncSessionLocal
    from accpublish.services.aps_auth import ApsCredentialProvider

    store = PublishStore(AsyncSessionLocal)
    runner = PublishRunner(store, ApsCredentialProvider(AsyncSessionLocal))
    return PublishScheduler(store, runner)


def get_scheduler() -> PublishScheduler:
    """Return the global scheduler, creating it (not started) if needed."""
    global scheduler
    if scheduler is None:
        scheduler = build_scheduler()
    return scheduler


async def start_scheduler() -> PublishScheduler | None:
    """Start the global scheduler unless disabled by configuration."""
    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    instance = get_scheduler()
    await instance.start()
    return instance


async def stop_scheduler() -> None:
    """Gracefully stop the global scheduler."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None


def get_job_schedules(instance: PublishScheduler | None = None) -> list[dict[str, Any]]:
    """Get all registered publish job schedules."""
    instance = instance or scheduler
    if not instance:
        return []

    schedules = []
    for key, task in instance.tasks.items():
        fire_time = getattr(task, "next_run_time", None)
        schedules.append(
            {
                "id": key,
                "name": task.name,
                "trigger": str(task.trigger),
                "next_fire_time": fire_time.isoformat() if fire_time else None,
                "executing": key in instance.executing,
            }
        )
    return schedules
