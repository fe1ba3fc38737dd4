"""
ACC Publish CLI - Command line interface for publish jobs.

Usage:
    accpublish --help          Show all commands
    accpublish run <job_id>    Execute a publish job once, in process
    accpublish recover         Mark runs left "running" as failed
    accpublish jobs            List enabled jobs with their next fire time
"""

import asyncio
import uuid

import typer

app = typer.Typer(
    name="accpublish",
    help="ACC Publish - scheduled Revit cloud model publishing",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


async def _run_once(job_id: str) -> int:
    from accpublish.core.scheduler import build_scheduler

    scheduler = build_scheduler()
    job = await scheduler.store.get_job(job_id)
    if job is None:
        _print_error(f"Job {job_id} not found")
        return 1

    typer.echo(f"Running job {job_id} ({len(job.models)} items, {scheduler.runner.mode})")
    await scheduler.run_job(job_id)

    runs = await scheduler.store.list_runs(job_id=job.id, limit=1)
    if not runs:
        _print_error("No run was recorded")
        return 1

    run = runs[0]
    for result in run.results:
        line = f"{result.get('item')}: {result.get('status')}"
        if result.get("http") is not None:
            line += f" (HTTP {result['http']}, {result.get('region') or '?'})"
        if result.get("message"):
            line += f" - {result['message']}"
        if result.get("status") == "failed":
            _print_warning(line)
        else:
            _print_success(line)

    typer.echo(f"\nRun {run.id}: {run.status.value} {run.stats}")
    if run.message:
        typer.echo(f"  {run.message}")
    return 0 if run.status.value == "success" else 1


@app.command()
def run(job_id: str = typer.Argument(..., help="Publish job id")):
    """Execute a publish job once, outside the scheduler."""
    from accpublish.core.logging import setup_logging

    try:
        job_id = str(uuid.UUID(job_id))
    except ValueError:
        _print_error(f"Invalid job id: {job_id}")
        raise typer.Exit(1) from None

    setup_logging()
    raise typer.Exit(asyncio.run(_run_once(job_id)))


@app.command()
def recover():
    """Mark runs left "running" by a dead process as failed."""
    from accpublish.core.logging import setup_logging
    from accpublish.core.scheduler import build_scheduler

    setup_logging()
    count = asyncio.run(build_scheduler().recover())
    _print_success(f"{count} run(s) marked failed")


async def _list_jobs() -> list[tuple[str, str, str, str]]:
    from accpublish.core.cron import build_trigger, next_fire_time
    from accpublish.services.publish_store import PublishStore

    rows = []
    for job in await PublishStore().list_jobs(schedule_enabled=True):
        try:
            fire_time = next_fire_time(build_trigger(job.cron_expression, job.timezone))
            next_run = fire_time.isoformat() if fire_time else "-"
        except ValueError as e:
            next_run = f"invalid ({e})"
        rows.append((str(job.id), f"{job.cron_expression} {job.timezone}", job.status.value, next_run))
    return rows


@app.command()
def jobs():
    """List enabled publish jobs and when they fire next (UTC)."""
    rows = asyncio.run(_list_jobs())
    if not rows:
        typer.echo("No enabled jobs")
        return

    for job_id, schedule, status, next_run in rows:
        typer.echo(f"{job_id}  {schedule:<28} {status:<8} next: {next_run}")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server (scheduler included)."""
    import subprocess

    cmd = ["uvicorn", "accpublish.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
