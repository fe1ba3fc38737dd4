from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from accpublish.api.errors import register_exception_handlers
from accpublish.api.router import api_router
from accpublish.config import get_settings
from accpublish.core.logging import get_logger, setup_logging
from accpublish.core.rate_limit import limiter, rate_limit_exceeded_handler
from accpublish.core.scheduler import start_scheduler, stop_scheduler
from accpublish.dependencies import Scheduler

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Crash recovery runs inside start_scheduler, before the first cron tick
    setup_logging()
    instance = await start_scheduler()
    logger.bind(
        scheduler=instance is not None,
        real_publish=settings.enable_real_publish,
        command=settings.publish_command,
    ).info("app_started")
    try:
        yield
    finally:
        await stop_scheduler()
        logger.info("app_stopped")


app = FastAPI(
    title="ACC Publish Scheduler",
    description="Scheduled publishing of Revit cloud models on Autodesk Construction Cloud",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.base_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check(scheduler: Scheduler) -> dict[str, Any]:
    """Liveness plus scheduler state, for load balancers and dashboards."""
    return {
        "status": "healthy",
        "scheduler": "running" if scheduler.scheduler.running else "stopped",
        "mode": scheduler.runner.mode,
        "scheduled_jobs": len(scheduler.tasks),
        "executing_jobs": len(scheduler.executing),
    }
