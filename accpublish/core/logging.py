import logging
import sys
from typing import Any

from loguru import logger

from accpublish.config import get_settings

# stdlib loggers routed into loguru
INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpx",
    "apscheduler",
)

# APScheduler announces every tick; our own scheduler_* events already cover it
_SCHEDULER_TICK_MESSAGES = ("Running job", "executed successfully", "Added job", "Removed job")

DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
PLAIN_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}"


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that called logging
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _production_filter(record: dict[str, Any]) -> bool:
    """Drop health probes and APScheduler tick chatter below WARNING."""
    if record["level"].no >= logging.WARNING:
        return True
    message = record.get("message", "")
    if "/health" in message:
        return False
    if record["name"].startswith("apscheduler") and any(
        m in message for m in _SCHEDULER_TICK_MESSAGES
    ):
        return False
    return True


def setup_logging() -> None:
    """Configure loguru for the API server, the scheduler and the CLI."""
    settings = get_settings()

    logger.remove()
    logger.configure(extra={"service": "accpublish"})

    if settings.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=DEBUG_FORMAT,
            backtrace=True,
            diagnose=True,
        )
    else:
        # serialize=True emits one JSON object per line for log shippers
        logger.add(
            sys.stderr,
            level=settings.log_level.upper(),
            format=PLAIN_FORMAT,
            filter=_production_filter,
            serialize=settings.log_json,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]

    logger.bind(
        level="DEBUG" if settings.debug else settings.log_level.upper(),
        json=settings.log_json and not settings.debug,
        real_publish=settings.enable_real_publish,
    ).debug("logging_configured")


def get_logger(name: str) -> Any:
    """Logger bound to a module name; events are logged as snake_case strings."""
    return logger.bind(name=name)
