"""Exponential backoff for the Autodesk command calls.

5xx, 429 and network failures are transient there; anything else is final.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from accpublish.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How many times to try, and how long to wait in between."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))
    # Extra filter on top of the exception classes
    should_retry: Callable[[Exception], bool] | None = None

    def is_retryable(self, exc: Exception) -> bool:
        if not isinstance(exc, self.retryable_exceptions):
            return False
        return self.should_retry is None or self.should_retry(exc)


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
    delay = min(config.backoff_base * (2**attempt), config.backoff_max)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or the attempts run out.

    Attempt ``n`` (zero-based) that fails with a retryable exception is
    followed by a ``backoff_delay(config, n)`` sleep. Non-retryable exceptions
    and the failure of the last attempt propagate unchanged.

    Example:
        ```python
        config = RetryConfig(max_attempts=3, retryable_exceptions=(httpx.TransportError,))
        response = await retry_with_backoff(
            lambda: client.post(url, json=payload),
            config=config,
            operation_name=f"publish:{region}:{version_urn}",
        )
        ```
    """
    config = config or RetryConfig()
    attempts = max(1, config.max_attempts)
    attempt = 0

    while True:
        try:
            return await fn()
        except Exception as e:
            if not config.is_retryable(e):
                raise
            log = logger.bind(operation=operation_name, error=str(e))
            if attempt + 1 >= attempts:
                log.bind(attempts=attempts).error("retry_exhausted")
                raise

            delay = backoff_delay(config, attempt)
            log.bind(
                attempt=attempt + 1,
                max_attempts=attempts,
                delay_seconds=round(delay, 2),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)
            attempt += 1
