"""Rate limiting configuration using SlowAPI."""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from accpublish.dependencies import request_session_id

# Mutating publish job routes
JOB_MUTATION_LIMIT = "10/15 seconds"


def session_or_remote_address(request: Request) -> str:
    """One bucket per signed-in session, else per client IP."""
    session_id = request_session_id(request)
    if session_id:
        return f"session:{session_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=session_or_remote_address)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
