"""Map domain exceptions escaping a route to JSON error responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from accpublish.core.errors import AccPublishError, CredentialError
from accpublish.core.logging import get_logger

logger = get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the ``AccPublishError`` handler on the app."""

    @app.exception_handler(AccPublishError)
    async def accpublish_error_handler(request: Request, exc: AccPublishError) -> JSONResponse:
        log = logger.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if exc.status_code >= 500:
            log.error("api_error")
        elif isinstance(exc, CredentialError):
            log.warning("api_credential_error")
        else:
            log.info("api_error")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
