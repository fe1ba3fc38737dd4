"""Domain exceptions for the publish scheduler.

``status_code`` and ``detail`` are what the API answers when one of these
escapes a route.
"""

import enum
from typing import Any


class ItemErrorKind(str, enum.Enum):
    """Error tag recorded on a failed per-item result."""

    RESOLUTION_ERROR = "RESOLUTION_ERROR"
    PUBLISH_ERROR = "PUBLISH_ERROR"


class AccPublishError(Exception):
    """Base class for application errors."""

    status_code = 500

    @property
    def detail(self) -> Any:
        return str(self)


class ResolutionError(AccPublishError):
    """An item URN could not be mapped to a version URN."""

    kind = ItemErrorKind.RESOLUTION_ERROR
    status_code = 404


class CredentialError(AccPublishError):
    """No valid Autodesk access token could be obtained for a user."""

    status_code = 401


class JobNotFoundError(AccPublishError):
    """The requested publish job does not exist."""

    status_code = 404

    def __init__(self, job_id: object) -> None:
        super().__init__(f"Publish job {job_id} not found")
        self.job_id = job_id

    @property
    def detail(self) -> Any:
        return "Job not found"


class DuplicateJobError(AccPublishError):
    """An identical publish job already exists for this user."""

    status_code = 409

    def __init__(self, existing_id: object) -> None:
        super().__init__("An identical publish job already exists")
        self.existing_id = existing_id

    @property
    def detail(self) -> Any:
        return {"message": str(self), "existing_id": str(self.existing_id)}


class RetryableStatusError(AccPublishError):
    """Transient HTTP status (5xx or 429) worth another attempt."""

    status_code = 502

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"HTTP {status_code}")
        self.upstream_status = status_code
        self.body = body
