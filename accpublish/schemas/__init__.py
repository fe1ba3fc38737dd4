from accpublish.schemas.publish import (
    DirectRunResponse,
    ErrorResult,
    JobListResponse,
    PublishJobCreate,
    PublishJobResponse,
    PublishJobUpdate,
    PublishResult,
    PublishRunResponse,
    QueuedResult,
    ResolveRequest,
    ResolveResponse,
    RunNowResponse,
)

__all__ = [
    "PublishJobCreate",
    "PublishJobUpdate",
    "PublishJobResponse",
    "PublishRunResponse",
    "JobListResponse",
    "RunNowResponse",
    "ResolveRequest",
    "ResolveResponse",
    "DirectRunResponse",
    "QueuedResult",
    "PublishResult",
    "ErrorResult",
]
