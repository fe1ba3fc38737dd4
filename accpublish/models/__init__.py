from accpublish.models.base import Base
from accpublish.models.publish_job import JobStatus, PublishJob
from accpublish.models.publish_run import PublishRun, RunStatus
from accpublish.models.user import Session, User

__all__ = [
    "Base",
    "User",
    "Session",
    "PublishJob",
    "JobStatus",
    "PublishRun",
    "RunStatus",
]
