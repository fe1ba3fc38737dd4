"""Publish run model: one execution of a publish job."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from accpublish.models.base import Base, TimestampMixin


class RunStatus(str, enum.Enum):
    """Publish run status. SUCCESS and FAILED are terminal."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.FAILED)


class PublishRun(Base, TimestampMixin):
    """Records each execution of a publish job, with per-item results."""

    __tablename__ = "publish_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    hub_id: Mapped[str] = mapped_column(String(255))
    project_id: Mapped[str] = mapped_column(String(255), index=True)

    # Copy of the job's items when the run started
    items: Mapped[list[str]] = mapped_column(JSON, default=list)

    status: Mapped[RunStatus] = mapped_column(
        Enum(
            RunStatus,
            values_callable=lambda e: [x.value for x in e],
            name="publish_run_status",
            native_enum=False,
            length=20,
        ),
        default=RunStatus.QUEUED,
        index=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(default=None)
    ended_at: Mapped[datetime | None] = mapped_column(default=None)

    results: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    message: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<PublishRun {self.id} job={self.job_id} {self.status.value}>"
