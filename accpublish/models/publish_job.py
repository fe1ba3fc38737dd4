"""Scheduled publish job model."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from accpublish.models.base import Base, TimestampMixin, UpdatedAtMixin


class JobStatus(str, enum.Enum):
    """Publish job status."""

    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class PublishJob(Base, TimestampMixin, UpdatedAtMixin):
    """A recurring publication of ACC model items on a cron schedule."""

    __tablename__ = "publish_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    # ACC target
    hub_id: Mapped[str] = mapped_column(String(255), index=True)
    hub_name: Mapped[str | None] = mapped_column(String(255), default=None)
    project_id: Mapped[str] = mapped_column(String(255), index=True)
    project_name: Mapped[str | None] = mapped_column(String(255), default=None)
    folder_id: Mapped[str | None] = mapped_column(String(255), default=None)
    folder_name: Mapped[str | None] = mapped_column(String(255), default=None)

    # Selected item URNs, in publish order
    models: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Schedule
    schedule_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    cron_expression: Mapped[str] = mapped_column(String(100), default="0 2 * * *")
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    next_run: Mapped[datetime | None] = mapped_column(default=None)
    last_run: Mapped[datetime | None] = mapped_column(default=None)

    # Publish options
    output_format: Mapped[str] = mapped_column(String(50), default="default")
    publish_views: Mapped[bool] = mapped_column(Boolean, default=False)
    publish_sheets: Mapped[bool] = mapped_column(Boolean, default=False)
    include_linked_models: Mapped[bool] = mapped_column(Boolean, default=False)
    publish_options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # Status and bookkeeping
    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            values_callable=lambda e: [x.value for x in e],
            name="publish_job_status",
            native_enum=False,
            length=20,
        ),
        default=JobStatus.IDLE,
        index=True,
    )
    statistics: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Notifications
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_success: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_failure: Mapped[bool] = mapped_column(Boolean, default=True)
    notification_recipients: Mapped[list[str]] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<PublishJob {self.id} {self.cron_expression} {self.timezone}>"
