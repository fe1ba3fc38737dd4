"""Schemas for publish jobs, runs and per-item results."""

import re
import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, field_validator

from accpublish.core.cron import is_valid_cron
from accpublish.core.datetime_utils import is_valid_timezone
from accpublish.core.errors import ItemErrorKind
from accpublish.models.publish_job import JobStatus
from accpublish.models.publish_run import RunStatus

LINEAGE_URN_RE = re.compile(r"^urn:adsk\.wipprod:dm\.lineage:[A-Za-z0-9\-_]+$", re.IGNORECASE)
VERSION_URN_RE = re.compile(r"^urn:adsk\.wipprod:fs\.file:vf\.[^?]+[?&]version=\d+$", re.IGNORECASE)


def is_lineage_urn(urn: str) -> bool:
    """Stable per-item id, e.g. urn:adsk.wipprod:dm.lineage:abc123."""
    return bool(LINEAGE_URN_RE.match(str(urn)))


def is_version_urn(urn: str) -> bool:
    """Specific revision, e.g. urn:adsk.wipprod:fs.file:vf.abc123?version=4."""
    return bool(VERSION_URN_RE.match(str(urn)))


# =============================================================================
# Per-item results (stored in PublishRun.results)
# =============================================================================


class QueuedResult(BaseModel):
    """Dry-run result: the item was simulated, nothing was sent."""

    item: str
    status: Literal["queued"] = "queued"


class PublishResult(BaseModel):
    """Outcome of a real publish command for one item."""

    item: str
    version: str
    status: Literal["accepted", "failed"]
    http: int
    region: str | None = None


class ErrorResult(BaseModel):
    """The item failed before a publish outcome could be obtained."""

    item: str
    status: Literal["failed"] = "failed"
    message: str
    error: ItemErrorKind


def _result_tag(value: Any) -> str:
    data = value if isinstance(value, dict) else value.__dict__
    if "error" in data:
        return "error"
    if "version" in data:
        return "publish"
    return "queued"


ItemResult = Annotated[
    Annotated[QueuedResult, Tag("queued")]
    | Annotated[PublishResult, Tag("publish")]
    | Annotated[ErrorResult, Tag("error")],
    Discriminator(_result_tag),
]

item_results_adapter: TypeAdapter[list[ItemResult]] = TypeAdapter(list[ItemResult])


def dump_results(results: list[QueuedResult | PublishResult | ErrorResult]) -> list[dict]:
    """Serialize results for the JSON column."""
    return [r.model_dump(mode="json") for r in results]


def is_failed(result: QueuedResult | PublishResult | ErrorResult | dict) -> bool:
    status = result.get("status") if isinstance(result, dict) else result.status
    return status == "failed"


# =============================================================================
# Job input
# =============================================================================


def _check_models(models: list[str]) -> list[str]:
    cleaned = [str(m).strip() for m in models if m and str(m).strip()]
    if not cleaned:
        raise ValueError("items (models) required")
    for urn in cleaned:
        if not (is_lineage_urn(urn) or is_version_urn(urn)):
            raise ValueError(f"Invalid URN: {urn}")
    return cleaned


def _check_cron(value: str) -> str:
    value = value.strip()
    if not is_valid_cron(value):
        raise ValueError("Invalid cron expression")
    return value


def _check_timezone(value: str) -> str:
    value = value.strip()
    if not is_valid_timezone(value):
        raise ValueError("Invalid timezone")
    return value


class PublishJobCreate(BaseModel):
    """Payload for creating a publish job."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    hub_id: str = Field(min_length=1)
    hub_name: str | None = None
    project_id: str = Field(min_length=1)
    project_name: str | None = None
    folder_id: str | None = None
    folder_name: str | None = None
    models: list[str] = Field(validation_alias="items")

    schedule_enabled: bool = True
    cron_expression: str = "0 2 * * *"
    timezone: str = "UTC"

    output_format: str = "default"
    publish_views: bool = False
    publish_sheets: bool = False
    include_linked_models: bool = False
    publish_options: dict[str, Any] = Field(default_factory=dict)

    notifications_enabled: bool = False
    notify_on_success: bool = False
    notify_on_failure: bool = True
    notification_recipients: list[str] = Field(default_factory=list)

    @field_validator("hub_id", "project_id")
    @classmethod
    def _strip_ids(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("models")
    @classmethod
    def _validate_models(cls, value: list[str]) -> list[str]:
        return _check_models(value)

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        return _check_cron(value)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        return _check_timezone(value)


class PublishJobUpdate(BaseModel):
    """Partial update of a publish job.

    Lists every mutable field; unknown fields are rejected. The merged job is
    validated again as a whole by ``PublishJobCreate`` before it is saved.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    hub_id: str | None = None
    hub_name: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    folder_id: str | None = None
    folder_name: str | None = None
    models: list[str] | None = Field(default=None, alias="items")

    schedule_enabled: bool | None = None
    cron_expression: str | None = None
    timezone: str | None = None

    output_format: str | None = None
    publish_views: bool | None = None
    publish_sheets: bool | None = None
    include_linked_models: bool | None = None
    publish_options: dict[str, Any] | None = None

    notifications_enabled: bool | None = None
    notify_on_success: bool | None = None
    notify_on_failure: bool | None = None
    notification_recipients: list[str] | None = None


# =============================================================================
# Responses
# =============================================================================


class PublishJobResponse(BaseModel):
    """Publish job as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    hub_id: str
    hub_name: str | None
    project_id: str
    project_name: str | None
    folder_id: str | None
    folder_name: str | None
    models: list[str]
    schedule_enabled: bool
    cron_expression: str
    timezone: str
    next_run: datetime | None
    last_run: datetime | None
    output_format: str
    publish_views: bool
    publish_sheets: bool
    include_linked_models: bool
    publish_options: dict[str, Any]
    status: JobStatus
    statistics: dict[str, Any]
    history: list[dict[str, Any]]
    notifications_enabled: bool
    notify_on_success: bool
    notify_on_failure: bool
    notification_recipients: list[str]
    created_at: datetime | None = None


class PublishRunResponse(BaseModel):
    """Publish run as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    user_id: uuid.UUID
    hub_id: str
    project_id: str
    items: list[str]
    status: RunStatus
    started_at: datetime | None
    ended_at: datetime | None
    results: list[dict[str, Any]]
    stats: dict[str, Any]
    message: str | None


class JobListResponse(BaseModel):
    """List of jobs plus the publish mode, so the UI can flag dry runs."""

    data: list[PublishJobResponse]
    real_publish_enabled: bool


class RunNowResponse(BaseModel):
    """Response for a manual trigger."""

    started: bool
    run_id: uuid.UUID | None = None


class ResolveRequest(BaseModel):
    """Resolve an item URN without publishing it."""

    project_id: str = Field(min_length=1)
    urn: str = Field(min_length=1)
    region_hint: str | None = None


class ResolveResponse(BaseModel):
    project_id: str
    input: str
    version_urn: str
    region: str | None


class DirectRunResponse(BaseModel):
    """Results of an immediate publish outside any job."""

    mode: str
    command: str
    project_id: str
    duration_ms: int
    results: list[dict[str, Any]]
