"""
Job-related type definitions for internal use.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from jobqueue.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    DEFAULT_TRIGGERED_BY,
)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC, the storage convention for job timestamps."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class EnqueueRequest(BaseModel):
    """
    Request to put a new job on the queue.
    Validated and normalized before any store access.
    """

    organization_id: str = Field(..., min_length=1)
    job_type: str = Field(..., min_length=1, max_length=255)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    scheduled_for: datetime | None = None
    triggered_by: str = DEFAULT_TRIGGERED_BY
    idempotency_key: str | None = Field(default=None, max_length=255)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=10)

    @field_validator("scheduled_for")
    @classmethod
    def _normalize_scheduled_for(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value)

    @field_validator("idempotency_key", "triggered_by", mode="before")
    @classmethod
    def _blank_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_TRIGGERED_BY if info.field_name == "triggered_by" else None
        return value


class JobError(BaseModel):
    """
    Structured detail of a job's last failure.
    Stored on the job's `error` column.
    """

    message: str
    stack: str | None = None
    code: str | None = None


class JobTypeStats(BaseModel):
    """Per job type counters."""

    total: int = 0
    completed: int = 0
    failed: int = 0


class JobStats(BaseModel):
    """
    Point-in-time queue statistics for one organization.
    Computed from the store on every call.
    """

    total: int = 0
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0
    cancelled: int = 0
    by_type: dict[str, JobTypeStats] = Field(default_factory=dict)
