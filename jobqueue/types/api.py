"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.constants import DEFAULT_MAX_RETRIES, DEFAULT_PRIORITY, JobStatus


class CreateJobRequest(BaseModel):
    """Request body for enqueueing a new job."""

    job_type: str = Field(..., min_length=1, description="Processor type tag")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload data")
    priority: int = Field(default=DEFAULT_PRIORITY, description="Informational priority")
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES, ge=1, le=10, description="Maximum retry attempts"
    )
    scheduled_for: datetime | None = Field(
        default=None, description="Schedule job for future execution"
    )


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    job_type: str
    payload: dict[str, Any]
    priority: int
    status: JobStatus
    idempotency_key: str
    correlation_id: str
    triggered_by: str
    retry_count: int
    max_retries: int
    scheduled_for: datetime
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    error: dict[str, Any] | None
    result: Any = None


class JobListResponse(BaseModel):
    """List of jobs, newest first."""

    jobs: list[JobResponse]
    count: int
    limit: int
    offset: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
