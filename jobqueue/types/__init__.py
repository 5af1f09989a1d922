"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    CreateJobRequest,
    ErrorResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
)
from jobqueue.types.job import (
    EnqueueRequest,
    JobError,
    JobStats,
    JobTypeStats,
)

__all__ = [
    # API types
    "CreateJobRequest",
    "JobResponse",
    "JobListResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "EnqueueRequest",
    "JobError",
    "JobStats",
    "JobTypeStats",
]
