"""
Exception hierarchy for the job queue.
"""

from typing import Any
from uuid import UUID

from jobqueue.constants import ERROR_CODE_UNKNOWN_JOB_TYPE, JobStatus


class JobQueueError(Exception):
    """Base class for all job queue errors."""


class JobNotFoundError(JobQueueError):
    """The referenced job does not exist in the caller's organization."""

    def __init__(self, job_id: UUID | str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateError(JobQueueError):
    """A lifecycle operation was requested from a status that does not permit it."""

    def __init__(self, job_id: UUID | str, status: JobStatus | str, operation: str):
        self.job_id = job_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} job {job_id} in status '{status}'"
        )


class ProcessorFailure(JobQueueError):
    """
    The caller-supplied processor raised.

    Raised by the coordinator only after the requeue or dead-letter transition
    has been committed; `job` carries that persisted state.
    """

    def __init__(self, job: Any, error: dict[str, Any], original: BaseException):
        self.job = job
        self.error = error
        self.original = original
        super().__init__(error.get("message") or type(original).__name__)

    @property
    def code(self) -> str | None:
        return self.error.get("code")


class AuditSinkFailure(JobQueueError):
    """The audit write failed. Logged by the emitter, never propagated."""


class UnknownJobTypeError(JobQueueError):
    """No processor is registered for a job type."""

    code = ERROR_CODE_UNKNOWN_JOB_TYPE

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type: {job_type}")
