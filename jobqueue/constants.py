"""
Application constants.
Centralized location for all constant values used across the application.
"""

from datetime import timedelta
from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - QUEUED -> PROCESSING (claimed)
    - PROCESSING -> COMPLETED (processor succeeded)
    - PROCESSING -> QUEUED (processor failed, retries left)
    - PROCESSING -> DEAD_LETTER (retries exhausted)
    - QUEUED / PROCESSING -> CANCELLED (cancel requested)
    - DEAD_LETTER -> QUEUED (replay)
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD_LETTER = "dead_letter"
    CANCELLED = "cancelled"


# Statuses that hold the (organization_id, idempotency_key) slot
ACTIVE_STATUSES: tuple[JobStatus, ...] = (JobStatus.QUEUED, JobStatus.PROCESSING)

# Statuses a job can be cancelled from
CANCELLABLE_STATUSES: tuple[JobStatus, ...] = (JobStatus.QUEUED, JobStatus.PROCESSING)

# Backoff ladder: the delay after the k-th failure is the k-th entry
RETRY_DELAYS: tuple[timedelta, ...] = (
    timedelta(seconds=1),
    timedelta(seconds=5),
    timedelta(seconds=15),
    timedelta(seconds=60),
    timedelta(seconds=300),
)

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_PRIORITY = 5
DEFAULT_TRIGGERED_BY = "system"
DEFAULT_LIST_LIMIT = 50

# Payload redaction
SENSITIVE_KEYS: tuple[str, ...] = ("password", "secret", "token", "api_key", "credentials")
REDACTED_MARKER = "[REDACTED]"

# Audit
AUDIT_RESOURCE_TYPE = "background_job"
AUDIT_ACTION_CREATE = "create"
AUDIT_ACTION_UPDATE = "update"
AUDIT_STATUS_SUCCESS = "success"
AUDIT_STATUS_FAILURE = "failure"
SYSTEM_ACTOR = "system"

# Error codes recorded on jobs
ERROR_CODE_TIMEOUT = "TIMEOUT"
ERROR_CODE_LEASE_EXPIRED = "LEASE_EXPIRED"
ERROR_CODE_UNKNOWN_JOB_TYPE = "UNKNOWN_JOB_TYPE"

# API constants
API_V1_PREFIX = "/v1"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
ORGANIZATION_ID_HEADER = "X-Organization-ID"
ACTOR_HEADER = "X-Actor"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_DEDUPLICATED = "jobs_deduplicated_total"
METRIC_JOB_ATTEMPTS = "job_attempts_total"
METRIC_JOB_DURATION = "job_attempt_duration_seconds"
METRIC_JOBS_DEAD_LETTERED = "jobs_dead_lettered_total"
METRIC_JOBS_CANCELLED = "jobs_cancelled_total"
METRIC_JOBS_REPLAYED = "jobs_replayed_total"
METRIC_LEASES_RECOVERED = "leases_recovered_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_PROCESS_JOB = "process_job"
SPAN_EXECUTE_PROCESSOR = "execute_processor"
