"""
Enqueue service.

Validates and normalizes a job request, resolves its idempotency key against
the organization's active jobs, and persists a new queued job.
"""

import logging
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.audit.sink import AuditEvent, AuditSink, NullAuditSink, emit_audit_event
from jobqueue.constants import AUDIT_ACTION_CREATE, SPAN_ENQUEUE_JOB
from jobqueue.db.connection import session_scope
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.redaction import sanitize_payload
from jobqueue.types.job import EnqueueRequest

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_correlation_id() -> str:
    """Correlation id: `<epoch ms>-<9 base36 chars>`."""
    return f"{int(time.time() * 1000)}-{_random_suffix()}"


def generate_idempotency_key(job_type: str) -> str:
    """
    Synthesized key for requests that did not supply one.

    Not rechecked for uniqueness beyond the store's own constraint.
    """
    return f"{job_type}-{int(time.time() * 1000)}-{_random_suffix()}"


class IdempotencyResolver:
    """Finds the active job already holding an idempotency key."""

    def __init__(self, repo: JobRepository):
        self._repo = repo

    async def resolve(self, organization_id: str, idempotency_key: str | None) -> Job | None:
        """
        Look up the queued or processing job with this key in the organization.

        Returns:
            The existing active job, or None when the request must create one.
        """
        if not idempotency_key:
            return None
        return await self._repo.find_active_by_idempotency_key(organization_id, idempotency_key)


class EnqueueService:
    """Creates queued jobs, at most one active per (organization, idempotency key)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_sink: AuditSink | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._audit_sink = audit_sink or NullAuditSink()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def enqueue(self, request: EnqueueRequest) -> tuple[Job, bool]:
        """
        Enqueue a job.

        Args:
            request: Validated enqueue request.

        Returns:
            Tuple of (job, created). created is False when an active job with the
            same idempotency key was returned instead.
        """
        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("organization_id", request.organization_id)
            span.set_attribute("job_type", request.job_type)

            async with session_scope(self._session_factory) as session:
                repo = JobRepository(session)

                existing = await IdempotencyResolver(repo).resolve(
                    request.organization_id, request.idempotency_key
                )
                if existing is not None:
                    logger.info(
                        "Enqueue deduplicated by idempotency key",
                        extra={
                            "job_id": str(existing.id),
                            "organization_id": request.organization_id,
                            "status": existing.status.value,
                        },
                    )
                    job, created = existing, False
                else:
                    job, created = await repo.create_job(
                        organization_id=request.organization_id,
                        job_type=request.job_type,
                        idempotency_key=request.idempotency_key
                        or generate_idempotency_key(request.job_type),
                        correlation_id=generate_correlation_id(),
                        payload=request.payload,
                        scheduled_for=request.scheduled_for or self._clock(),
                        priority=request.priority,
                        triggered_by=request.triggered_by,
                        max_retries=request.max_retries,
                    )

            span.set_attribute("job_id", str(job.id))
            span.set_attribute("created", created)

        self._metrics.record_job_enqueued(request.job_type, created)

        if created:
            await emit_audit_event(
                self._audit_sink,
                AuditEvent(
                    organization_id=job.organization_id,
                    actor=job.triggered_by,
                    action=AUDIT_ACTION_CREATE,
                    resource_id=str(job.id),
                    resource_name=job.job_type,
                    metadata={"payload": sanitize_payload(request.payload)},
                ),
                correlation_id=job.correlation_id,
            )

        return job, created
