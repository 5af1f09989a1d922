"""
Lifecycle operations: cancel and dead-letter replay.

Both are single conditional updates. The status is read first only to report
NotFound / InvalidState; the update itself re-checks the status, so a
transition that lands in between is never overwritten.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.audit.sink import AuditEvent, AuditSink, NullAuditSink, emit_audit_event
from jobqueue.constants import (
    AUDIT_ACTION_UPDATE,
    CANCELLABLE_STATUSES,
    DEFAULT_TRIGGERED_BY,
    JobStatus,
)
from jobqueue.db.connection import session_scope
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import InvalidStateError, JobNotFoundError
from jobqueue.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class LifecycleOperations:
    """Operator-initiated transitions on a single job."""

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

    async def cancel(
        self,
        job_id: UUID,
        actor: str | None = None,
        organization_id: str | None = None,
    ) -> Job:
        """
        Cancel a queued or processing job.

        Cancelling a processing job does not interrupt its processor; it only
        keeps the attempt's outcome from requeueing or completing the job.

        Raises:
            JobNotFoundError: If the job does not exist in scope.
            InvalidStateError: If the job is not queued or processing.
        """
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            job = await _get_or_raise(repo, job_id, organization_id)
            if job.status not in CANCELLABLE_STATUSES:
                raise InvalidStateError(job_id, job.status.value, "cancel")

            cancelled = await repo.cancel_job(job_id, now=self._clock())
            if cancelled is None:
                current = await repo.get_job(job_id)
                raise InvalidStateError(job_id, current.status.value, "cancel")

        self._metrics.record_cancelled(cancelled.job_type)
        await emit_audit_event(
            self._audit_sink,
            AuditEvent(
                organization_id=cancelled.organization_id,
                actor=actor or DEFAULT_TRIGGERED_BY,
                action=AUDIT_ACTION_UPDATE,
                resource_id=str(cancelled.id),
                resource_name=cancelled.job_type,
                metadata={"action": "cancelled"},
            ),
            correlation_id=cancelled.correlation_id,
        )
        return cancelled

    async def replay_dead_letter(
        self,
        job_id: UUID,
        actor: str | None = None,
        organization_id: str | None = None,
    ) -> Job:
        """
        Put a dead-lettered job back on the queue with a fresh retry budget.

        Raises:
            JobNotFoundError: If the job does not exist in scope.
            InvalidStateError: If the job is not in dead letter.
        """
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            job = await _get_or_raise(repo, job_id, organization_id)
            if job.status != JobStatus.DEAD_LETTER:
                raise InvalidStateError(job_id, job.status.value, "replay")

            replayed = await repo.replay_dead_letter(job_id, now=self._clock())
            if replayed is None:
                current = await repo.get_job(job_id)
                raise InvalidStateError(job_id, current.status.value, "replay")

        self._metrics.record_replayed(replayed.job_type)
        await emit_audit_event(
            self._audit_sink,
            AuditEvent(
                organization_id=replayed.organization_id,
                actor=actor or DEFAULT_TRIGGERED_BY,
                action=AUDIT_ACTION_UPDATE,
                resource_id=str(replayed.id),
                resource_name=replayed.job_type,
                metadata={"action": "retry_dead_letter"},
            ),
            correlation_id=replayed.correlation_id,
        )
        return replayed


async def _get_or_raise(repo: JobRepository, job_id: UUID, organization_id: str | None) -> Job:
    job = await repo.get_job(job_id, organization_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job
