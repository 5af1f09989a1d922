"""
Execution coordinator.

Drives one attempt of a job through a caller-supplied processor and applies the
retry / dead-letter policy to the outcome.

Lifecycle of one call:
1. Claim: compare-and-swap QUEUED -> PROCESSING (losers get the job back unchanged)
2. Run the processor outside any database transaction
3. Commit COMPLETED, or requeue with backoff, or DEAD_LETTER
4. On failure, raise ProcessorFailure only after step 3 is committed
"""

import asyncio
import inspect
import logging
import time
import traceback
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.audit.sink import AuditEvent, AuditSink, NullAuditSink, emit_audit_event
from jobqueue.config import get_settings
from jobqueue.constants import (
    AUDIT_ACTION_UPDATE,
    AUDIT_STATUS_FAILURE,
    ERROR_CODE_LEASE_EXPIRED,
    ERROR_CODE_TIMEOUT,
    SPAN_EXECUTE_PROCESSOR,
    SPAN_PROCESS_JOB,
    SYSTEM_ACTOR,
    JobStatus,
)
from jobqueue.db.connection import session_scope
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import JobNotFoundError, ProcessorFailure
from jobqueue.observability.logging import bind_context, clear_context
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.retry import decide
from jobqueue.types.job import JobError

logger = logging.getLogger(__name__)

# (payload, job) -> result, sync or async
Processor = Callable[[dict[str, Any], Job], Any]


def build_error(exc: BaseException) -> dict[str, Any]:
    """
    Structured failure detail stored on the job.

    `code` is the exception's own `code` attribute when it has one, TIMEOUT for
    timeouts, otherwise the exception class name.
    """
    code = getattr(exc, "code", None)
    if code is None:
        code = ERROR_CODE_TIMEOUT if isinstance(exc, TimeoutError) else type(exc).__name__
    return JobError(
        message=str(exc) or type(exc).__name__,
        stack="".join(traceback.format_exception(exc)),
        code=str(code),
    ).model_dump()


class ExecutionCoordinator:
    """Runs single job attempts and records their outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_sink: AuditSink | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        lease_duration: timedelta | None = None,
    ):
        self._session_factory = session_factory
        self._audit_sink = audit_sink or NullAuditSink()
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self._lease_duration = lease_duration or timedelta(
            seconds=get_settings().worker_lease_duration_seconds
        )

    async def process_job(
        self,
        job_id: UUID,
        processor: Processor,
        organization_id: str | None = None,
        worker_id: str | None = None,
        timeout: float | None = None,
    ) -> Job:
        """
        Run one attempt of a job.

        Args:
            job_id: The job UUID.
            processor: Callable `(payload, job) -> result`, sync or async.
            organization_id: When given, jobs of other organizations are not found.
            worker_id: Lease owner recorded on the claim.
            timeout: Seconds the processor may run before the attempt fails.

        Returns:
            The job after the attempt, or unchanged if it was not queued.

        Raises:
            JobNotFoundError: If the job does not exist in scope.
            ProcessorFailure: If the processor raised; the requeue or
                dead-letter transition is already committed.
        """
        bind_context(job_id=str(job_id))
        try:
            with get_tracer().start_as_current_span(SPAN_PROCESS_JOB) as span:
                span.set_attribute("job_id", str(job_id))

                claimed, won = await self._claim(job_id, organization_id, worker_id)
                if not won:
                    return claimed

                span.set_attribute("job_type", claimed.job_type)
                span.set_attribute("retry_count", claimed.retry_count)

                start_time = time.monotonic()
                try:
                    with get_tracer().start_as_current_span(SPAN_EXECUTE_PROCESSOR):
                        result = await self._invoke(processor, claimed, timeout)
                except Exception as exc:
                    duration = time.monotonic() - start_time
                    error = build_error(exc)
                    failed = await self._record_failure(claimed, error)
                    self._metrics.record_job_attempt(
                        claimed.job_type, _outcome(failed), duration
                    )
                    raise ProcessorFailure(failed, error, exc) from exc

                duration = time.monotonic() - start_time
                completed = await self._record_success(claimed, result)
                self._metrics.record_job_attempt(
                    claimed.job_type, _outcome(completed), duration
                )
                return completed
        finally:
            clear_context()

    async def _claim(
        self,
        job_id: UUID,
        organization_id: str | None,
        worker_id: str | None,
    ) -> tuple[Job, bool]:
        """
        Fetch the job and claim it if queued.

        Returns:
            Tuple of (job, claimed). An unclaimed job is returned as found.
        """
        now = self._clock()
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)

            job = await repo.get_job(job_id, organization_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if job.status != JobStatus.QUEUED:
                logger.info(
                    "Job not queued, skipping",
                    extra={"job_id": str(job_id), "status": job.status.value},
                )
                return job, False

            claimed = await repo.claim_job(
                job_id,
                now=now,
                lease_expires_at=now + self._lease_duration,
                worker_id=worker_id,
            )
            if claimed is None:
                # Another driver claimed it between our read and the CAS
                current = await repo.get_job(job_id)
                logger.info(
                    "Job claimed by another driver",
                    extra={"job_id": str(job_id), "status": current.status.value},
                )
                return current, False

            return claimed, True

    async def _invoke(self, processor: Processor, job: Job, timeout: float | None) -> Any:
        """
        Run the processor, bounded by `timeout` whether it is sync or async.

        Sync processors run in a worker thread so they never block the event
        loop. A thread cannot be interrupted: on timeout the attempt fails and
        the thread's eventual return value is dropped.
        """
        if _is_async(processor):
            call = processor(job.payload, job)
        else:
            call = _run_in_thread(processor, job)
        if timeout is not None:
            return await asyncio.wait_for(call, timeout=timeout)
        return await call

    async def _record_success(self, job: Job, result: Any) -> Job:
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            completed = await repo.complete_job(
                job.id,
                expected_retry_count=job.retry_count,
                now=self._clock(),
                result=result,
                started_at=job.started_at,
            )
            if completed is not None:
                return completed

            current = await repo.get_job(job.id)
            logger.warning(
                "Job left processing before completion was recorded; result discarded",
                extra={"job_id": str(job.id), "status": current.status.value},
            )
            return current

    async def _record_failure(self, job: Job, error: dict[str, Any]) -> Job:
        """
        Requeue with backoff or dead-letter a claimed job after a failed attempt.

        Returns:
            The persisted job. If the job was cancelled or recovered meanwhile it
            is returned as found, with no further transition.
        """
        updated = await self._apply_failure(job, error)
        if updated is not None:
            return updated

        async with session_scope(self._session_factory) as session:
            current = await JobRepository(session).get_job(job.id)
        logger.warning(
            "Job left processing before failure was recorded",
            extra={"job_id": str(job.id), "status": current.status.value},
        )
        return current

    async def _apply_failure(self, job: Job, error: dict[str, Any]) -> Job | None:
        retry_count = job.retry_count + 1
        decision = decide(retry_count, job.max_retries)
        now = self._clock()

        async with session_scope(self._session_factory) as session:
            updated = await JobRepository(session).fail_job(
                job.id,
                expected_retry_count=job.retry_count,
                error=error,
                now=now,
                retry_at=now + decision.delay if decision.retry else None,
                started_at=job.started_at,
            )

        if updated is not None and updated.status == JobStatus.DEAD_LETTER:
            self._metrics.record_dead_lettered(updated.job_type)
            await emit_audit_event(
                self._audit_sink,
                AuditEvent(
                    organization_id=updated.organization_id,
                    actor=SYSTEM_ACTOR,
                    action=AUDIT_ACTION_UPDATE,
                    resource_id=str(updated.id),
                    resource_name=updated.job_type,
                    status=AUDIT_STATUS_FAILURE,
                    error_message=(
                        f"Job failed after {updated.max_retries} retries: {error['message']}"
                    ),
                ),
                correlation_id=updated.correlation_id,
            )

        return updated

    async def recover_expired_leases(self, limit: int = 100) -> int:
        """
        Treat processing jobs whose lease ran out as failed attempts.

        Each orphan is requeued with backoff or dead-lettered exactly as if its
        processor had raised, with error code LEASE_EXPIRED.

        Returns:
            Number of jobs recovered.
        """
        async with session_scope(self._session_factory) as session:
            expired = await JobRepository(session).find_expired_leases(self._clock(), limit)

        recovered = 0
        for job in expired:
            error = JobError(
                message=f"Lease expired while processing (owner: {job.lease_owner})",
                code=ERROR_CODE_LEASE_EXPIRED,
            ).model_dump()
            if await self._apply_failure(job, error) is not None:
                recovered += 1
                logger.warning(
                    "Recovered job with expired lease",
                    extra={"job_id": str(job.id), "lease_owner": job.lease_owner},
                )

        if recovered:
            self._metrics.record_leases_recovered(recovered)

        return recovered


def _outcome(job: Job) -> str:
    if job.status == JobStatus.QUEUED:
        return "retried"
    return job.status.value


def _is_async(processor: Processor) -> bool:
    return inspect.iscoroutinefunction(processor) or inspect.iscoroutinefunction(
        getattr(processor, "__call__", None)
    )


async def _run_in_thread(processor: Processor, job: Job) -> Any:
    result = await asyncio.to_thread(processor, job.payload, job)
    if inspect.isawaitable(result):
        return await result
    return result
