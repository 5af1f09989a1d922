"""
Job repository for database operations.
Implements the job record store with atomic, single-row conditional updates.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import ACTIVE_STATUSES, CANCELLABLE_STATUSES, JobStatus
from jobqueue.db.models import Job

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission with idempotency (INSERT ... ON CONFLICT DO NOTHING)
    - Claiming a job (compare-and-swap on status)
    - Status transitions guarded by the expected current status
    - Lease extension and expiry lookup
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    def _insert(self):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        dialect = self._session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Job)
        if dialect == "sqlite":
            return sqlite.insert(Job)
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")

    async def create_job(
        self,
        organization_id: str,
        job_type: str,
        idempotency_key: str,
        correlation_id: str,
        payload: dict[str, Any],
        scheduled_for: datetime,
        priority: int,
        triggered_by: str,
        max_retries: int,
    ) -> tuple[Job, bool]:
        """
        Create a new queued job unless an active one holds the idempotency key.

        The unique partial index on (organization_id, idempotency_key) over
        queued/processing rows turns a concurrent duplicate into a no-op insert;
        the loser then reads and returns the winner's row.

        Returns:
            Tuple of (Job, created) where created is True if a new job was inserted.
        """
        now = datetime.utcnow()
        stmt = (
            self._insert()
            .values(
                id=uuid4(),
                organization_id=organization_id,
                job_type=job_type,
                payload=payload,
                priority=priority,
                triggered_by=triggered_by,
                idempotency_key=idempotency_key,
                correlation_id=correlation_id,
                status=JobStatus.QUEUED,
                retry_count=0,
                max_retries=max_retries,
                scheduled_for=scheduled_for,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing()
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Created new job",
                extra={
                    "job_id": str(job.id),
                    "organization_id": organization_id,
                    "job_type": job_type,
                },
            )
            return job, True

        existing = await self.find_active_by_idempotency_key(organization_id, idempotency_key)
        if existing is None:
            raise RuntimeError("Active job should exist after idempotency conflict")

        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": str(existing.id), "organization_id": organization_id},
        )
        return existing, False

    async def get_job(
        self,
        job_id: UUID,
        organization_id: str | None = None,
    ) -> Job | None:
        """
        Get a job by ID, optionally scoped to an organization.

        Args:
            job_id: The job UUID.
            organization_id: When given, jobs of other organizations are invisible.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        if organization_id is not None:
            stmt = stmt.where(Job.organization_id == organization_id)
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def find_active_by_idempotency_key(
        self,
        organization_id: str,
        idempotency_key: str,
    ) -> Job | None:
        """
        Get the queued or processing job holding an idempotency key.

        Args:
            organization_id: The organization identifier.
            idempotency_key: The idempotency key.

        Returns:
            The active Job or None.
        """
        stmt = (
            select(Job)
            .where(
                and_(
                    Job.organization_id == organization_id,
                    Job.idempotency_key == idempotency_key,
                    Job.status.in_(ACTIVE_STATUSES),
                )
            )
            .order_by(Job.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_jobs(
        self,
        organization_id: str,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Job]:
        """
        List jobs for an organization, newest first.

        Args:
            organization_id: The organization identifier.
            status: Optional status filter.
            job_type: Optional job type filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            The matching jobs.
        """
        filters = [Job.organization_id == organization_id]
        if status is not None:
            filters.append(Job.status == status)
        if job_type is not None:
            filters.append(Job.job_type == job_type)

        stmt = (
            select(Job)
            .where(and_(*filters))
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_by_type_and_status(
        self,
        organization_id: str,
    ) -> list[tuple[str, JobStatus, int]]:
        """
        Count an organization's jobs grouped by (job_type, status).

        Returns:
            List of (job_type, status, count) rows.
        """
        stmt = (
            select(Job.job_type, Job.status, func.count())
            .where(Job.organization_id == organization_id)
            .group_by(Job.job_type, Job.status)
        )
        result = await self._session.execute(stmt)
        return [(job_type, JobStatus(status), count) for job_type, status, count in result.all()]

    async def list_due_job_ids(
        self,
        now: datetime,
        limit: int = 10,
        organization_id: str | None = None,
    ) -> list[UUID]:
        """
        Get ids of queued jobs whose scheduled_for has passed.

        Ordered by scheduled_for, then creation order. Listing does not claim;
        callers go through claim_job for each id.
        """
        filters = [Job.status == JobStatus.QUEUED, Job.scheduled_for <= now]
        if organization_id is not None:
            filters.append(Job.organization_id == organization_id)

        stmt = (
            select(Job.id)
            .where(and_(*filters))
            .order_by(Job.scheduled_for.asc(), Job.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim_job(
        self,
        job_id: UUID,
        now: datetime,
        lease_expires_at: datetime,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Transition a job from QUEUED to PROCESSING.

        Compare-and-swap on status: of two concurrent callers only one gets the
        row back; the other gets None.

        Returns:
            The claimed Job or None if it was not queued.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.QUEUED,
                )
            )
            .values(
                status=JobStatus.PROCESSING,
                started_at=now,
                lease_owner=worker_id,
                lease_expires_at=lease_expires_at,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Claimed job",
                extra={
                    "job_id": str(job_id),
                    "worker_id": worker_id,
                    "retry_count": job.retry_count,
                },
            )

        return job

    async def complete_job(
        self,
        job_id: UUID,
        expected_retry_count: int,
        now: datetime,
        result: Any = None,
        started_at: datetime | None = None,
    ) -> Job | None:
        """
        Mark a processing job as completed and store its result.

        Guarded like `fail_job`: a late result from an attempt whose lease was
        recovered never lands on the attempt that re-claimed the job.

        Returns:
            Updated Job or None if the guarded transition did not apply.
        """
        stmt = (
            update(Job)
            .where(_attempt_guard(job_id, expected_retry_count, started_at))
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
                result=result,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result_obj = await self._session.execute(stmt)
        job = result_obj.scalar_one_or_none()

        if job:
            logger.info("Job completed successfully", extra={"job_id": str(job_id)})

        return job

    async def fail_job(
        self,
        job_id: UUID,
        expected_retry_count: int,
        error: dict[str, Any],
        now: datetime,
        retry_at: datetime | None,
        started_at: datetime | None = None,
    ) -> Job | None:
        """
        Record a failed attempt: requeue when `retry_at` is given, else dead-letter.

        Guarded on status PROCESSING, the retry count observed at claim time and,
        when given, the claim time itself, so a cancel or a concurrent lease
        recovery is never overwritten and a failure is never counted twice.

        Args:
            job_id: The job UUID.
            expected_retry_count: retry_count before this failure.
            error: Structured error detail.
            now: Current time.
            retry_at: When the job becomes eligible again, or None to dead-letter.
            started_at: Claim time of the attempt, when known.

        Returns:
            Updated Job or None if the guarded transition did not apply.
        """
        values: dict[str, Any] = {
            "retry_count": expected_retry_count + 1,
            "error": error,
            "updated_at": now,
            "lease_owner": None,
            "lease_expires_at": None,
        }
        if retry_at is not None:
            values["status"] = JobStatus.QUEUED
            values["scheduled_for"] = retry_at
        else:
            values["status"] = JobStatus.DEAD_LETTER

        stmt = (
            update(Job)
            .where(_attempt_guard(job_id, expected_retry_count, started_at))
            .values(**values)
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is None:
            return None

        if job.status == JobStatus.DEAD_LETTER:
            logger.warning(
                f"Job moved to dead letter after {job.retry_count} failures",
                extra={"job_id": str(job_id), "error": error.get("message")},
            )
        else:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job_id),
                    "retry_count": job.retry_count,
                    "scheduled_for": retry_at.isoformat(),
                },
            )

        return job

    async def cancel_job(self, job_id: UUID, now: datetime) -> Job | None:
        """
        Cancel a queued or processing job.

        Returns:
            Updated Job or None if the job was not cancellable.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status.in_(CANCELLABLE_STATUSES),
                )
            )
            .values(
                status=JobStatus.CANCELLED,
                completed_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info("Job cancelled", extra={"job_id": str(job_id)})

        return job

    async def replay_dead_letter(self, job_id: UUID, now: datetime) -> Job | None:
        """
        Return a dead-lettered job to the queue with its counters reset.

        Returns:
            Updated Job or None if not in dead letter.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.DEAD_LETTER,
                )
            )
            .values(
                status=JobStatus.QUEUED,
                retry_count=0,
                scheduled_for=now,
                error=None,
                started_at=None,
                completed_at=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info("Job replayed from dead letter", extra={"job_id": str(job_id)})

        return job

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_expires_at: datetime,
    ) -> bool:
        """
        Extend the lease on a processing job (heartbeat).

        Returns:
            True if lease was extended, False otherwise.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.lease_owner == worker_id,
                    Job.status == JobStatus.PROCESSING,
                )
            )
            .values(
                lease_expires_at=lease_expires_at,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def find_expired_leases(self, now: datetime, limit: int = 100) -> Sequence[Job]:
        """
        Get processing jobs whose lease has run out.

        Returns:
            Jobs orphaned by a crashed or stalled driver.
        """
        stmt = (
            select(Job)
            .where(
                and_(
                    Job.status == JobStatus.PROCESSING,
                    Job.lease_expires_at < now,
                )
            )
            .order_by(Job.lease_expires_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_queue_depth(self, organization_id: str | None = None) -> int:
        """
        Get the number of queued jobs.

        Args:
            organization_id: Optional organization filter.

        Returns:
            Number of queued jobs.
        """
        filters = [Job.status == JobStatus.QUEUED]
        if organization_id is not None:
            filters.append(Job.organization_id == organization_id)

        stmt = select(func.count()).select_from(Job).where(and_(*filters))
        result = await self._session.execute(stmt)
        return result.scalar() or 0


def _attempt_guard(job_id: UUID, expected_retry_count: int, started_at: datetime | None):
    """Match only the attempt that was claimed: still processing, same retry count and claim time."""
    clauses = [
        Job.id == job_id,
        Job.status == JobStatus.PROCESSING,
        Job.retry_count == expected_retry_count,
    ]
    if started_at is not None:
        clauses.append(Job.started_at == started_at)
    return and_(*clauses)
