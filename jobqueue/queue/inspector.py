"""
Queue inspector.

Read-only views over an organization's jobs. Stats are recomputed from grouped
counts on every call and never cached.
"""

import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.constants import DEFAULT_LIST_LIMIT, JobStatus
from jobqueue.db.connection import session_scope
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import JobNotFoundError
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.types.job import JobStats, JobTypeStats

logger = logging.getLogger(__name__)


class QueueInspector:
    """Lists, fetches and summarizes jobs of one organization."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._session_factory = session_factory
        self._metrics = metrics or get_metrics()

    async def list_jobs(
        self,
        organization_id: str,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> Sequence[Job]:
        """
        List an organization's jobs, newest-created first.

        Args:
            organization_id: The organization identifier.
            status: Optional status filter.
            job_type: Optional job type filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            The matching jobs.
        """
        async with session_scope(self._session_factory) as session:
            return await JobRepository(session).list_jobs(
                organization_id,
                status=status,
                job_type=job_type,
                limit=limit,
                offset=offset,
            )

    async def get_job(self, job_id: UUID, organization_id: str) -> Job:
        """
        Fetch one job.

        Raises:
            JobNotFoundError: If the job does not exist in the organization.
        """
        async with session_scope(self._session_factory) as session:
            job = await JobRepository(session).get_job(job_id, organization_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_stats(self, organization_id: str) -> JobStats:
        """
        Compute point-in-time statistics for an organization.

        No job status is named failed, so the top-level `failed` count stays 0
        while `by_type[...].failed` counts dead-lettered jobs. `total` is the
        sum over every status, cancelled included.
        """
        async with session_scope(self._session_factory) as session:
            rows = await JobRepository(session).count_by_type_and_status(organization_id)

        stats = JobStats()
        for job_type, status, count in rows:
            stats.total += count
            setattr(stats, status.value, getattr(stats, status.value) + count)

            type_stats = stats.by_type.setdefault(job_type, JobTypeStats())
            type_stats.total += count
            if status == JobStatus.COMPLETED:
                type_stats.completed += count
            elif status == JobStatus.DEAD_LETTER:
                type_stats.failed += count

        self._metrics.update_queue_depth(organization_id, stats.queued)
        return stats
