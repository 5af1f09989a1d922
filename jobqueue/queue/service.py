"""
JobQueue facade.

Wires the enqueue service, execution coordinator, inspector and lifecycle
operations over one session factory, audit sink and metrics collector. This is
the library contract the API, worker and reaper consume.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.audit.sink import AuditSink, DatabaseAuditSink, NullAuditSink
from jobqueue.config import get_settings
from jobqueue.constants import DEFAULT_LIST_LIMIT, JobStatus
from jobqueue.db.connection import init_db, session_scope
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.queue.coordinator import ExecutionCoordinator, Processor
from jobqueue.queue.enqueue import EnqueueService
from jobqueue.queue.inspector import QueueInspector
from jobqueue.queue.lifecycle import LifecycleOperations
from jobqueue.types.job import EnqueueRequest, JobStats

logger = logging.getLogger(__name__)


class JobQueue:
    """Tenant-scoped background job queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_sink: AuditSink | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        lease_duration: timedelta | None = None,
    ):
        self.session_factory = session_factory
        self.audit_sink = audit_sink or NullAuditSink()
        self.metrics = metrics or get_metrics()
        self._clock = clock

        self._enqueue = EnqueueService(session_factory, self.audit_sink, self.metrics, clock)
        self._coordinator = ExecutionCoordinator(
            session_factory, self.audit_sink, self.metrics, clock, lease_duration
        )
        self._inspector = QueueInspector(session_factory, self.metrics)
        self._lifecycle = LifecycleOperations(
            session_factory, self.audit_sink, self.metrics, clock
        )

    @classmethod
    async def create(cls) -> "JobQueue":
        """Build a queue over the configured database, auditing when enabled."""
        session_factory = await init_db()
        settings = get_settings()
        audit_sink = (
            DatabaseAuditSink(session_factory) if settings.audit_enabled else NullAuditSink()
        )
        return cls(session_factory=session_factory, audit_sink=audit_sink)

    async def submit(self, request: EnqueueRequest) -> tuple[Job, bool]:
        """Enqueue and report whether a new job was created."""
        return await self._enqueue.enqueue(request)

    async def enqueue(self, request: EnqueueRequest | None = None, **fields: Any) -> Job:
        """
        Enqueue a job, returning the existing active job for a repeated key.

        Accepts either an EnqueueRequest or its fields as keyword arguments.
        """
        if request is None:
            request = EnqueueRequest(**fields)
        job, _ = await self._enqueue.enqueue(request)
        return job

    async def process_job(
        self,
        job_id: UUID,
        processor: Processor,
        organization_id: str | None = None,
        worker_id: str | None = None,
        timeout: float | None = None,
    ) -> Job:
        return await self._coordinator.process_job(
            job_id,
            processor,
            organization_id=organization_id,
            worker_id=worker_id,
            timeout=timeout,
        )

    async def list_jobs(
        self,
        organization_id: str,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> Sequence[Job]:
        return await self._inspector.list_jobs(
            organization_id, status=status, job_type=job_type, limit=limit, offset=offset
        )

    async def get_job(self, job_id: UUID, organization_id: str) -> Job:
        return await self._inspector.get_job(job_id, organization_id)

    async def get_stats(self, organization_id: str) -> JobStats:
        return await self._inspector.get_stats(organization_id)

    async def cancel(
        self,
        job_id: UUID,
        actor: str | None = None,
        organization_id: str | None = None,
    ) -> Job:
        return await self._lifecycle.cancel(job_id, actor, organization_id)

    async def replay_dead_letter(
        self,
        job_id: UUID,
        actor: str | None = None,
        organization_id: str | None = None,
    ) -> Job:
        return await self._lifecycle.replay_dead_letter(job_id, actor, organization_id)

    async def recover_expired_leases(self, limit: int = 100) -> int:
        return await self._coordinator.recover_expired_leases(limit)

    async def due_job_ids(self, limit: int = 10) -> list[UUID]:
        """Ids of queued jobs whose scheduled time has passed, oldest due first."""
        async with session_scope(self.session_factory) as session:
            return await JobRepository(session).list_due_job_ids(self._clock(), limit)

    async def extend_lease(self, job_id: UUID, worker_id: str, duration: timedelta) -> bool:
        """Push out the lease of a job this worker is processing."""
        async with session_scope(self.session_factory) as session:
            return await JobRepository(session).extend_lease(
                job_id, worker_id, self._clock() + duration
            )

    async def check_database(self) -> bool:
        """True when the store answers a trivial query."""
        async with session_scope(self.session_factory) as session:
            await JobRepository(session).get_queue_depth()
        return True
