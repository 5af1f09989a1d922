"""
Unit tests for the job repository.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import JobStatus
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def _create(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        organization_id: str = "test-org",
        idempotency_key: str | None = None,
        job_type: str = "echo",
        scheduled_for: datetime | None = None,
        **overrides: Any,
    ) -> tuple[Job, bool]:
        fields = {
            "payload": {"message": "test"},
            "priority": 5,
            "triggered_by": "system",
            "max_retries": 3,
            **overrides,
        }
        job, created = await repo.create_job(
            organization_id=organization_id,
            job_type=job_type,
            idempotency_key=idempotency_key or f"test-{uuid4().hex}",
            correlation_id=f"corr-{uuid4().hex[:8]}",
            scheduled_for=scheduled_for or datetime.utcnow(),
            **fields,
        )
        await db_session.commit()
        return job, created

    async def test_create_job_success(self, repo: JobRepository, db_session: AsyncSession):
        """Test successful job creation."""
        job, created = await self._create(repo, db_session, idempotency_key="inv-1")

        assert created is True
        assert job.organization_id == "test-org"
        assert job.idempotency_key == "inv-1"
        assert job.payload == {"message": "test"}
        assert job.status == JobStatus.QUEUED
        assert job.retry_count == 0
        assert job.max_retries == 3
        assert job.error is None
        assert job.result is None

    async def test_create_job_idempotency(self, repo: JobRepository, db_session: AsyncSession):
        """Test that a duplicate active idempotency key returns the existing job."""
        job1, created1 = await self._create(repo, db_session, idempotency_key="dup")
        job2, created2 = await self._create(
            repo, db_session, idempotency_key="dup", payload={"different": "payload"}
        )

        assert created1 is True
        assert created2 is False
        assert job1.id == job2.id
        assert job2.payload == {"message": "test"}

    async def test_create_job_different_organizations_same_key(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job1, _ = await self._create(repo, db_session, "org-a", idempotency_key="shared")
        job2, created = await self._create(repo, db_session, "org-b", idempotency_key="shared")

        assert created is True
        assert job1.id != job2.id

    async def test_terminal_job_frees_idempotency_key(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job1, _ = await self._create(repo, db_session, idempotency_key="reuse")
        await repo.cancel_job(job1.id, now=datetime.utcnow())
        await db_session.commit()

        job2, created = await self._create(repo, db_session, idempotency_key="reuse")

        assert created is True
        assert job2.id != job1.id

    async def test_claim_is_compare_and_swap(self, repo: JobRepository, db_session: AsyncSession):
        job, _ = await self._create(repo, db_session)
        now = datetime.utcnow()

        first = await repo.claim_job(job.id, now, now + timedelta(minutes=5), "worker-1")
        second = await repo.claim_job(job.id, now, now + timedelta(minutes=5), "worker-2")
        await db_session.commit()

        assert first is not None
        assert first.status == JobStatus.PROCESSING
        assert first.lease_owner == "worker-1"
        assert first.started_at == now
        assert second is None

    async def test_fail_job_requeues_then_dead_letters(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session, max_retries=2)
        now = datetime.utcnow()
        error = {"message": "boom", "stack": None, "code": "RuntimeError"}

        await repo.claim_job(job.id, now, now + timedelta(minutes=5))
        requeued = await repo.fail_job(
            job.id, expected_retry_count=0, error=error, now=now, retry_at=now + timedelta(seconds=1)
        )
        assert requeued.status == JobStatus.QUEUED
        assert requeued.retry_count == 1
        assert requeued.scheduled_for == now + timedelta(seconds=1)
        assert requeued.lease_owner is None

        await repo.claim_job(job.id, now, now + timedelta(minutes=5))
        dead = await repo.fail_job(job.id, expected_retry_count=1, error=error, now=now, retry_at=None)
        await db_session.commit()

        assert dead.status == JobStatus.DEAD_LETTER
        assert dead.retry_count == 2
        assert dead.error == error

    async def test_fail_job_guarded_by_retry_count(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session)
        now = datetime.utcnow()
        await repo.claim_job(job.id, now, now + timedelta(minutes=5))

        stale = await repo.fail_job(
            job.id,
            expected_retry_count=1,
            error={"message": "late"},
            now=now,
            retry_at=now,
        )

        assert stale is None

    async def test_complete_job_skipped_after_cancel(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session)
        now = datetime.utcnow()
        await repo.claim_job(job.id, now, now + timedelta(minutes=5))
        await repo.cancel_job(job.id, now)

        completed = await repo.complete_job(job.id, 0, now, result={"ok": True})
        await db_session.commit()

        assert completed is None
        current = await repo.get_job(job.id)
        assert current.status == JobStatus.CANCELLED
        assert current.result is None

    async def test_complete_job_guarded_by_attempt(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session)
        first_claim = datetime.utcnow()
        await repo.claim_job(job.id, first_claim, first_claim - timedelta(seconds=1), "worker-a")
        await repo.fail_job(
            job.id, 0, {"message": "lease expired"}, first_claim, retry_at=first_claim
        )
        second_claim = first_claim + timedelta(seconds=2)
        await repo.claim_job(job.id, second_claim, second_claim + timedelta(minutes=5), "worker-b")

        stale_count = await repo.complete_job(
            job.id, 0, second_claim, result={"by": "a"}, started_at=first_claim
        )
        stale_claim = await repo.complete_job(
            job.id, 1, second_claim, result={"by": "a"}, started_at=first_claim
        )
        current = await repo.complete_job(
            job.id, 1, second_claim, result={"by": "b"}, started_at=second_claim
        )
        await db_session.commit()

        assert stale_count is None
        assert stale_claim is None
        assert current.status == JobStatus.COMPLETED
        assert current.result == {"by": "b"}

    async def test_cancel_only_from_active_statuses(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session)
        now = datetime.utcnow()
        await repo.claim_job(job.id, now, now + timedelta(minutes=5))
        await repo.complete_job(job.id, 0, now, result=1)

        assert await repo.cancel_job(job.id, now) is None

    async def test_replay_dead_letter_resets_state(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session, max_retries=1)
        now = datetime.utcnow()
        await repo.claim_job(job.id, now, now + timedelta(minutes=5))
        await repo.fail_job(job.id, 0, {"message": "boom"}, now, retry_at=None)

        later = now + timedelta(minutes=1)
        replayed = await repo.replay_dead_letter(job.id, later)
        await db_session.commit()

        assert replayed.status == JobStatus.QUEUED
        assert replayed.retry_count == 0
        assert replayed.error is None
        assert replayed.scheduled_for == later
        assert replayed.completed_at is None

    async def test_replay_requires_dead_letter(self, repo: JobRepository, db_session: AsyncSession):
        job, _ = await self._create(repo, db_session)

        assert await repo.replay_dead_letter(job.id, datetime.utcnow()) is None

    async def test_get_job_scoped_to_organization(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job, _ = await self._create(repo, db_session, "org-a")

        assert await repo.get_job(job.id, "org-a") is not None
        assert await repo.get_job(job.id, "org-b") is None

    async def test_list_jobs_newest_first_with_filters(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        base = datetime.utcnow()
        ids = []
        for i, job_type in enumerate(["echo", "webhook", "echo"]):
            job, _ = await self._create(repo, db_session, job_type=job_type)
            await db_session.execute(
                update(Job).where(Job.id == job.id).values(created_at=base + timedelta(seconds=i))
            )
            ids.append(job.id)
        await db_session.commit()

        all_jobs = await repo.list_jobs("test-org")
        echo_jobs = await repo.list_jobs("test-org", job_type="echo")
        page = await repo.list_jobs("test-org", limit=1, offset=1)

        assert [j.id for j in all_jobs] == list(reversed(ids))
        assert [j.id for j in echo_jobs] == [ids[2], ids[0]]
        assert [j.id for j in page] == [ids[1]]

    async def test_list_due_job_ids(self, repo: JobRepository, db_session: AsyncSession):
        now = datetime.utcnow()
        later, _ = await self._create(repo, db_session, scheduled_for=now - timedelta(seconds=5))
        earlier, _ = await self._create(repo, db_session, scheduled_for=now - timedelta(seconds=10))
        await self._create(repo, db_session, scheduled_for=now + timedelta(hours=1))

        due = await repo.list_due_job_ids(now)

        assert due == [earlier.id, later.id]

    async def test_extend_lease_requires_owner(self, repo: JobRepository, db_session: AsyncSession):
        job, _ = await self._create(repo, db_session)
        now = datetime.utcnow()
        await repo.claim_job(job.id, now, now + timedelta(seconds=30), "worker-1")

        assert await repo.extend_lease(job.id, "worker-1", now + timedelta(minutes=5)) is True
        assert await repo.extend_lease(job.id, "worker-2", now + timedelta(minutes=5)) is False

    async def test_find_expired_leases(self, repo: JobRepository, db_session: AsyncSession):
        now = datetime.utcnow()
        expired, _ = await self._create(repo, db_session)
        alive, _ = await self._create(repo, db_session)
        await repo.claim_job(expired.id, now, now - timedelta(seconds=1), "dead-worker")
        await repo.claim_job(alive.id, now, now + timedelta(minutes=5), "live-worker")
        await db_session.commit()

        found = await repo.find_expired_leases(now)

        assert [j.id for j in found] == [expired.id]

    async def test_count_by_type_and_status(self, repo: JobRepository, db_session: AsyncSession):
        job, _ = await self._create(repo, db_session, job_type="echo")
        await self._create(repo, db_session, job_type="echo")
        await self._create(repo, db_session, job_type="webhook")
        await repo.cancel_job(job.id, datetime.utcnow())
        await db_session.commit()

        counts = set(await repo.count_by_type_and_status("test-org"))

        assert counts == {
            ("echo", JobStatus.QUEUED, 1),
            ("echo", JobStatus.CANCELLED, 1),
            ("webhook", JobStatus.QUEUED, 1),
        }
        assert await repo.get_queue_depth("test-org") == 2
