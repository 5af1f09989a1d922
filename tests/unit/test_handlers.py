"""
Unit tests for job handlers.
"""

from uuid import uuid4

import pytest

from jobqueue.constants import ERROR_CODE_UNKNOWN_JOB_TYPE, JobStatus
from jobqueue.db.models import Job
from jobqueue.exceptions import UnknownJobTypeError
from jobqueue.worker.handlers import (
    dispatch,
    get_handler,
    handle_echo,
    handle_failing_job,
    handle_webhook,
    list_handlers,
    register_handler,
)


def make_job(job_type: str, payload: dict | None = None) -> Job:
    return Job(
        id=uuid4(),
        organization_id="test-org",
        job_type=job_type,
        payload=payload or {},
        status=JobStatus.PROCESSING,
        retry_count=0,
        max_retries=3,
        correlation_id="1700000000000-abc123def",
        idempotency_key=f"{job_type}-key",
    )


class TestJobHandlers:
    """Tests for job handlers."""

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "echo" in handlers
        assert "sleep" in handlers
        assert "failing_job" in handlers
        assert "webhook" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        handler = get_handler("echo")
        assert handler is not None
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        handler = get_handler("nonexistent")
        assert handler is None

    async def test_echo_handler(self):
        """Test the echo handler."""
        job = make_job("echo", {"message": "test"})

        result = await handle_echo(job.payload, job)

        assert result == {"echo": {"message": "test"}}

    async def test_failing_handler(self):
        """Test the always-failing handler."""
        job = make_job("failing_job")

        with pytest.raises(RuntimeError, match="attempt 1"):
            await handle_failing_job(job.payload, job)

    async def test_webhook_requires_url(self):
        job = make_job("webhook", {"method": "POST"})

        with pytest.raises(ValueError, match="url"):
            await handle_webhook(job.payload, job)


class TestDispatch:
    """Tests for routing a job to its handler."""

    async def test_dispatch_routes_by_job_type(self):
        job = make_job("echo", {"n": 1})

        result = await dispatch(job.payload, job)

        assert result == {"echo": {"n": 1}}

    async def test_dispatch_unknown_type(self):
        job = make_job("does_not_exist")

        with pytest.raises(UnknownJobTypeError) as exc_info:
            await dispatch(job.payload, job)

        assert exc_info.value.code == ERROR_CODE_UNKNOWN_JOB_TYPE
        assert exc_info.value.job_type == "does_not_exist"

    async def test_registered_handler_is_dispatched(self):
        @register_handler("send_invoice_test")
        async def handle_send_invoice(payload: dict, job: Job) -> dict:
            return {"sent": payload["invoice_id"]}

        job = make_job("send_invoice_test", {"invoice_id": "inv-7"})

        assert await dispatch(job.payload, job) == {"sent": "inv-7"}
