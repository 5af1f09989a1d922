"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.api.main import create_app
from jobqueue.audit.sink import AuditEvent, DatabaseAuditSink
from jobqueue.db.connection import create_session_factory, create_tables, get_test_engine
from jobqueue.exceptions import AuditSinkFailure
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.queue.service import JobQueue


class FailingAuditSink:
    """Audit sink whose store is always unavailable."""

    def __init__(self):
        self.attempts = 0

    async def record(self, event: AuditEvent) -> None:
        self.attempts += 1
        raise AuditSinkFailure("audit store unavailable")


@pytest.fixture
def database_url(tmp_path) -> str:
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with the schema in place."""
    engine = get_test_engine(database_url)
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def audit_sink(session_factory: async_sessionmaker[AsyncSession]) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory)


@pytest.fixture
def failing_audit_sink() -> FailingAuditSink:
    return FailingAuditSink()


@pytest.fixture
def job_queue(
    session_factory: async_sessionmaker[AsyncSession],
    audit_sink: DatabaseAuditSink,
    metrics: MetricsCollector,
) -> JobQueue:
    """Queue wired to the test database and audit table."""
    return JobQueue(
        session_factory=session_factory,
        audit_sink=audit_sink,
        metrics=metrics,
    )


@pytest.fixture
def app(job_queue: JobQueue) -> FastAPI:
    """Create a FastAPI app serving the test queue."""
    return create_app(job_queue)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def organization_id() -> str:
    """Generate a test organization ID."""
    return f"test-org-{uuid4().hex[:8]}"


@pytest.fixture
def org_headers(organization_id: str) -> dict[str, str]:
    """Organization and actor headers for API calls."""
    return {
        "X-Organization-ID": organization_id,
        "X-Actor": "ops@example.com",
    }


@pytest.fixture
def idempotency_key() -> str:
    """Generate a unique idempotency key."""
    return f"test-{uuid4().hex}"


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {"invoice_id": "inv-1001", "amount": 4200}
