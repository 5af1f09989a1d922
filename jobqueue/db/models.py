"""
SQLAlchemy database models.
Defines the Job table and the audit log table.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import (
    ACTIVE_STATUSES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    DEFAULT_TRIGGERED_BY,
    JobStatus,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

_ACTIVE_PREDICATE = text(
    "status IN ({})".format(", ".join(f"'{s.value}'" for s in ACTIVE_STATUSES))
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of deferred work.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are single-row conditional updates on this table.

    Key constraints:
    - (organization_id, idempotency_key) is unique among queued/processing jobs
    - status transitions follow the defined state machine
    - lease_owner and lease_expires_at bound how long a processing attempt may go silent
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Tenant scope
    organization_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    # Work description
    job_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
    )

    # Attribution and correlation
    triggered_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=DEFAULT_TRIGGERED_BY,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    correlation_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Status
    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )

    # Retry tracking
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )

    # Scheduling
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Outcome
    error: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    result: Mapped[Any] = mapped_column(
        JSONType,
        nullable=True,
    )

    # Table constraints and indexes
    __table_args__ = (
        # Idempotency: one active job per (organization, key)
        Index(
            "uq_jobs_active_idempotency",
            "organization_id",
            "idempotency_key",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        # Due-job polling
        Index("ix_jobs_due", "status", "scheduled_for"),
        # Newest-first listing per organization
        Index("ix_jobs_org_created", "organization_id", "created_at"),
        # Lease expiry checks
        Index("ix_jobs_lease_expiry", "status", "lease_expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, org={self.organization_id}, type={self.job_type}, "
            f"status={self.status}, retries={self.retry_count}/{self.max_retries})"
        )


class AuditLog(Base):
    """
    Append-only audit trail entry.

    Written by the database audit sink; the queue core never reads it back.
    """

    __tablename__ = "audit_logs"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    actor_email: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    resource_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="success")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"AuditLog(org={self.organization_id}, action={self.action}, "
            f"resource={self.resource_type}:{self.resource_id}, status={self.status})"
        )
