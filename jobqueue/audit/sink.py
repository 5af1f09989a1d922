"""
Audit/activity sink.

The queue core reports "job created", "job dead-lettered", "job cancelled" and
"job replayed" events here. Writes are best-effort: a failing sink is logged
and never fails or rolls back the job transition that produced the event.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.constants import AUDIT_RESOURCE_TYPE, AUDIT_STATUS_SUCCESS
from jobqueue.db.connection import session_scope
from jobqueue.db.models import AuditLog
from jobqueue.exceptions import AuditSinkFailure

logger = logging.getLogger(__name__)

ACTION_VERBS: dict[str, str] = {
    "create": "created",
    "update": "updated",
    "delete": "deleted",
    "status_change": "changed status of",
}


class AuditEvent(BaseModel):
    """One audit trail entry."""

    organization_id: str = Field(..., min_length=1)
    actor: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    resource_type: str = AUDIT_RESOURCE_TYPE
    resource_id: str | None = None
    resource_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = AUDIT_STATUS_SUCCESS
    error_message: str | None = None


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for audit events."""

    async def record(self, event: AuditEvent) -> None:
        """Persist one event. Raise AuditSinkFailure on failure."""
        ...


def describe_activity(action: str, resource_type: str, resource_name: str | None) -> str:
    """Human-readable activity line, e.g. 'updated "send_invoice"'."""
    verb = ACTION_VERBS.get(action, action)
    name = f'"{resource_name}"' if resource_name else resource_type
    return f"{verb} {name}"


class DatabaseAuditSink:
    """
    Audit sink writing to the audit_logs table.

    Each event is written in its own transaction, separate from the job
    transition that produced it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                session.add(
                    AuditLog(
                        organization_id=event.organization_id,
                        actor_email=event.actor,
                        action=event.action,
                        resource_type=event.resource_type,
                        resource_id=event.resource_id,
                        resource_name=event.resource_name,
                        description=describe_activity(
                            event.action, event.resource_type, event.resource_name
                        ),
                        event_metadata=event.metadata,
                        status=event.status,
                        error_message=event.error_message,
                        created_at=datetime.utcnow(),
                    )
                )
        except Exception as e:
            raise AuditSinkFailure(f"Failed to write audit log: {e}") from e

    async def get_audit_trail(
        self,
        organization_id: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        action: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[AuditLog]:
        """List an organization's audit entries, newest first."""
        filters = [AuditLog.organization_id == organization_id]
        if resource_type is not None:
            filters.append(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            filters.append(AuditLog.resource_id == resource_id)
        if action is not None:
            filters.append(AuditLog.action == action)

        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(AuditLog)
                .where(and_(*filters))
                .order_by(AuditLog.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return result.scalars().all()


class NullAuditSink:
    """Sink that drops every event. Used when auditing is disabled."""

    async def record(self, event: AuditEvent) -> None:
        return None


async def emit_audit_event(
    sink: AuditSink,
    event: AuditEvent,
    correlation_id: str | None = None,
) -> bool:
    """
    Record an audit event without letting a sink failure escape.

    Adds `correlation_id` and `timestamp` to the event metadata.

    Returns:
        True if the sink accepted the event.
    """
    metadata = {
        **event.metadata,
        "correlation_id": correlation_id,
        "timestamp": datetime.utcnow().isoformat(),
    }
    event = event.model_copy(update={"metadata": metadata})

    try:
        await sink.record(event)
        return True
    except Exception as e:
        logger.warning(
            f"Audit write failed: {e}",
            extra={
                "organization_id": event.organization_id,
                "resource_id": event.resource_id,
                "action": event.action,
                "failure": type(e).__name__,
            },
            exc_info=True,
        )
        return False
