"""
Audit module.
Contains the audit sink protocol, implementations, and the best-effort emitter.
"""

from jobqueue.audit.sink import (
    AuditEvent,
    AuditSink,
    DatabaseAuditSink,
    NullAuditSink,
    describe_activity,
    emit_audit_event,
)

__all__ = [
    "AuditEvent",
    "AuditSink",
    "DatabaseAuditSink",
    "NullAuditSink",
    "describe_activity",
    "emit_audit_event",
]
