"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    create_session_factory,
    create_tables,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from jobqueue.db.models import AuditLog, Base, Job

__all__ = [
    "session_scope",
    "get_session_factory",
    "create_session_factory",
    "create_tables",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "AuditLog",
    "Base",
]
