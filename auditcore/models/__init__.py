"""ORM models package."""
from .audit import (
    AUTH_SESSIONS_COLLECTION,
    AuditLog,
    AuditLogImmutableError,
    OperationKind,
)
from .base import Base
from .scheduler_lock import SchedulerLock

__all__ = [
    "AUTH_SESSIONS_COLLECTION",
    "AuditLog",
    "AuditLogImmutableError",
    "Base",
    "OperationKind",
    "SchedulerLock",
]
