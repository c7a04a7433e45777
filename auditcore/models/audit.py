"""Audit log model."""
from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import Enum, Index, Integer, JSON, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

AUTH_SESSIONS_COLLECTION = "auth_sessions"


class OperationKind(str, enum.Enum):
    """Operation tags recorded in ``audit_logs.operation_type``."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    VERIFY_OTP = "VERIFY_OTP"
    RESEND_OTP = "RESEND_OTP"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET = "PASSWORD_RESET"
    ACCOUNT_ACTIVATION = "ACCOUNT_ACTIVATION"
    ACCOUNT_DEACTIVATION = "ACCOUNT_DEACTIVATION"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    @property
    def is_auth_event(self) -> bool:
        return self not in CRUD_KINDS


CRUD_KINDS = frozenset(
    {OperationKind.CREATE, OperationKind.READ, OperationKind.UPDATE, OperationKind.DELETE}
)


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to update or delete a persisted audit entry."""


class AuditLog(Base):
    """One write-once row per observed operation."""

    __tablename__ = "audit_logs"

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    operation_type: Mapped[OperationKind] = mapped_column(
        Enum(OperationKind, name="audit_operation_type"), nullable=False, index=True
    )
    table_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    changed_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    request_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_body: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes.
    context_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    __table_args__ = (Index("ix_audit_logs_created_at", "created_at"),)


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper, connection, target: AuditLog) -> None:
    raise AuditLogImmutableError(f"audit log {target.id} is write-once")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper, connection, target: AuditLog) -> None:
    raise AuditLogImmutableError(f"audit log {target.id} cannot be deleted")


__all__ = [
    "AUTH_SESSIONS_COLLECTION",
    "AuditLog",
    "AuditLogImmutableError",
    "CRUD_KINDS",
    "OperationKind",
]
