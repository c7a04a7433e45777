"""Persistence and query helpers for the ``audit_logs`` table."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from auditcore.models.audit import AuditLog, OperationKind
from auditcore.utils.time import as_utc, day_bounds

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "id": AuditLog.id,
    "created_at": AuditLog.created_at,
    "operation_type": AuditLog.operation_type,
    "table_name": AuditLog.table_name,
    "user_email": AuditLog.user_email,
    "response_status": AuditLog.response_status,
    "execution_time_ms": AuditLog.execution_time_ms,
}


@dataclass
class AuditLogFilters:
    """Filter set shared by listing, statistics and exports."""

    user_id: str | None = None
    user_email: str | None = None
    operation_type: OperationKind | None = None
    table_name: str | None = None
    record_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    def __post_init__(self) -> None:
        # SQLite drops tzinfo when binding, so bounds must already be UTC.
        if self.start_date is not None:
            self.start_date = as_utc(self.start_date)
        if self.end_date is not None:
            self.end_date = as_utc(self.end_date)

    def applied(self) -> dict[str, Any]:
        """Return the non-empty filters, JSON-friendly, for export summaries."""

        out: dict[str, Any] = {}
        for key, value in vars(self).items():
            if value is None:
                continue
            if isinstance(value, OperationKind):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            out[key] = value
        return out


def _apply_filters(stmt: Select, filters: AuditLogFilters) -> Select:
    if filters.user_id:
        stmt = stmt.where(AuditLog.user_id == filters.user_id)
    if filters.user_email:
        stmt = stmt.where(AuditLog.user_email.contains(filters.user_email, autoescape=True))
    if filters.operation_type:
        stmt = stmt.where(AuditLog.operation_type == filters.operation_type)
    if filters.table_name:
        stmt = stmt.where(AuditLog.table_name == filters.table_name)
    if filters.record_id:
        stmt = stmt.where(AuditLog.record_id == filters.record_id)
    if filters.start_date:
        stmt = stmt.where(AuditLog.created_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(AuditLog.created_at <= filters.end_date)
    return stmt


def insert_audit_log(db: Session, **fields: Any) -> AuditLog:
    """Insert one audit row and return it with its assigned id."""

    row = AuditLog(**fields)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_audit_log(db: Session, audit_log_id: int) -> AuditLog | None:
    return db.get(AuditLog, audit_log_id)


def list_audit_logs(
    db: Session,
    filters: AuditLogFilters,
    *,
    limit: int = 50,
    offset: int = 0,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[AuditLog], int]:
    """Return one page of audit logs and the total matching count."""

    column = SORTABLE_COLUMNS.get(sort_by, AuditLog.created_at)
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

    total = db.scalar(_apply_filters(select(func.count(AuditLog.id)), filters)) or 0
    stmt = (
        _apply_filters(select(AuditLog), filters)
        .order_by(ordering, AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt).all()), int(total)


def audit_log_stats(db: Session, filters: AuditLogFilters) -> dict[str, list[dict[str, Any]]]:
    """Aggregate counts per operation, table, user and day."""

    operations = db.execute(
        _apply_filters(
            select(AuditLog.operation_type, func.count(AuditLog.id)).group_by(AuditLog.operation_type),
            filters,
        )
    ).all()

    table_count = func.count(AuditLog.id).label("count")
    tables = db.execute(
        _apply_filters(select(AuditLog.table_name, table_count), filters)
        .group_by(AuditLog.table_name)
        .order_by(table_count.desc())
        .limit(10)
    ).all()

    user_count = func.count(AuditLog.id).label("count")
    users = db.execute(
        _apply_filters(select(AuditLog.user_email, AuditLog.user_name, user_count), filters)
        .where(AuditLog.user_email.is_not(None))
        .group_by(AuditLog.user_email, AuditLog.user_name)
        .order_by(user_count.desc())
        .limit(10)
    ).all()

    day = func.date(AuditLog.created_at).label("day")
    daily = db.execute(
        _apply_filters(select(day, func.count(AuditLog.id)), filters)
        .group_by(day)
        .order_by(day.desc())
        .limit(30)
    ).all()

    return {
        "operations": [{"operation_type": op.value, "count": count} for op, count in operations],
        "tables": [{"table_name": name, "count": count} for name, count in tables],
        "users": [
            {"user_email": email, "user_name": name, "count": count} for email, name, count in users
        ],
        "daily_activity": [{"date": str(value), "count": count} for value, count in daily],
    }


class AuditStore(Protocol):
    """What the writer and the daily export need from persistence."""

    def insert(self, **fields: Any) -> AuditLog:
        ...

    def created_on(self, day: date, *, limit: int = 10000) -> list[AuditLog]:
        ...


class SqlAuditStore:
    """Session-per-call store, usable from background tasks and cron jobs."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def insert(self, **fields: Any) -> AuditLog:
        db = self._session_factory()
        try:
            return insert_audit_log(db, **fields)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def created_on(self, day: date, *, limit: int = 10000) -> list[AuditLog]:
        start, end = day_bounds(day)
        db = self._session_factory()
        try:
            stmt = (
                select(AuditLog)
                .where(AuditLog.created_at >= start, AuditLog.created_at < end)
                .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
                .limit(limit)
            )
            return list(db.scalars(stmt).all())
        finally:
            db.close()


__all__ = [
    "AuditLogFilters",
    "AuditStore",
    "SORTABLE_COLUMNS",
    "SqlAuditStore",
    "audit_log_stats",
    "get_audit_log",
    "insert_audit_log",
    "list_audit_logs",
]
