"""Audit log reporting, export and ledger endpoints."""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from auditcore.config import get_settings
from auditcore.db import get_db
from auditcore.models.audit import OperationKind
from auditcore.schemas.audit import (
    AuditLogCreate,
    AuditLogCreated,
    AuditLogPage,
    AuditLogRead,
    AuditLogStats,
    CombinedContent,
    ExportFileRead,
    ExportResultRead,
    PruneResult,
)
from auditcore.security import current_actor, require_admin_key
from auditcore.services.audit_store import (
    AuditLogFilters,
    AuditStore,
    audit_log_stats,
    get_audit_log,
    list_audit_logs,
)
from auditcore.services.audit_writer import AuditInput, AuditWriter, HttpContext, schedule_audit
from auditcore.services.ledger import AuditLedger, EmptyExportError, ExportResult
from auditcore.utils.errors import error_response

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"], dependencies=[Depends(require_admin_key)])
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORTS_COLLECTION = "audit_log_exports"


def _app_state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("AUDIT_UNAVAILABLE", "Audit subsystem is not initialised."),
        )
    return value


def get_audit_writer(request: Request) -> AuditWriter:
    return _app_state_attr(request, "audit_writer")


def get_audit_ledger(request: Request) -> AuditLedger:
    return _app_state_attr(request, "audit_ledger")


def get_audit_store(request: Request) -> AuditStore:
    return _app_state_attr(request, "audit_store")


def audit_filters(
    user_id: str | None = Query(default=None),
    user_email: str | None = Query(default=None),
    operation_type: OperationKind | None = Query(default=None),
    table_name: str | None = Query(default=None),
    record_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
) -> AuditLogFilters:
    filters = AuditLogFilters(
        user_id=user_id,
        user_email=user_email,
        operation_type=operation_type,
        table_name=table_name,
        record_id=record_id,
        start_date=start_date,
        end_date=end_date,
    )
    if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("INVALID_DATE_RANGE", "start_date must not be after end_date."),
        )
    return filters


def _export_read(result: ExportResult) -> ExportResultRead:
    return ExportResultRead(
        filename=result.filename,
        filepath=str(result.filepath),
        date_dir=str(result.date_dir),
        record_count=result.record_count,
        export_date=result.export_date,
    )


def _bad_day(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error_response("INVALID_DATE", str(exc)),
    )


@router.get("", response_model=AuditLogPage)
def list_logs(
    filters: AuditLogFilters = Depends(audit_filters),
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc|ASC|DESC)$"),
    db: Session = Depends(get_db),
) -> AuditLogPage:
    rows, total = list_audit_logs(
        db, filters, limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order
    )
    return AuditLogPage(
        items=[AuditLogRead.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=AuditLogStats)
def log_stats(
    filters: AuditLogFilters = Depends(audit_filters),
    db: Session = Depends(get_db),
) -> dict:
    return audit_log_stats(db, filters)


@router.get("/export", response_model=ExportResultRead)
def export_logs(
    request: Request,
    background_tasks: BackgroundTasks,
    filters: AuditLogFilters = Depends(audit_filters),
    db: Session = Depends(get_db),
    ledger: AuditLedger = Depends(get_audit_ledger),
    writer: AuditWriter = Depends(get_audit_writer),
) -> ExportResultRead:
    """Export the filtered audit logs to a workbook in today's directory."""

    rows, _ = list_audit_logs(db, filters, limit=get_settings().AUDIT_EXPORT_MAX_ROWS, offset=0)
    try:
        result = ledger.export_to_spreadsheet(rows, filters.applied())
    except EmptyExportError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("NO_AUDIT_LOGS", "No audit logs found for the specified criteria."),
        ) from exc
    except OSError as exc:
        logger.exception("Audit export failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("EXPORT_FAILED", "Failed to write the audit export."),
        ) from exc

    schedule_audit(
        background_tasks,
        writer,
        AuditInput(
            operation_kind=OperationKind.READ,
            entity_collection=EXPORTS_COLLECTION,
            entity_id=result.filename,
            actor=current_actor(request),
            after={"record_count": result.record_count, "filters": filters.applied()},
            http_context=HttpContext.from_request(request),
        ),
    )
    return _export_read(result)


@router.post("/export/daily", response_model=ExportResultRead)
def export_daily(
    ledger: AuditLedger = Depends(get_audit_ledger),
    store: AuditStore = Depends(get_audit_store),
) -> ExportResultRead:
    try:
        result = ledger.run_daily_export(store, max_rows=get_settings().AUDIT_EXPORT_MAX_ROWS)
    except OSError as exc:
        logger.exception("Daily audit export failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("EXPORT_FAILED", "Failed to write the daily audit export."),
        ) from exc
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("NO_AUDIT_LOGS", "No audit logs recorded today."),
        )
    return _export_read(result)


@router.get("/exports", response_model=list[ExportFileRead])
def list_exports(
    day: str | None = Query(default=None, alias="date"),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> list[ExportFileRead]:
    try:
        files = ledger.list_exports_for_date(day)
    except ValueError as exc:
        raise _bad_day(exc) from exc
    return [
        ExportFileRead(filename=info.filename, size=info.size, created=info.created, modified=info.modified)
        for info in files
    ]


@router.get("/download/{filename}")
def download_export(
    filename: str,
    day: str | None = Query(default=None, alias="date"),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> FileResponse:
    try:
        path = ledger.resolve_export(filename, day)
    except ValueError as exc:
        raise _bad_day(exc) from exc
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("EXPORT_NOT_FOUND", "Export file not found."),
        ) from exc
    return FileResponse(path, media_type=XLSX_MEDIA_TYPE, filename=filename)


@router.delete("/cleanup", response_model=PruneResult)
def cleanup_exports(
    days: int | None = Query(default=None, ge=1),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> PruneResult:
    retention = days or get_settings().AUDIT_EXPORT_RETENTION_DAYS
    try:
        removed = ledger.prune_older_than(retention)
    except OSError as exc:
        logger.exception("Audit export cleanup failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("CLEANUP_FAILED", "Failed to remove old audit exports."),
        ) from exc
    return PruneResult(removed=removed, retention_days=retention)


@router.get("/combined", response_model=CombinedContent)
def combined_ledger(
    lines: int | None = Query(default=None, ge=1),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> CombinedContent:
    return CombinedContent(content=ledger.read_ledger(lines), lines=lines)


@router.post("", response_model=AuditLogCreated, status_code=status.HTTP_201_CREATED)
def create_log(
    payload: AuditLogCreate,
    request: Request,
    writer: AuditWriter = Depends(get_audit_writer),
) -> AuditLogCreated:
    """Record an event reported by a client; written synchronously to return its id."""

    audit_id = writer.record(
        AuditInput(
            operation_kind=payload.operation_type,
            entity_collection=payload.table_name,
            entity_id=payload.record_id,
            actor=current_actor(request),
            before=payload.old_values,
            after=payload.new_values,
            http_context=HttpContext.from_request(request, payload.model_dump(mode="json")),
            metadata=payload.metadata,
        )
    )
    if audit_id is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("AUDIT_WRITE_FAILED", "Audit log could not be recorded."),
        )
    return AuditLogCreated(id=audit_id)


@router.get("/{audit_log_id}", response_model=AuditLogRead)
def read_log(audit_log_id: int, db: Session = Depends(get_db)) -> AuditLogRead:
    row = get_audit_log(db, audit_log_id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("AUDIT_LOG_NOT_FOUND", "Audit log not found."),
        )
    return AuditLogRead.model_validate(row)
