"""Background cron jobs for the audit ledger."""
from __future__ import annotations

import logging

from auditcore import db
from auditcore.config import get_settings
from auditcore.services.audit_store import SqlAuditStore
from auditcore.services.ledger import AuditLedger, ExportResult

logger = logging.getLogger(__name__)


def _ledger() -> AuditLedger:
    return AuditLedger(get_settings().AUDIT_LOGS_ROOT)


def run_daily_export_once() -> ExportResult | None:
    """Export today's audit rows to the dated spreadsheet directory."""

    settings = get_settings()
    try:
        result = _ledger().run_daily_export(
            SqlAuditStore(db.get_sessionmaker()),
            max_rows=settings.AUDIT_EXPORT_MAX_ROWS,
        )
    except Exception:  # noqa: BLE001
        logger.exception("Daily audit export failed")
        return None

    if result is None:
        logger.info("Daily audit export skipped; no records today")
    else:
        logger.info(
            "Daily audit export written",
            extra={"filename": result.filename, "record_count": result.record_count},
        )
    return result


def prune_exports_once() -> int:
    """Delete dated export directories older than the retention window."""

    settings = get_settings()
    try:
        removed = _ledger().prune_older_than(settings.AUDIT_EXPORT_RETENTION_DAYS)
    except Exception:  # noqa: BLE001
        logger.exception("Audit export pruning failed")
        return 0

    if removed:
        logger.info("Pruned audit export directories", extra={"removed": removed, "retention_days": settings.AUDIT_EXPORT_RETENTION_DAYS})
    return removed


__all__ = ["prune_exports_once", "run_daily_export_once"]
