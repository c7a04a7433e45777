"""Health check endpoint."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import APIRouter, Request
from sqlalchemy import text

from auditcore.config import get_settings
from auditcore.core.runtime_state import is_scheduler_active
from auditcore.db import get_engine
from auditcore.services.scheduler_lock import describe_scheduler_lock

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _logs_root_status(logs_root: Path) -> str:
    if not logs_root.is_dir():
        return "missing"
    if not os.access(logs_root, os.W_OK):
        return "read_only"
    return "ok"


def _scheduler_lock_state() -> dict[str, object]:
    try:
        return describe_scheduler_lock()
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock lookup failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck(request: Request) -> dict[str, object]:
    """Return DB reachability, ledger writability and scheduler state."""

    settings = get_settings()
    ledger = getattr(request.app.state, "audit_ledger", None)
    logs_root = ledger.logs_root if ledger is not None else Path(settings.AUDIT_LOGS_ROOT)

    db_status = _db_status()
    logs_status = _logs_root_status(logs_root)
    degraded = db_status != "ok" or logs_status != "ok"
    return {
        "status": "degraded" if degraded else "ok",
        "db_ok": db_status == "ok",
        "db_status": db_status,
        "logs_root": str(logs_root),
        "logs_root_status": logs_status,
        "audit_middleware_enabled": bool(settings.AUDIT_MIDDLEWARE_ENABLED),
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_lock": _scheduler_lock_state() if db_status == "ok" else {"status": "unknown", "owner": None},
    }
