from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auditcore import db
from auditcore.config import AppInfo, get_settings
from auditcore.core.logging import get_logger, setup_logging
from auditcore.core.runtime_state import set_scheduler_active
import auditcore.models  # noqa: F401  registers the tables
from auditcore.middleware import AuditMiddleware
from auditcore.routers import get_api_router
from auditcore.services.audit_store import SqlAuditStore
from auditcore.services.audit_writer import AuditWriter
from auditcore.services.cron import prune_exports_once, run_daily_export_once
from auditcore.services.ledger import AuditLedger
from auditcore.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from auditcore.utils.errors import error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = get_settings()
    if runtime_settings.AUDIT_MIDDLEWARE_ENABLED:
        fastapi_app.add_middleware(AuditMiddleware, skip_paths=runtime_settings.AUDIT_MIDDLEWARE_SKIP_PATHS)

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Session-Id"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _init_audit_components(fastapi_app: FastAPI, logs_root: str) -> None:
    ledger = AuditLedger(logs_root)
    try:
        ledger.ensure_logs_root()
    except OSError:
        # The writer still persists rows; only the ledger file is unavailable.
        logger.exception("Could not prepare audit logs root", extra={"logs_root": logs_root})
    store = SqlAuditStore(db.get_sessionmaker())
    fastapi_app.state.audit_ledger = ledger
    fastapi_app.state.audit_store = store
    fastapi_app.state.audit_writer = AuditWriter(store, ledger)


def _start_scheduler(settings: Any) -> AsyncIOScheduler:
    audit_scheduler = AsyncIOScheduler(timezone="UTC")
    audit_scheduler.add_job(
        run_daily_export_once,
        CronTrigger.from_crontab(settings.AUDIT_DAILY_EXPORT_CRON, timezone="UTC"),
        id="audit-daily-export",
        replace_existing=True,
    )
    audit_scheduler.add_job(
        prune_exports_once,
        CronTrigger.from_crontab(settings.AUDIT_PRUNE_CRON, timezone="UTC"),
        id="audit-export-prune",
        replace_existing=True,
    )
    audit_scheduler.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=60,
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    audit_scheduler.start()
    return audit_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})

    db.init_engine()  # sync, idempotent
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    _init_audit_components(app, settings.AUDIT_LOGS_ROOT)

    # In multi-replica deployments the DB lock keeps the daily jobs on one runner.
    set_scheduler_active(False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        lock_acquired = try_acquire_scheduler_lock()
        if lock_acquired:
            scheduler = _start_scheduler(settings)
            set_scheduler_active(True)
            logger.info(
                "Audit scheduler started",
                extra={
                    "daily_export_cron": settings.AUDIT_DAILY_EXPORT_CRON,
                    "prune_cron": settings.AUDIT_PRUNE_CRON,
                },
            )
        else:
            logger.warning(
                "Scheduler disabled because lock is already held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            release_scheduler_lock()
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
