"""Single entry point request handlers use to record audited operations.

``AuditWriter.record`` never raises: audit persistence must not be able to
fail the business operation it describes. Handlers normally enqueue it with
:func:`schedule_audit` so it runs after the HTTP response has been sent.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi import BackgroundTasks, Request

from auditcore.models.audit import AUTH_SESSIONS_COLLECTION, AuditLog, OperationKind
from auditcore.services.audit_store import AuditStore
from auditcore.services.ledger import AuditLedger
from auditcore.utils.audit import REDACTED_MARKER, compute_changed_fields, redact, to_json_safe
from auditcore.utils.request_context import header_value, resolve_browser_info, resolve_client_ip

logger = logging.getLogger(__name__)

UNKNOWN_RECORD_ID = "N/A"
UNKNOWN_COLLECTION = "unknown"


@dataclass(frozen=True)
class AuditActor:
    user_id: str | None = None
    email: str | None = None
    name: str | None = None


@dataclass
class HttpContext:
    """The slice of an inbound request the audit trail keeps."""

    method: str | None = None
    url: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    client_host: str | None = None
    session_id: str | None = None

    @classmethod
    def from_request(cls, request: Request, body: Any = None) -> "HttpContext":
        """Build a context from a Starlette request; ``body`` is the parsed payload."""

        session_id = request.headers.get("x-session-id")
        if session_id is None:
            session_id = getattr(request.state, "session_id", None)
        return cls(
            method=request.method,
            url=str(request.url.path) + (f"?{request.url.query}" if request.url.query else ""),
            headers=request.headers,
            body=body,
            client_host=request.client.host if request.client else None,
            session_id=session_id,
        )


@dataclass(frozen=True)
class AuditOutcome:
    response_status: int | None = 200
    execution_time_ms: int | None = None
    error_message: str | None = None


@dataclass
class AuditInput:
    operation_kind: OperationKind | str
    entity_collection: str | None
    entity_id: str | int | None = None
    actor: AuditActor | None = None
    before: Mapping[str, Any] | None = None
    after: Mapping[str, Any] | None = None
    http_context: HttpContext | None = None
    outcome: AuditOutcome = field(default_factory=AuditOutcome)
    metadata: Mapping[str, Any] | None = None


def actor_from_user(user: Any) -> AuditActor | None:
    """Return the audit actor for an authenticated user object or mapping."""

    if user is None:
        return None

    def _get(name: str) -> Any:
        if isinstance(user, Mapping):
            return user.get(name)
        return getattr(user, name, None)

    user_id = _get("id")
    full_name = f"{_get('first_name') or ''} {_get('last_name') or ''}".strip()
    return AuditActor(
        user_id=str(user_id) if user_id is not None else None,
        email=_get("email"),
        name=full_name or _get("name"),
    )


def _request_headers_summary(headers: Mapping[str, str]) -> dict[str, Any]:
    return {
        "content-type": header_value(headers, "content-type"),
        "authorization": REDACTED_MARKER if header_value(headers, "authorization") else None,
    }


def _kind_label(audit_input: Any) -> Any:
    kind = getattr(audit_input, "operation_kind", None)
    return getattr(kind, "value", kind)


class AuditWriter:
    """Normalises audit inputs, persists them and feeds the text ledger."""

    def __init__(self, store: AuditStore, ledger: AuditLedger | None = None) -> None:
        self._store = store
        self._ledger = ledger

    def record(self, audit_input: AuditInput) -> int | None:
        """Persist one audit entry; return its id, or ``None`` if it failed."""

        started = time.perf_counter()
        try:
            row = self._store.insert(**self._build_fields(audit_input))
        except Exception:  # noqa: BLE001
            logger.exception(
                "Audit log write failed",
                extra={
                    "operation_type": _kind_label(audit_input),
                    "table_name": getattr(audit_input, "entity_collection", None),
                },
            )
            return None

        logger.debug(
            "Audit log recorded",
            extra={
                "audit_log_id": row.id,
                "operation_type": row.operation_type.value,
                "table_name": row.table_name,
                "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        self._append_to_ledger(row)
        return row.id

    def _append_to_ledger(self, row: AuditLog) -> None:
        if self._ledger is None:
            return
        try:
            self._ledger.append_to_ledger([row])
        except Exception:  # noqa: BLE001
            logger.exception("Ledger append failed", extra={"audit_log_id": row.id})

    def _build_fields(self, audit_input: AuditInput) -> dict[str, Any]:
        kind = OperationKind(audit_input.operation_kind)
        ctx = audit_input.http_context or HttpContext()
        actor = audit_input.actor or AuditActor()
        outcome = audit_input.outcome or AuditOutcome()
        headers = ctx.headers or {}

        user_agent = header_value(headers, "user-agent")
        browser = resolve_browser_info(user_agent)
        body = redact(ctx.body) if isinstance(ctx.body, Mapping) else None

        user_email = actor.email
        if user_email is None and kind.is_auth_event and body:
            email = body.get("email")
            user_email = str(email) if email else None

        entity_id = audit_input.entity_id
        if entity_id is None or str(entity_id).strip() == "":
            entity_id = UNKNOWN_RECORD_ID
        collection = audit_input.entity_collection or UNKNOWN_COLLECTION
        if kind.is_auth_event:
            collection = AUTH_SESSIONS_COLLECTION

        before = to_json_safe(dict(audit_input.before)) if audit_input.before is not None else None
        after = to_json_safe(dict(audit_input.after)) if audit_input.after is not None else None

        metadata: dict[str, Any] = {
            "headers": _request_headers_summary(headers),
            "browser_info": {"browser": browser.browser, "engine": browser.engine},
        }
        if audit_input.metadata:
            metadata.update(redact(audit_input.metadata) or {})

        return {
            "user_id": actor.user_id,
            "user_email": user_email,
            "user_name": actor.name,
            "operation_type": kind,
            "table_name": collection,
            "record_id": str(entity_id),
            "old_values": redact(before) if isinstance(before, dict) else before,
            "new_values": redact(after) if isinstance(after, dict) else after,
            "changed_fields": compute_changed_fields(
                before if isinstance(before, dict) else None,
                after if isinstance(after, dict) else None,
            ),
            "ip_address": resolve_client_ip(headers, ctx.client_host),
            "user_agent": user_agent,
            "request_method": ctx.method,
            "request_url": ctx.url,
            "request_body": to_json_safe(body),
            "response_status": outcome.response_status,
            "execution_time_ms": outcome.execution_time_ms,
            "error_message": outcome.error_message,
            "context_metadata": to_json_safe(metadata),
            "session_id": ctx.session_id or str(uuid.uuid4()),
            "transaction_id": str(uuid.uuid4()),
        }


def schedule_audit(background_tasks: BackgroundTasks, writer: AuditWriter, audit_input: AuditInput) -> None:
    """Record ``audit_input`` after the response has been sent."""

    background_tasks.add_task(writer.record, audit_input)


__all__ = [
    "AuditActor",
    "AuditInput",
    "AuditOutcome",
    "AuditWriter",
    "HttpContext",
    "UNKNOWN_RECORD_ID",
    "actor_from_user",
    "schedule_audit",
]
