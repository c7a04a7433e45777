"""ASGI middleware that records CRUD and auth traffic under ``/api``.

The audit entry is written after the last response message has been sent,
so the client never waits on it and a failed write cannot change the
response.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Iterable

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from auditcore.config import get_settings
from auditcore.models.audit import AUTH_SESSIONS_COLLECTION, OperationKind
from auditcore.services.audit_writer import (
    AuditInput,
    AuditOutcome,
    AuditWriter,
    HttpContext,
    actor_from_user,
)

logger = logging.getLogger(__name__)

API_PREFIX = "api"

# GET requests are only audited when one of these segments appears in the path.
READ_SEGMENTS = frozenset(
    {
        "export",
        "download",
        "transcript",
        "transcripts",
        "recording",
        "recordings",
        "stats",
        "analytics",
        "me",
        "current",
        "profile",
    }
)
NON_RECORD_SEGMENTS = frozenset({"export", "stats"})

# Ordered: the first matching segment wins, any other /auth POST is a login.
AUTH_POST_SEGMENTS: tuple[tuple[str, OperationKind], ...] = (
    ("logout", OperationKind.LOGOUT),
    ("register", OperationKind.REGISTER),
    ("verify-otp", OperationKind.VERIFY_OTP),
    ("resend-otp", OperationKind.RESEND_OTP),
    ("login", OperationKind.LOGIN),
)


def _segments(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def _matches_prefix(path: str, pattern: str) -> bool:
    pattern = "/" + pattern.strip("/")
    return f"{pattern}/" in f"{path.rstrip('/')}/"


def operation_for(method: str, path: str) -> OperationKind | None:
    """Return the operation a request represents, or ``None`` to skip it."""

    segments = _segments(path)
    method = method.upper()
    if method == "POST":
        for segment, kind in AUTH_POST_SEGMENTS:
            if segment in segments:
                return kind
        if "auth" in segments:
            return OperationKind.LOGIN
        return OperationKind.CREATE
    if method in {"PUT", "PATCH"}:
        return OperationKind.UPDATE
    if method == "DELETE":
        return OperationKind.DELETE
    if method == "GET" and READ_SEGMENTS.intersection(segments):
        return OperationKind.READ
    return None


def collection_for(path: str) -> str:
    """``/api/phone-numbers/7`` -> ``phone_numbers``; ``/api/auth/...`` -> ``auth_sessions``."""

    segments = _segments(path)
    if len(segments) < 2 or segments[0] != API_PREFIX:
        return "unknown"
    collection = segments[1].replace("-", "_")
    if collection == "auth":
        return AUTH_SESSIONS_COLLECTION
    return collection


def record_id_for(path: str) -> str | None:
    """Return ``<id>`` for paths shaped exactly ``/api/<collection>/<id>``."""

    segments = _segments(path)
    if len(segments) != 3 or segments[0] != API_PREFIX or segments[1] == "auth":
        return None
    if segments[2] not in NON_RECORD_SEGMENTS:
        return segments[2]
    return None


def _parse_body(raw: bytes, content_type: str | None) -> Any:
    if not raw or "json" not in (content_type or ""):
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


class AuditMiddleware:
    """Capture audited HTTP operations and hand them to the app's ``AuditWriter``."""

    def __init__(self, app: ASGIApp, skip_paths: Iterable[str] | None = None) -> None:
        self.app = app
        if skip_paths is None:
            skip_paths = get_settings().AUDIT_MIDDLEWARE_SKIP_PATHS
        self.skip_paths = tuple(skip_paths)

    def _should_skip(self, path: str) -> bool:
        return any(_matches_prefix(path, pattern) for pattern in self.skip_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        kind = None if self._should_skip(path) else operation_for(scope.get("method", "GET"), path)
        if kind is None:
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        chunks: list[bytes] = []
        status_holder: dict[str, int] = {}

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                chunks.append(message.get("body", b""))
            return message

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except Exception:
            status_holder.setdefault("status", 500)
            await self._record(scope, kind, b"".join(chunks), status_holder["status"], started)
            raise
        await self._record(scope, kind, b"".join(chunks), status_holder.get("status", 500), started)

    async def _record(self, scope: Scope, kind: OperationKind, raw_body: bytes, status: int, started: float) -> None:
        request = Request(scope)
        app_state = getattr(scope.get("app"), "state", None)
        writer: AuditWriter | None = getattr(app_state, "audit_writer", None)
        if writer is None:
            logger.warning("Audit middleware has no writer configured", extra={"path": request.url.path})
            return

        body = _parse_body(raw_body, request.headers.get("content-type"))
        method = request.method.upper()
        request_body = None if method in {"GET", "DELETE"} else body
        path = request.url.path
        audit_input = AuditInput(
            operation_kind=kind,
            entity_collection=collection_for(path),
            entity_id=record_id_for(path),
            actor=actor_from_user(getattr(request.state, "user", None)),
            after=body if kind in {OperationKind.CREATE, OperationKind.UPDATE} and isinstance(body, dict) else None,
            http_context=HttpContext.from_request(request, request_body),
            outcome=AuditOutcome(
                response_status=status,
                execution_time_ms=int((time.perf_counter() - started) * 1000),
                error_message=f"HTTP {status}" if status >= 400 else None,
            ),
            metadata={"query": dict(request.query_params), "path": path},
        )
        await run_in_threadpool(writer.record, audit_input)


__all__ = [
    "AuditMiddleware",
    "collection_for",
    "operation_for",
    "record_id_for",
]
