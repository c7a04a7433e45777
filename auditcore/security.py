"""Security dependencies for the audit reporting surface."""
from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import Header, HTTPException, Request, status

from auditcore.config import get_settings
from auditcore.services.audit_writer import AuditActor, actor_from_user
from auditcore.utils.errors import error_response

logger = logging.getLogger(__name__)


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``X-API-Key`` or ``Authorization: Bearer ...``."""

    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_admin_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str:
    """Reject callers that do not present the configured admin key."""

    token = _extract_key(authorization, x_api_key)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    expected = get_settings().ADMIN_API_KEY
    if expected is None:
        logger.warning("ADMIN_API_KEY is not configured; audit reporting is locked")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key."),
        )
    if not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key."),
        )
    return token


def current_actor(request: Request) -> AuditActor | None:
    """Actor attached to the request by the host application's auth layer."""

    user: Any = getattr(request.state, "user", None)
    return actor_from_user(user)


__all__ = ["current_actor", "require_admin_key"]
