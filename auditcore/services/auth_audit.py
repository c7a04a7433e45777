"""Audit helpers for authentication flows.

Login, registration, OTP and password handlers call these after they have
decided the outcome. Every helper returns the audit id, or ``None`` when the
entry could not be written; none of them raise.
"""
from __future__ import annotations

from typing import Any, Mapping

from auditcore.models.audit import AUTH_SESSIONS_COLLECTION, OperationKind
from auditcore.services.audit_writer import (
    AuditInput,
    AuditOutcome,
    AuditWriter,
    HttpContext,
    actor_from_user,
)


def _body(ctx: HttpContext) -> Mapping[str, Any]:
    return ctx.body if isinstance(ctx.body, Mapping) else {}


def log_auth_operation(
    writer: AuditWriter,
    ctx: HttpContext,
    operation: OperationKind,
    user: Any = None,
    *,
    success: bool = True,
    failure_reason: str | None = None,
    response_status: int | None = None,
    before: Mapping[str, Any] | None = None,
    after: Mapping[str, Any] | None = None,
    execution_time_ms: int | None = None,
) -> int | None:
    """Record one authentication event against the ``auth_sessions`` pseudo-entity."""

    body = _body(ctx)
    actor = actor_from_user(user)
    if actor is not None and actor.email is None and body.get("email"):
        actor = type(actor)(user_id=actor.user_id, email=str(body["email"]), name=actor.name)

    entity_id = (actor.user_id if actor else None) or body.get("email")
    if after is None and operation != OperationKind.LOGIN:
        after = dict(body) or None

    return writer.record(
        AuditInput(
            operation_kind=operation,
            entity_collection=AUTH_SESSIONS_COLLECTION,
            entity_id=entity_id,
            actor=actor,
            before=before,
            after=after,
            http_context=ctx,
            outcome=AuditOutcome(
                response_status=response_status if response_status is not None else 200,
                execution_time_ms=execution_time_ms,
                error_message=failure_reason,
            ),
            metadata={
                "auth_details": {
                    "operation_type": operation.value,
                    "success": success,
                    "failure_reason": failure_reason,
                }
            },
        )
    )


def log_login(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.LOGIN,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 401,
        after={"session_active": True} if success else None,
    )


def log_logout(writer: AuditWriter, ctx: HttpContext, user: Any = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.LOGOUT,
        user,
        response_status=200,
        before={"session_active": True},
        after={"session_active": False},
    )


def log_register(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    body = _body(ctx)
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.REGISTER,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=201 if success else 400,
        after={
            "email": body.get("email"),
            "username": body.get("username"),
            "first_name": body.get("first_name"),
            "last_name": body.get("last_name"),
        },
    )


def log_otp_verification(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.VERIFY_OTP,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        after={"email": _body(ctx).get("email"), "otp_verified": success},
    )


def log_otp_resend(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.RESEND_OTP,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        after={"email": _body(ctx).get("email"), "otp_resent": success},
    )


def log_password_change(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.PASSWORD_CHANGE,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        before={"password_changed": False},
        after={"password_changed": success},
    )


def log_password_reset(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.PASSWORD_RESET,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        after={"email": _body(ctx).get("email"), "password_reset": success},
    )


def log_account_activation(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.ACCOUNT_ACTIVATION,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        before={"is_active": False},
        after={"is_active": success},
    )


def log_account_deactivation(writer: AuditWriter, ctx: HttpContext, user: Any = None, success: bool = True, failure_reason: str | None = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.ACCOUNT_DEACTIVATION,
        user,
        success=success,
        failure_reason=failure_reason,
        response_status=200 if success else 400,
        before={"is_active": True},
        after={"is_active": not success},
    )


def log_session_expiry(writer: AuditWriter, ctx: HttpContext, user: Any = None) -> int | None:
    return log_auth_operation(
        writer,
        ctx,
        OperationKind.SESSION_EXPIRED,
        user,
        failure_reason="Session expired",
        response_status=401,
        before={"session_active": True},
        after={"session_active": False},
    )


__all__ = [
    "log_account_activation",
    "log_account_deactivation",
    "log_auth_operation",
    "log_login",
    "log_logout",
    "log_otp_resend",
    "log_otp_verification",
    "log_password_change",
    "log_password_reset",
    "log_register",
    "log_session_expiry",
]
