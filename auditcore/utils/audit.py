"""Redaction and change-detection helpers for audit snapshots."""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)

REDACTED_MARKER = "[REDACTED]"

SECRET_KEYS = frozenset({"password", "authorization", "secret", "token"})


def redact(body: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return a shallow copy of ``body`` with secret-shaped keys masked.

    Only top-level keys are inspected: ``{"user": {"password": "x"}}`` is
    returned unchanged. Downstream readers rely on that exact shape, so nested
    values are left alone on purpose.
    """

    if body is None:
        return None
    return {
        key: REDACTED_MARKER if str(key).lower() in SECRET_KEYS else value
        for key, value in body.items()
    }


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def compute_changed_fields(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
) -> list[str]:
    """Return keys present on both sides whose values differ.

    Keys that only exist on one side are additions or removals and stay
    visible through the raw snapshots. The result follows ``before``'s key order.
    """

    if before is None or after is None:
        return []
    return [
        key
        for key, old_value in before.items()
        if key in after and _canonical(old_value) != _canonical(after[key])
    ]


def to_json_safe(value: Any) -> Any:
    """Coerce ``value`` into something a JSON column accepts.

    Unserializable leaves (datetimes, decimals, ORM objects) become strings
    rather than failing the whole record.
    """

    if value is None:
        return None
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        logger.warning("Audit value could not be serialized, storing its string form", extra={"type": type(value).__name__})
        return str(value)


def format_json_cell(value: Any) -> str:
    """Render a snapshot for a spreadsheet cell or a ledger line."""

    if value is None:
        return "N/A"
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


__all__ = [
    "REDACTED_MARKER",
    "SECRET_KEYS",
    "compute_changed_fields",
    "format_json_cell",
    "redact",
    "to_json_safe",
]
