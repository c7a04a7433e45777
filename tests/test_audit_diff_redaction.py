from datetime import datetime, timezone
from decimal import Decimal

from auditcore.utils.audit import (
    REDACTED_MARKER,
    compute_changed_fields,
    format_json_cell,
    redact,
    to_json_safe,
)


def test_changed_fields_reports_only_differing_common_keys():
    before = {"name": "Ada", "role": "admin", "tags": ["a", "b"], "removed": 1}
    after = {"name": "Ada", "role": "owner", "tags": ["a", "b"], "added": 2}

    assert compute_changed_fields(before, after) == ["role"]


def test_changed_fields_compares_nested_values_structurally():
    before = {"profile": {"a": 1, "b": 2}, "limits": [1, 2]}
    after = {"profile": {"b": 2, "a": 1}, "limits": [2, 1]}

    assert compute_changed_fields(before, after) == ["limits"]


def test_changed_fields_is_empty_when_a_side_is_missing():
    assert compute_changed_fields(None, {"a": 1}) == []
    assert compute_changed_fields({"a": 1}, None) == []
    assert compute_changed_fields(None, None) == []


def test_changed_fields_distinguishes_null_from_missing_value():
    assert compute_changed_fields({"a": None}, {"a": 0}) == ["a"]
    assert compute_changed_fields({"a": None}, {"a": None}) == []


def test_redact_masks_secret_keys_only():
    body = {"password": "p", "email": "e@x.com"}

    assert redact(body) == {"password": REDACTED_MARKER, "email": "e@x.com"}
    assert body["password"] == "p"


def test_redact_is_case_insensitive_and_idempotent():
    body = {"Authorization": "Bearer abc", "TOKEN": "t", "Secret": "s", "name": "n"}

    once = redact(body)
    assert once == {
        "Authorization": REDACTED_MARKER,
        "TOKEN": REDACTED_MARKER,
        "Secret": REDACTED_MARKER,
        "name": "n",
    }
    assert redact(once) == once


def test_redact_leaves_nested_maps_untouched():
    body = {"user": {"password": "x"}}

    assert redact(body) == {"user": {"password": "x"}}


def test_redact_none_is_none():
    assert redact(None) is None


def test_to_json_safe_stringifies_unserializable_leaves():
    value = {
        "at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        "amount": Decimal("10.50"),
        "items": (1, 2),
    }

    assert to_json_safe(value) == {
        "at": "2024-05-01 12:00:00+00:00",
        "amount": "10.50",
        "items": [1, 2],
    }


def test_format_json_cell_renders_placeholders_and_json():
    assert format_json_cell(None) == "N/A"
    assert format_json_cell("plain") == "plain"
    assert format_json_cell(["role"]) == '[\n  "role"\n]'
