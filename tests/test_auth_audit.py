import pytest
from sqlalchemy import select

from auditcore.models.audit import AuditLog, OperationKind
from auditcore.services import auth_audit
from auditcore.services.audit_writer import HttpContext
from auditcore.utils.audit import REDACTED_MARKER

USER = {"id": 11, "email": "jane@example.com", "first_name": "Jane", "last_name": "Doe"}


def _ctx(body=None) -> HttpContext:
    return HttpContext(
        method="POST",
        url="/api/auth/login",
        headers={"user-agent": "Mozilla/5.0 Firefox/121.0", "x-real-ip": "198.51.100.20"},
        body=body,
    )


def _only_row(db_session) -> AuditLog:
    rows = db_session.scalars(select(AuditLog)).all()
    assert len(rows) == 1
    return rows[0]


def test_successful_login(writer, db_session):
    audit_id = auth_audit.log_login(writer, _ctx({"email": "jane@example.com", "password": "pw"}), USER)

    row = _only_row(db_session)
    assert row.id == audit_id
    assert row.operation_type == OperationKind.LOGIN
    assert row.table_name == "auth_sessions"
    assert row.record_id == "11"
    assert row.user_name == "Jane Doe"
    assert row.response_status == 200
    assert row.new_values == {"session_active": True}
    assert row.request_body["password"] == REDACTED_MARKER
    assert row.ip_address == "198.51.100.20"
    assert row.context_metadata["auth_details"] == {
        "operation_type": "LOGIN",
        "success": True,
        "failure_reason": None,
    }


def test_failed_login_without_user_uses_body_email(writer, db_session):
    auth_audit.log_login(
        writer,
        _ctx({"email": "who@example.com", "password": "nope"}),
        success=False,
        failure_reason="Invalid credentials",
    )

    row = _only_row(db_session)
    assert row.response_status == 401
    assert row.user_email == "who@example.com"
    assert row.record_id == "who@example.com"
    assert row.error_message == "Invalid credentials"
    assert row.new_values is None
    assert row.context_metadata["auth_details"]["success"] is False


def test_register_snapshot(writer, db_session):
    body = {
        "email": "new@example.com",
        "username": "newbie",
        "first_name": "New",
        "last_name": "User",
        "password": "secret",
    }
    auth_audit.log_register(writer, _ctx(body), USER)

    row = _only_row(db_session)
    assert row.operation_type == OperationKind.REGISTER
    assert row.response_status == 201
    assert row.new_values == {
        "email": "new@example.com",
        "username": "newbie",
        "first_name": "New",
        "last_name": "User",
    }


def test_failed_registration_status(writer, db_session):
    auth_audit.log_register(writer, _ctx({"email": "dup@example.com"}), success=False, failure_reason="Email taken")

    assert _only_row(db_session).response_status == 400


def test_password_change_records_flag_transition(writer, db_session):
    auth_audit.log_password_change(writer, _ctx({"password": "old", "new_password": "new"}), USER)

    row = _only_row(db_session)
    assert row.old_values == {"password_changed": False}
    assert row.new_values == {"password_changed": True}
    assert row.changed_fields == ["password_changed"]


@pytest.mark.parametrize(
    ("helper", "before", "after"),
    [
        (auth_audit.log_account_activation, {"is_active": False}, {"is_active": True}),
        (auth_audit.log_account_deactivation, {"is_active": True}, {"is_active": False}),
        (auth_audit.log_logout, {"session_active": True}, {"session_active": False}),
    ],
)
def test_state_transitions(writer, db_session, helper, before, after):
    helper(writer, _ctx(), USER)

    row = _only_row(db_session)
    assert row.old_values == before
    assert row.new_values == after
    assert row.changed_fields == list(before)


def test_session_expiry(writer, db_session):
    auth_audit.log_session_expiry(writer, _ctx(), USER)

    row = _only_row(db_session)
    assert row.operation_type == OperationKind.SESSION_EXPIRED
    assert row.response_status == 401
    assert row.error_message == "Session expired"


@pytest.mark.parametrize(
    ("helper", "kind"),
    [
        (auth_audit.log_otp_verification, OperationKind.VERIFY_OTP),
        (auth_audit.log_otp_resend, OperationKind.RESEND_OTP),
        (auth_audit.log_password_reset, OperationKind.PASSWORD_RESET),
    ],
)
def test_otp_and_reset_failures_are_400(writer, db_session, helper, kind):
    helper(writer, _ctx({"email": "jane@example.com", "otp": "123456"}), success=False, failure_reason="Invalid OTP")

    row = _only_row(db_session)
    assert row.operation_type == kind
    assert row.response_status == 400
    assert row.table_name == "auth_sessions"
    assert row.user_email == "jane@example.com"


def test_forged_email_stays_on_one_ledger_line(writer, ledger):
    forged = "evil@x.com) - Status: 401\n[2020-01-01T00:00:00] LOGIN on auth_sessions by admin@corp.com (1"

    auth_audit.log_login(writer, _ctx({"email": forged, "password": "x"}), success=False)

    lines = [line for line in ledger.read_ledger().splitlines() if line and not line.startswith("#")]
    assert len(lines) == 1
    assert lines[0].endswith("- Status: 401")
    assert "by admin@corp.com" in lines[0]
    assert not any(line.startswith("[2020-01-01") for line in lines)
