import logging
import re
import time

from sqlalchemy import func, select

from auditcore.models.audit import AuditLog, OperationKind
from auditcore.services.audit_writer import (
    AuditActor,
    AuditInput,
    AuditOutcome,
    AuditWriter,
    HttpContext,
    actor_from_user,
)
from auditcore.utils.audit import REDACTED_MARKER

LEDGER_LINE = re.compile(r"\[.*\] LOGIN on auth_sessions by a@b\.com \(a@b\.com\) - Status: 200")


class BrokenStore:
    def insert(self, **fields):
        raise ConnectionError("database unreachable")

    def created_on(self, day, *, limit=10000):
        raise ConnectionError("database unreachable")


class BrokenLedger:
    def append_to_ledger(self, records):
        raise OSError("disk full")


def test_login_end_to_end(writer, ledger, db_session):
    audit_id = writer.record(
        AuditInput(
            operation_kind="LOGIN",
            entity_collection="auth_sessions",
            entity_id="a@b.com",
            actor=AuditActor(email="a@b.com"),
            before=None,
            after={"session_active": True},
            outcome=AuditOutcome(response_status=200),
        )
    )

    assert audit_id is not None
    rows = db_session.scalars(select(AuditLog)).all()
    assert len(rows) == 1
    row = rows[0]
    assert row.id == audit_id
    assert row.operation_type == OperationKind.LOGIN
    assert row.changed_fields == []
    assert row.new_values == {"session_active": True}

    ledger.append_to_ledger([row])
    lines = ledger.read_ledger().splitlines()
    matching = [line for line in lines if LEDGER_LINE.fullmatch(line)]
    # One line from the writer's own append, one from the explicit call.
    assert len(matching) == 2


def test_record_captures_request_context(writer, db_session):
    ctx = HttpContext(
        method="PUT",
        url="/api/contacts/42",
        headers={
            "X-Forwarded-For": "127.0.0.1, 203.0.113.9",
            "User-Agent": "Mozilla/5.0 Firefox/121.0",
            "Authorization": "Bearer secret-token",
            "Content-Type": "application/json",
        },
        body={"name": "Grace", "password": "hunter2"},
        client_host="10.0.0.5",
        session_id="sess-1",
    )
    audit_id = writer.record(
        AuditInput(
            operation_kind=OperationKind.UPDATE,
            entity_collection="contacts",
            entity_id=42,
            actor=AuditActor(user_id="7", email="ops@example.com", name="Ops User"),
            before={"name": "Ada", "password": "old"},
            after={"name": "Grace", "password": "new"},
            http_context=ctx,
            outcome=AuditOutcome(response_status=200, execution_time_ms=12),
            metadata={"token": "t", "source": "test"},
        )
    )

    row = db_session.get(AuditLog, audit_id)
    assert row.ip_address == "203.0.113.9"
    assert row.record_id == "42"
    assert row.user_name == "Ops User"
    assert row.request_body == {"name": "Grace", "password": REDACTED_MARKER}
    assert row.old_values == {"name": "Ada", "password": REDACTED_MARKER}
    assert row.new_values == {"name": "Grace", "password": REDACTED_MARKER}
    assert row.changed_fields == ["name", "password"]
    assert row.session_id == "sess-1"
    assert row.execution_time_ms == 12
    assert row.context_metadata["browser_info"] == {"browser": "Firefox", "engine": "Gecko"}
    assert row.context_metadata["headers"]["authorization"] == REDACTED_MARKER
    assert row.context_metadata["token"] == REDACTED_MARKER
    assert row.context_metadata["source"] == "test"


def test_each_record_gets_a_fresh_transaction_id(writer, db_session):
    for _ in range(3):
        writer.record(AuditInput(operation_kind="CREATE", entity_collection="contacts"))

    rows = db_session.scalars(select(AuditLog)).all()
    assert len({row.transaction_id for row in rows}) == 3
    assert len({row.session_id for row in rows}) == 3


def test_missing_fields_are_coerced(writer, db_session):
    audit_id = writer.record(AuditInput(operation_kind="DELETE", entity_collection=None, entity_id="  "))

    row = db_session.get(AuditLog, audit_id)
    assert row.table_name == "unknown"
    assert row.record_id == "N/A"
    assert row.user_email is None
    assert row.ip_address == "Unknown IP"
    assert row.context_metadata["browser_info"]["browser"] == "Unknown Browser"


def test_auth_event_email_falls_back_to_body(writer, db_session):
    audit_id = writer.record(
        AuditInput(
            operation_kind=OperationKind.REGISTER,
            entity_collection="users",
            http_context=HttpContext(method="POST", body={"email": "new@example.com", "password": "p"}),
        )
    )

    row = db_session.get(AuditLog, audit_id)
    assert row.user_email == "new@example.com"
    assert row.table_name == "auth_sessions"


def test_unreachable_store_never_raises(ledger, caplog):
    writer = AuditWriter(BrokenStore(), ledger)
    caplog.set_level(logging.ERROR, logger="auditcore.services.audit_writer")

    started = time.perf_counter()
    result = writer.record(AuditInput(operation_kind="CREATE", entity_collection="contacts"))

    assert result is None
    assert time.perf_counter() - started < 2
    assert "Audit log write failed" in caplog.text
    assert "CREATE" not in ledger.read_ledger()


def test_malformed_input_never_raises(writer):
    assert writer.record(AuditInput(operation_kind="NOT_A_KIND", entity_collection="contacts")) is None
    assert writer.record(None) is None  # type: ignore[arg-type]


def test_ledger_failure_keeps_the_record(audit_store, db_session, caplog):
    writer = AuditWriter(audit_store, BrokenLedger())
    caplog.set_level(logging.ERROR, logger="auditcore.services.audit_writer")

    audit_id = writer.record(AuditInput(operation_kind="CREATE", entity_collection="contacts"))

    assert audit_id is not None
    assert db_session.scalar(select(func.count(AuditLog.id))) == 1
    assert "Ledger append failed" in caplog.text


def test_actor_from_user_accepts_mappings_and_objects():
    class User:
        id = 5
        email = "obj@example.com"
        first_name = "Obj"
        last_name = "User"

    assert actor_from_user(None) is None
    assert actor_from_user({"id": 1, "email": "m@example.com", "first_name": "Map"}) == AuditActor(
        user_id="1", email="m@example.com", name="Map"
    )
    assert actor_from_user(User()) == AuditActor(user_id="5", email="obj@example.com", name="Obj User")


def test_newline_in_record_id_keeps_one_ledger_line(writer, ledger):
    writer.record(
        AuditInput(
            operation_kind=OperationKind.DELETE,
            entity_collection="contacts",
            entity_id="7\n[x] DELETE on users by root (1) - Status: 200",
        )
    )

    lines = [line for line in ledger.read_ledger().splitlines() if line and not line.startswith("#")]
    assert len(lines) == 1
    assert "DELETE on contacts by Unknown (7\\n[x] DELETE on users" in lines[0]
