import pytest

from auditcore.models.audit import AuditLog, AuditLogImmutableError, OperationKind


def _persisted(db_session) -> AuditLog:
    row = AuditLog(
        operation_type=OperationKind.CREATE,
        table_name="contacts",
        record_id="1",
        changed_fields=[],
        session_id="s",
        transaction_id="t-immutable",
    )
    db_session.add(row)
    db_session.commit()
    return row


def test_audit_log_rows_cannot_be_updated(db_session):
    row = _persisted(db_session)

    row.table_name = "tampered"
    with pytest.raises(AuditLogImmutableError):
        db_session.commit()
    db_session.rollback()

    assert db_session.get(AuditLog, row.id).table_name == "contacts"


def test_audit_log_rows_cannot_be_deleted(db_session):
    row = _persisted(db_session)

    db_session.delete(row)
    with pytest.raises(AuditLogImmutableError):
        db_session.commit()
    db_session.rollback()

    assert db_session.get(AuditLog, row.id) is not None
