import logging
from datetime import timedelta

from auditcore.services import cron
from auditcore.services.audit_writer import AuditInput
from auditcore.utils.time import utc_today


def _wire(monkeypatch, ledger, audit_store) -> None:
    monkeypatch.setattr(cron, "_ledger", lambda: ledger)
    monkeypatch.setattr(cron, "SqlAuditStore", lambda session_factory: audit_store)


def test_daily_export_job_skips_empty_day(monkeypatch, ledger, audit_store):
    _wire(monkeypatch, ledger, audit_store)

    assert cron.run_daily_export_once() is None
    assert ledger.list_exports_for_date() == []


def test_daily_export_job_writes_todays_records(monkeypatch, ledger, audit_store, writer):
    _wire(monkeypatch, ledger, audit_store)
    writer.record(AuditInput(operation_kind="CREATE", entity_collection="contacts", entity_id="1"))
    writer.record(AuditInput(operation_kind="DELETE", entity_collection="contacts", entity_id="1"))

    result = cron.run_daily_export_once()

    assert result is not None
    assert result.record_count == 2
    assert [info.filename for info in ledger.list_exports_for_date()] == [result.filename]


def test_daily_export_job_swallows_failures(monkeypatch, ledger, caplog):
    class BrokenStore:
        def created_on(self, day, *, limit=10000):
            raise ConnectionError("database unreachable")

    _wire(monkeypatch, ledger, BrokenStore())
    caplog.set_level(logging.ERROR, logger="auditcore.services.cron")

    assert cron.run_daily_export_once() is None
    assert "Daily audit export failed" in caplog.text


def test_prune_job_uses_configured_retention(monkeypatch, ledger, audit_store):
    _wire(monkeypatch, ledger, audit_store)
    old = ledger.day_dir(utc_today() - timedelta(days=400))
    recent = ledger.day_dir(utc_today() - timedelta(days=1))

    assert cron.prune_exports_once() == 1
    assert not old.exists()
    assert recent.exists()


def test_prune_job_swallows_failures(monkeypatch, caplog):
    class BrokenLedger:
        def prune_older_than(self, days):
            raise PermissionError("read-only")

    monkeypatch.setattr(cron, "_ledger", lambda: BrokenLedger())
    caplog.set_level(logging.ERROR, logger="auditcore.services.cron")

    assert cron.prune_exports_once() == 0
    assert "Audit export pruning failed" in caplog.text
