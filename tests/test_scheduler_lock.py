from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from auditcore.models.scheduler_lock import SchedulerLock
from auditcore.services.scheduler_lock import (
    LOCK_NAME,
    describe_scheduler_lock,
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)


def test_scheduler_lock_is_reentrant_for_its_owner(db_session):
    assert try_acquire_scheduler_lock(db_session=db_session) is True
    assert try_acquire_scheduler_lock(db_session=db_session) is True

    release_scheduler_lock(db_session=db_session)
    assert db_session.scalars(select(SchedulerLock)).all() == []


def test_lock_cannot_be_taken_if_not_expired(monkeypatch, db_session):
    monkeypatch.setattr("auditcore.services.scheduler_lock._owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)

    monkeypatch.setattr("auditcore.services.scheduler_lock._owner_id", lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300) is False

    # Only the owner may release it.
    release_scheduler_lock(db_session=db_session)
    lock = db_session.scalars(select(SchedulerLock)).one()
    assert lock.owner == "node-A"


def test_lock_can_be_reacquired_after_expiry(monkeypatch, db_session):
    monkeypatch.setattr("auditcore.services.scheduler_lock._owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=60)

    with db_session.begin():
        lock = db_session.execute(select(SchedulerLock).where(SchedulerLock.name == LOCK_NAME)).scalar_one()
        lock.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    monkeypatch.setattr("auditcore.services.scheduler_lock._owner_id", lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)
    assert db_session.scalars(select(SchedulerLock)).one().owner == "node-B"


def test_refresh_extends_the_lease(monkeypatch, db_session):
    monkeypatch.setattr("auditcore.services.scheduler_lock._owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=10)
    before = describe_scheduler_lock(db_session=db_session)["expires_in_seconds"]
    db_session.rollback()

    refresh_scheduler_lock(db_session=db_session, ttl_seconds=600)

    info = describe_scheduler_lock(db_session=db_session)
    assert info["status"] == "owned_by_self"
    assert info["expires_in_seconds"] > before


def test_describe_scheduler_lock_without_lock(db_session):
    assert describe_scheduler_lock(db_session=db_session) == {"status": "none", "owner": None, "present": False}
