"""Test configuration."""
import os
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, set before the app reads its settings
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="auditcore-tests-"))
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_SESSION_DIR / 'auditcore_app.db'}")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("AUDIT_LOGS_ROOT", str(_SESSION_DIR / "Logs"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from auditcore import db  # noqa: E402
from auditcore.db import get_db  # noqa: E402
from auditcore.main import app  # noqa: E402
from auditcore.models import Base  # noqa: E402
from auditcore.services.audit_store import SqlAuditStore  # noqa: E402
from auditcore.services.audit_writer import AuditWriter  # noqa: E402
from auditcore.services.ledger import AuditLedger  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def app_database() -> Iterator[None]:
    """Schema for the process-wide engine used by health checks and the scheduler lock."""

    db.init_engine()
    db.create_all()
    yield
    db.close_engine()


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'audit.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def audit_store(session_factory: sessionmaker[Session]) -> SqlAuditStore:
    return SqlAuditStore(session_factory)


@pytest.fixture
def ledger(tmp_path: Path) -> AuditLedger:
    audit_ledger = AuditLedger(tmp_path / "Logs")
    audit_ledger.ensure_logs_root()
    return audit_ledger


@pytest.fixture
def writer(audit_store: SqlAuditStore, ledger: AuditLedger) -> AuditWriter:
    return AuditWriter(audit_store, ledger)


@pytest.fixture
def wired_app(db_session: Session, audit_store: SqlAuditStore, ledger: AuditLedger, writer: AuditWriter):
    """The app with its audit components and DB dependency pointed at this test's database."""

    def _get_db() -> Iterator[Session]:
        yield db_session

    app.state.audit_store = audit_store
    app.state.audit_ledger = ledger
    app.state.audit_writer = writer
    app.dependency_overrides[get_db] = _get_db
    yield app
    app.dependency_overrides.pop(get_db, None)
    for name in ("audit_store", "audit_ledger", "audit_writer"):
        if hasattr(app.state, name):
            delattr(app.state, name)


@pytest.fixture
async def client(wired_app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=wired_app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['ADMIN_API_KEY']}"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
