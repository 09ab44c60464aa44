"""
Shared fixtures.

Environment is set before any app import: settings are read once at import
time. The database is a throwaway SQLite file (not :memory:) so worker
threads from TestClient and the concurrency tests share one schema. Tables
are dropped and recreated for every test.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator

_DB_DIR = tempfile.mkdtemp(prefix="activation-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("JWT_SECRET", "test-signing-key-with-enough-length-0123456789")
os.environ.setdefault("EMAIL_API_KEY", "test-key")
os.environ.setdefault("SEED_ADMIN_EMAIL", "root@x.com")

import pytest
from fastapi.testclient import TestClient

from app.database import Base, engine, init_db
from app.dependencies import (
    get_account_directory,
    get_audit_writer,
    get_otp_lifecycle,
)
from app.main import app
from app.services.audit import AuditChainWriter
from app.services.otp import OtpLifecycle, OtpRequestStore
from app.services.roles import role_store
from app.services.users import AccountDirectory
from tests.support import FakeClock, RecordingMailer


@pytest.fixture(autouse=True)
def database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    init_db()
    role_store.ensure_roles()
    yield
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def audit(clock: FakeClock) -> AuditChainWriter:
    writer = AuditChainWriter(clock=clock)
    writer.ensure_chain_head()
    return writer


@pytest.fixture
def store() -> OtpRequestStore:
    return OtpRequestStore()


@pytest.fixture
def accounts(audit: AuditChainWriter, clock: FakeClock) -> AccountDirectory:
    return AccountDirectory(audit=audit, clock=clock)


@pytest.fixture
def lifecycle(
    store: OtpRequestStore,
    accounts: AccountDirectory,
    audit: AuditChainWriter,
    mailer: RecordingMailer,
    clock: FakeClock,
) -> OtpLifecycle:
    return OtpLifecycle(
        store=store,
        accounts=accounts,
        audit=audit,
        send_email=mailer,
        clock=clock,
    )


@pytest.fixture
def client(
    lifecycle: OtpLifecycle,
    accounts: AccountDirectory,
    audit: AuditChainWriter,
) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_otp_lifecycle] = lambda: lifecycle
    app.dependency_overrides[get_account_directory] = lambda: accounts
    app.dependency_overrides[get_audit_writer] = lambda: audit
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
