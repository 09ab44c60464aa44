from datetime import timezone

import pytest
from sqlalchemy import update

from app.database import session_scope
from app.models.schema.user import AccountEntry
from app.services.audit import AuditFilters
from app.services.errors import InvalidCredentialError, ValidationError

EMAIL = "ann@x.com"


@pytest.fixture
def registered(lifecycle, mailer):
    lifecycle.issue("Ann", EMAIL, "password123")
    return lifecycle.verify(EMAIL, mailer.last_code(EMAIL)).account


def _set_status(email, value):
    with session_scope() as session:
        session.execute(update(AccountEntry).where(AccountEntry.email == email).values(status=value))


def test_login_updates_last_login(accounts, registered, clock):
    clock.advance(3600)
    account = accounts.login(" ANN@x.com ", "password123")

    assert account.id == registered.id
    assert account.role == "User"
    stored = accounts.get_account(account.id)
    assert stored.last_login_at.replace(tzinfo=timezone.utc) == clock.now


def test_wrong_password(accounts, registered, audit):
    with pytest.raises(InvalidCredentialError) as excinfo:
        accounts.login(EMAIL, "password124")
    assert excinfo.value.code == "INVALID_CREDENTIALS"

    failed, _ = audit.list_entries(AuditFilters(action="USER_LOGIN_FAILED"))
    assert failed[0].details == {"reason": "INVALID_CREDENTIALS"}


def test_unknown_email_looks_like_wrong_password(accounts):
    with pytest.raises(InvalidCredentialError) as excinfo:
        accounts.login("nobody@x.com", "password123")
    assert excinfo.value.code == "INVALID_CREDENTIALS"
    assert excinfo.value.message == "Invalid email or password"


def test_inactive_account_rejected(accounts, registered):
    _set_status(EMAIL, "inactive")
    with pytest.raises(InvalidCredentialError) as excinfo:
        accounts.login(EMAIL, "password123")
    assert excinfo.value.code == "ACCOUNT_INACTIVE"


def test_externally_provisioned_account_requires_sso(accounts):
    accounts.provision_external("Bob", "bob@x.com", provider="google")
    with pytest.raises(InvalidCredentialError) as excinfo:
        accounts.login("bob@x.com", "anything-at-all")
    assert excinfo.value.code == "SSO_REQUIRED"


def test_provisioning_existing_email_rejected(accounts, registered):
    with pytest.raises(ValidationError) as excinfo:
        accounts.provision_external("Ann", EMAIL, provider="google")
    assert excinfo.value.code == "ALREADY_REGISTERED"


def test_missing_fields(accounts):
    with pytest.raises(ValidationError):
        accounts.login(EMAIL, "")


def test_seed_admin_is_created_as_system_admin(lifecycle, mailer):
    lifecycle.issue("Root", "root@x.com", "password123")
    account = lifecycle.verify("root@x.com", mailer.last_code("root@x.com")).account
    assert account.role == "System Admin"


def test_seed_admin_promotion(accounts):
    accounts.provision_external("Root", "root@x.com", provider="google", role="User")
    accounts.ensure_seed_admin()
    assert accounts.count_by_role() == {"System Admin": 1}
