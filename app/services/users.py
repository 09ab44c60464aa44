from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.database import session_scope, storage_errors
from app.models.db_operation import _add_record, _update_records
from app.models.schema.otp import OtpRequestEntry
from app.models.schema.user import DEFAULT_ROLE, AccountEntry
from app.services.audit import ActorRef, AuditChainWriter, RequestContext, audit_writer
from app.services.errors import InvalidCredentialError, ValidationError
from app.services.hashing import CredentialHasher, credential_hasher

LOGGER = logging.getLogger(__name__)

SEED_ADMIN_ROLE = "System Admin"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _role_for_email(email: str) -> str:
    seed_email = settings.seed_admin_email
    if seed_email and email == seed_email:
        return SEED_ADMIN_ROLE
    return DEFAULT_ROLE


@dataclass(frozen=True)
class AccountView:
    id: str
    name: str
    email: str
    role: str
    status: str
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    def actor(self) -> ActorRef:
        return ActorRef(id=self.id, email=self.email, role=self.role)

    def public(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}


def _to_view(entry: AccountEntry) -> AccountView:
    return AccountView(
        id=entry.id,
        name=entry.name,
        email=entry.email,
        role=entry.role,
        status=entry.status,
        last_login_at=entry.last_login_at,
        created_at=entry.created_at,
    )


def _live_account(session: Session, email: str, lock: bool = False) -> AccountEntry | None:
    stmt = select(AccountEntry).where(
        AccountEntry.email == email, AccountEntry.is_deleted.is_(False)
    )
    if lock:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalars().first()


class AccountDirectory:
    def __init__(
        self,
        hasher: CredentialHasher | None = None,
        audit: AuditChainWriter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._hasher = hasher or credential_hasher
        self._audit = audit or audit_writer
        self._clock = clock or _utcnow
        self._dummy_hash: str | None = None

    def ensure_can_register(
        self, email: str, context: RequestContext | None = None
    ) -> None:
        with session_scope() as session:
            entry = _live_account(session, email)
        if entry is None:
            return
        if entry.status == "active":
            code, message = "ALREADY_REGISTERED", "Email already registered. Please login instead."
        else:
            code, message = "ACCOUNT_INACTIVE", "Account is inactive. Please contact support."
        self._audit.append(
            "Auth",
            "SIGNUP_REJECTED",
            success=False,
            target_type="user",
            target_id=entry.id,
            target_summary=email,
            details={"reason": code},
            context=context,
        )
        raise ValidationError(message, code=code)

    def activate_from_request(
        self, session: Session, request: OtpRequestEntry, now: datetime
    ) -> AccountView:
        """Create the account for a verified signup inside the caller's transaction."""
        existing = _live_account(session, request.email, lock=True)
        if existing is not None:
            if existing.status == "active":
                raise ValidationError(
                    "Email already registered. Please login instead.",
                    code="ALREADY_REGISTERED",
                )
            raise ValidationError(
                "Account is inactive. Please contact support.", code="ACCOUNT_INACTIVE"
            )
        entry = _add_record(
            session,
            "user",
            id=str(uuid.uuid4()),
            email=request.email,
            name=request.name,
            password_hash=request.password_hash,
            role=_role_for_email(request.email),
            status="active",
            last_login_at=now,
            created_at=now,
            updated_at=now,
            is_deleted=False,
        )
        return _to_view(entry)

    def provision_external(
        self, name: str, email: str, provider: str, role: str = DEFAULT_ROLE
    ) -> AccountView:
        """Create an account owned by an external identity provider (no password)."""
        email = normalize_email(email)
        now = self._clock()
        with storage_errors("account provisioning"):
            with session_scope() as session:
                if _live_account(session, email, lock=True) is not None:
                    raise ValidationError(
                        "Email already registered", code="ALREADY_REGISTERED"
                    )
                entry = _add_record(
                    session,
                    "user",
                    id=str(uuid.uuid4()),
                    email=email,
                    name=name,
                    password_hash=None,
                    external_providers=[provider],
                    role=role,
                    status="active",
                    created_at=now,
                    updated_at=now,
                    is_deleted=False,
                )
                view = _to_view(entry)
        self._audit.append(
            "Users",
            "USER_PROVISIONED",
            target_type="user",
            target_id=view.id,
            target_summary=email,
            details={"provider": provider, "role": role},
        )
        return view

    def login(
        self,
        email: str | None,
        password: str | None,
        context: RequestContext | None = None,
    ) -> AccountView:
        email = normalize_email(email or "")
        if not email or not password:
            raise ValidationError("Email and password are required")

        with storage_errors("login"):
            with session_scope() as session:
                entry = _live_account(session, email)
            if entry is None:
                # Same derivation cost as a real account.
                self._hasher.verify(password, self._get_dummy_hash())
                self._reject_login(email, None, "INVALID_CREDENTIALS", context)
            if entry.status != "active":
                self._reject_login(email, entry, "ACCOUNT_INACTIVE", context)
            if not entry.password_hash:
                self._reject_login(email, entry, "SSO_REQUIRED", context)
            if not self._hasher.verify(password, entry.password_hash):
                self._reject_login(email, entry, "INVALID_CREDENTIALS", context)

            now = self._clock()
            with session_scope() as session:
                _update_records(session, "user", values={"last_login_at": now}, id=entry.id)
            entry.last_login_at = now

        view = _to_view(entry)
        self._audit.append(
            "Auth",
            "USER_LOGIN",
            actor=view.actor(),
            target_type="user",
            target_id=view.id,
            target_summary=view.email,
            context=context,
        )
        LOGGER.info("User %s logged in", view.id)
        return view

    def get_account(self, account_id: str) -> AccountView | None:
        with storage_errors("account lookup"):
            with session_scope() as session:
                entry = session.get(AccountEntry, account_id)
        if entry is None or entry.is_deleted:
            return None
        return _to_view(entry)

    def count_by_role(self) -> dict[str, int]:
        with storage_errors("account role counts"):
            with session_scope() as session:
                rows = session.execute(
                    select(AccountEntry.role, func.count())
                    .where(AccountEntry.is_deleted.is_(False))
                    .group_by(AccountEntry.role)
                ).all()
        return {role: count for role, count in rows}

    def ensure_seed_admin(self) -> None:
        seed_email = settings.seed_admin_email
        if not seed_email:
            return
        with session_scope() as session:
            updated = _update_records(
                session,
                "user",
                values={"role": SEED_ADMIN_ROLE, "updated_at": self._clock()},
                email=seed_email,
                is_deleted=False,
                role=("!=", SEED_ADMIN_ROLE),
            )
        if updated:
            LOGGER.info("Promoted seed admin account %s", seed_email)

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(uuid.uuid4().hex)
        return self._dummy_hash

    def _reject_login(
        self,
        email: str,
        entry: AccountEntry | None,
        code: str,
        context: RequestContext | None,
    ) -> None:
        self._audit.append(
            "Auth",
            "USER_LOGIN_FAILED",
            success=False,
            target_type="user",
            target_id=entry.id if entry is not None else None,
            target_summary=email,
            details={"reason": code},
            context=context,
        )
        messages = {
            "INVALID_CREDENTIALS": "Invalid email or password",
            "ACCOUNT_INACTIVE": "Account is inactive. Please contact support.",
            "SSO_REQUIRED": "Please use SSO to login",
        }
        raise InvalidCredentialError(messages[code], code=code)


account_directory = AccountDirectory()
