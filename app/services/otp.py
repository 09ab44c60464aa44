from __future__ import annotations

import logging
import math
import re
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from sqlalchemy.orm import Session

from app.config import settings
from app.database import session_scope, storage_errors
from app.models.db_operation import (
    _add_record,
    _delete_records,
    _select_one_or_none,
    _update_records,
)
from app.models.schema.otp import OtpRequestEntry
from app.services.audit import AuditChainWriter, RequestContext, audit_writer
from app.services.email import EmailSendError, send_otp_email
from app.services.errors import (
    ExpiredError,
    InternalError,
    InvalidOtpError,
    LockedError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from app.services.hashing import CredentialHasher, credential_hasher
from app.services.users import (
    AccountDirectory,
    AccountView,
    account_directory,
    normalize_email,
)

LOGGER = logging.getLogger(__name__)

AUDIT_MODULE = "Auth"
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class OtpState(str, Enum):
    NO_REQUEST = "no_request"
    ISSUED = "issued"
    VERIFIED = "verified"
    EXPIRED = "expired"
    LOCKED = "locked"


@dataclass(frozen=True)
class OtpOutcome:
    state: OtpState
    email: str
    expires_at: datetime | None = None
    resend_after: datetime | None = None
    resend_after_seconds: int | None = None
    account: AccountView | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_code(length: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


class OtpRequestStore:
    """Persistence for pending OTP requests, one row per email.

    Every mutation is a single conditional statement guarded on the values
    the caller observed; a zero row count means another worker changed the
    row first and the caller must re-read.
    """

    def get(self, email: str) -> OtpRequestEntry | None:
        with session_scope() as session:
            return _select_one_or_none(session, "otp", email=email)

    def replace(self, now: datetime, **fields) -> OtpRequestEntry:
        with session_scope() as session:
            _delete_records(session, "otp", expires_at=("<", now))
            _delete_records(session, "otp", email=fields["email"])
            return _add_record(session, "otp", id=str(uuid.uuid4()), **fields)

    def delete(self, email: str, request_id: str | None = None) -> bool:
        filters = {"email": email}
        if request_id is not None:
            filters["id"] = request_id
        with session_scope() as session:
            return _delete_records(session, "otp", **filters) > 0

    def record_failure(self, entry: OtpRequestEntry, now: datetime) -> int | None:
        remaining = entry.attempts_left - 1
        with session_scope() as session:
            updated = _update_records(
                session,
                "otp",
                values={"attempts_left": remaining},
                id=entry.id,
                otp_hash=entry.otp_hash,
                attempts_left=entry.attempts_left,
                expires_at=(">=", now),
            )
        return remaining if updated == 1 else None

    def reissue(
        self,
        entry: OtpRequestEntry,
        now: datetime,
        *,
        otp_hash: str,
        attempts_left: int,
        resend_after: datetime,
    ) -> bool:
        with session_scope() as session:
            updated = _update_records(
                session,
                "otp",
                values={
                    "otp_hash": otp_hash,
                    "attempts_left": attempts_left,
                    "resend_after": resend_after,
                },
                id=entry.id,
                otp_hash=entry.otp_hash,
                attempts_left=entry.attempts_left,
                expires_at=(">=", now),
            )
        return updated == 1

    def restore(self, entry: OtpRequestEntry, replaced_hash: str) -> bool:
        with session_scope() as session:
            updated = _update_records(
                session,
                "otp",
                values={
                    "otp_hash": entry.otp_hash,
                    "attempts_left": entry.attempts_left,
                    "resend_after": entry.resend_after,
                },
                id=entry.id,
                otp_hash=replaced_hash,
            )
        return updated == 1

    def consume(self, session: Session, entry: OtpRequestEntry, now: datetime) -> bool:
        deleted = _delete_records(
            session,
            "otp",
            id=entry.id,
            otp_hash=entry.otp_hash,
            attempts_left=(">", 0),
            expires_at=(">=", now),
        )
        return deleted == 1


class OtpLifecycle:
    def __init__(
        self,
        store: OtpRequestStore | None = None,
        hasher: CredentialHasher | None = None,
        accounts: AccountDirectory | None = None,
        audit: AuditChainWriter | None = None,
        send_email: Callable[[str, str, str], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        max_retries: int = 3,
    ) -> None:
        self._store = store or OtpRequestStore()
        self._hasher = hasher or credential_hasher
        self._accounts = accounts or account_directory
        self._audit = audit or audit_writer
        self._send_email = send_email or send_otp_email
        self._clock = clock or _utcnow
        self._max_retries = max_retries
        self._ttl = timedelta(seconds=settings.otp_ttl_seconds)
        self._cooldown = timedelta(seconds=settings.otp_resend_cooldown_seconds)
        self._max_attempts = settings.otp_max_attempts
        self._code_length = settings.otp_length

    def state(self, email: str) -> OtpState:
        with storage_errors("OTP state lookup"):
            entry = self._store.get(normalize_email(email or ""))
        if entry is None:
            return OtpState.NO_REQUEST
        if self._is_expired(entry, self._clock()):
            return OtpState.EXPIRED
        if entry.attempts_left <= 0:
            return OtpState.LOCKED
        return OtpState.ISSUED

    def issue(
        self,
        name: str | None,
        email: str | None,
        password: str | None,
        context: RequestContext | None = None,
    ) -> OtpOutcome:
        name = (name or "").strip()
        email = normalize_email(email or "")
        if not name or not email or not password:
            raise ValidationError("Name, email, and password are required")
        if not _EMAIL_RE.match(email):
            raise ValidationError("Email address is invalid")
        if len(password) < settings.password_min_length:
            raise ValidationError(
                f"Password must be at least {settings.password_min_length} characters"
            )

        with storage_errors("OTP issue"):
            self._accounts.ensure_can_register(email, context)
            now = self._clock()
            code = generate_code(self._code_length)
            entry = self._store.replace(
                now,
                email=email,
                name=name,
                password_hash=self._hasher.hash(password),
                otp_hash=self._hasher.hash(code),
                attempts_left=self._max_attempts,
                expires_at=now + self._ttl,
                resend_after=now + self._cooldown,
                created_at=now,
            )
        self._audit.append(
            AUDIT_MODULE,
            "OTP_ISSUED",
            target_type="otp_request",
            target_id=entry.id,
            target_summary=email,
            details={"name": name, "expires_at": entry.expires_at},
            context=context,
        )

        try:
            self._send_email(email, code, name)
        except EmailSendError as exc:
            LOGGER.error("OTP email dispatch failed for request %s: %s", entry.id, exc)
            with storage_errors("OTP issue cleanup"):
                self._store.delete(email, request_id=entry.id)
            self._audit.append(
                AUDIT_MODULE,
                "OTP_ISSUE_FAILED",
                success=False,
                target_type="otp_request",
                target_id=entry.id,
                target_summary=email,
                details={"operation": "issue"},
                context=context,
            )
            raise InternalError("Failed to send verification email") from exc

        LOGGER.info("OTP issued for %s", email)
        return OtpOutcome(
            state=OtpState.ISSUED,
            email=email,
            expires_at=entry.expires_at,
            resend_after=entry.resend_after,
            resend_after_seconds=int(self._cooldown.total_seconds()),
        )

    def resend(self, email: str | None, context: RequestContext | None = None) -> OtpOutcome:
        email = normalize_email(email or "")
        if not email:
            raise ValidationError("Email is required")

        for _ in range(self._max_retries):
            with storage_errors("OTP resend"):
                entry = self._store.get(email)
                now = self._clock()
                if entry is None:
                    raise NotFoundError(
                        "No pending OTP request found. Please sign up again.",
                        code="OTP_NOT_FOUND",
                        state=OtpState.NO_REQUEST,
                    )
                if self._is_expired(entry, now):
                    self._expire(entry, context)
                    raise ExpiredError(
                        "OTP request expired. Please sign up again.",
                        code="OTP_EXPIRED",
                        state=OtpState.EXPIRED,
                    )
                resend_after = _as_utc(entry.resend_after)
                if now < resend_after:
                    retry_after = math.ceil((resend_after - now).total_seconds())
                    self._audit.append(
                        AUDIT_MODULE,
                        "OTP_RESEND_RATE_LIMITED",
                        success=False,
                        target_type="otp_request",
                        target_id=entry.id,
                        target_summary=email,
                        details={"retry_after": retry_after},
                        context=context,
                    )
                    raise RateLimitedError(retry_after, state=OtpState.ISSUED)

                code = generate_code(self._code_length)
                new_hash = self._hasher.hash(code)
                new_resend_after = now + self._cooldown
                swapped = self._store.reissue(
                    entry,
                    now,
                    otp_hash=new_hash,
                    attempts_left=self._max_attempts,
                    resend_after=new_resend_after,
                )
            if not swapped:
                continue

            try:
                self._send_email(email, code, entry.name)
            except EmailSendError as exc:
                LOGGER.error("OTP resend dispatch failed for request %s: %s", entry.id, exc)
                with storage_errors("OTP resend rollback"):
                    self._store.restore(entry, new_hash)
                self._audit.append(
                    AUDIT_MODULE,
                    "OTP_RESEND_FAILED",
                    success=False,
                    target_type="otp_request",
                    target_id=entry.id,
                    target_summary=email,
                    details={"operation": "resend"},
                    context=context,
                )
                raise InternalError("Failed to send verification email") from exc

            self._audit.append(
                AUDIT_MODULE,
                "OTP_RESENT",
                target_type="otp_request",
                target_id=entry.id,
                target_summary=email,
                details={"previous_attempts_left": entry.attempts_left},
                context=context,
            )
            LOGGER.info("OTP resent for %s", email)
            return OtpOutcome(
                state=OtpState.ISSUED,
                email=email,
                expires_at=_as_utc(entry.expires_at),
                resend_after=new_resend_after,
                resend_after_seconds=int(self._cooldown.total_seconds()),
            )

        LOGGER.warning("OTP resend for %s lost %d update races", email, self._max_retries)
        raise InternalError("OTP request is busy, please retry")

    def verify(
        self,
        email: str | None,
        otp: str | None,
        context: RequestContext | None = None,
    ) -> OtpOutcome:
        email = normalize_email(email or "")
        otp = (otp or "").strip()
        if not email or not otp:
            raise ValidationError("Email and OTP are required")

        for _ in range(self._max_retries):
            with storage_errors("OTP verify"):
                outcome = self._verify_once(email, otp, context)
            if outcome is not None:
                return outcome

        LOGGER.warning("OTP verify for %s lost %d update races", email, self._max_retries)
        raise InternalError("OTP request is busy, please retry")

    def _verify_once(
        self, email: str, otp: str, context: RequestContext | None
    ) -> OtpOutcome | None:
        entry = self._store.get(email)
        now = self._clock()
        if entry is None:
            # A consumed or purged request reports as expired.
            raise ExpiredError(
                "OTP not found or expired",
                code="OTP_EXPIRED",
                state=OtpState.NO_REQUEST,
            )
        # Expiry is checked before the attempt budget.
        if self._is_expired(entry, now):
            self._expire(entry, context)
            raise ExpiredError(
                "OTP has expired", code="OTP_EXPIRED", state=OtpState.EXPIRED
            )
        if entry.attempts_left <= 0:
            self._audit.append(
                AUDIT_MODULE,
                "OTP_LOCKED",
                success=False,
                target_type="otp_request",
                target_id=entry.id,
                target_summary=email,
                context=context,
            )
            raise LockedError(
                "Too many failed attempts", code="OTP_LOCKED", state=OtpState.LOCKED
            )

        if not self._hasher.verify(otp, entry.otp_hash):
            remaining = self._store.record_failure(entry, now)
            if remaining is None:
                return None
            self._audit.append(
                AUDIT_MODULE,
                "OTP_VERIFY_FAILED",
                success=False,
                target_type="otp_request",
                target_id=entry.id,
                target_summary=email,
                details={"attempts_left": remaining},
                context=context,
            )
            raise InvalidOtpError(remaining, state=OtpState.ISSUED)

        with session_scope() as session:
            if not self._store.consume(session, entry, now):
                return None
            account = self._accounts.activate_from_request(session, entry, now)

        self._audit.append(
            AUDIT_MODULE,
            "OTP_VERIFIED",
            actor=account.actor(),
            target_type="otp_request",
            target_id=entry.id,
            target_summary=email,
            context=context,
        )
        self._audit.append(
            "Users",
            "USER_CREATED",
            actor=account.actor(),
            target_type="user",
            target_id=account.id,
            target_summary=account.email,
            details={"role": account.role, "status": account.status},
            context=context,
        )
        LOGGER.info("Account %s activated for %s", account.id, email)
        return OtpOutcome(state=OtpState.VERIFIED, email=email, account=account)

    def _is_expired(self, entry: OtpRequestEntry, now: datetime) -> bool:
        return now > _as_utc(entry.expires_at)

    def _expire(self, entry: OtpRequestEntry, context: RequestContext | None) -> None:
        self._store.delete(entry.email, request_id=entry.id)
        self._audit.append(
            AUDIT_MODULE,
            "OTP_EXPIRED",
            success=False,
            target_type="otp_request",
            target_id=entry.id,
            target_summary=entry.email,
            context=context,
        )


otp_lifecycle = OtpLifecycle()
