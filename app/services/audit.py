"""Hash-chained, append-only audit log.

Canonical layout of an entry, hashed as ``sha256(canonical || prev_hash)``:

    JSON object with keys action, actor_email, actor_id, actor_role,
    created_at, details, id, ip_address, metadata, module, success,
    target_id, target_summary, target_type, user_agent; serialized with
    sorted keys, "," and ":" separators, ASCII escaping, UTF-8 encoded.
    Missing values are JSON null. created_at is UTC
    "YYYY-MM-DDTHH:MM:SS.ffffffZ". prev_hash is appended as ASCII hex.

The first entry chains onto GENESIS_HASH. The chain_head row is the single
serialization point: it is read under a row lock and swapped only if it
still holds the hash the new entry was built on.
"""

from __future__ import annotations

import csv
import hashlib
import io
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.database import session_scope
from app.models.db_operation import _add_record, _update_records
from app.models.schema.audit import AuditLogEntry, ChainHead

LOGGER = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
CHAIN_HEAD_ID = 1

CANONICAL_FIELDS = (
    "action",
    "actor_email",
    "actor_id",
    "actor_role",
    "created_at",
    "details",
    "id",
    "ip_address",
    "metadata",
    "module",
    "success",
    "target_id",
    "target_summary",
    "target_type",
    "user_agent",
)

CSV_COLUMNS = (
    "id",
    "created_at",
    "module",
    "action",
    "success",
    "actor_id",
    "actor_email",
    "actor_role",
    "target_type",
    "target_id",
    "target_summary",
    "ip_address",
    "user_agent",
    "prev_hash",
    "chain_hash",
)

# Spreadsheet apps evaluate cells starting with these as formulas.
_CSV_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


@dataclass(frozen=True)
class ActorRef:
    id: str | None = None
    email: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditFilters:
    module: str | None = None
    action: str | None = None
    actor_email: str | None = None
    success: bool | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class ChainVerification:
    valid: bool
    checked: int
    head_matches: bool
    broken_entries: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def first_broken(self) -> str | None:
        return self.broken_entries[0] if self.broken_entries else None


class _ChainHeadMoved(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _normalize_json(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def canonical_bytes(fields: dict[str, Any]) -> bytes:
    document = {name: fields.get(name) for name in CANONICAL_FIELDS}
    created_at = document["created_at"]
    if isinstance(created_at, datetime):
        document["created_at"] = format_timestamp(created_at)
    return json.dumps(
        document, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def compute_chain_hash(canonical: bytes, prev_hash: str) -> str:
    return hashlib.sha256(canonical + prev_hash.encode("ascii")).hexdigest()


def entry_fields(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "action": entry.action,
        "actor_email": entry.actor_email,
        "actor_id": entry.actor_id,
        "actor_role": entry.actor_role,
        "created_at": entry.created_at,
        "details": entry.details,
        "id": entry.id,
        "ip_address": entry.ip_address,
        "metadata": entry.extra_metadata,
        "module": entry.module,
        "success": entry.success,
        "target_id": entry.target_id,
        "target_summary": entry.target_summary,
        "target_type": entry.target_type,
        "user_agent": entry.user_agent,
    }


def _sanitize_csv_cell(value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    if text.startswith(_CSV_FORMULA_PREFIXES):
        return "'" + text
    return text


class AuditChainWriter:
    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_retries: int = 5,
    ) -> None:
        self._clock = clock or _utcnow
        self._max_retries = max_retries
        self._lock = threading.Lock()

    def ensure_chain_head(self) -> None:
        with session_scope() as session:
            if session.get(ChainHead, CHAIN_HEAD_ID) is None:
                _add_record(
                    session,
                    "chain_head",
                    id=CHAIN_HEAD_ID,
                    latest_hash=GENESIS_HASH,
                    entry_count=0,
                )

    def append(
        self,
        module: str,
        action: str,
        *,
        success: bool = True,
        actor: ActorRef | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        target_summary: str | None = None,
        details: dict | None = None,
        metadata: dict | None = None,
        context: RequestContext | None = None,
    ) -> str | None:
        """Append one entry and return its chain hash.

        Never raises: an audit failure is logged for operators and reported
        as ``None`` so the business operation that triggered it is unaffected.
        """
        actor = actor or ActorRef()
        context = context or RequestContext()
        try:
            fields = {
                "module": module,
                "action": action,
                "success": bool(success),
                "actor_id": actor.id,
                "actor_email": actor.email,
                "actor_role": actor.role,
                "target_type": target_type,
                "target_id": target_id,
                "target_summary": target_summary,
                "details": _normalize_json(details),
                "metadata": _normalize_json(metadata),
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
            }
            with self._lock:
                for _ in range(self._max_retries):
                    try:
                        return self._append_once(fields)
                    except _ChainHeadMoved:
                        continue
            LOGGER.error(
                "Audit append %s/%s gave up after %d chain head conflicts",
                module,
                action,
                self._max_retries,
            )
        except (SQLAlchemyError, TypeError, ValueError):
            LOGGER.exception("Failed to append audit entry %s/%s", module, action)
        return None

    def _append_once(self, fields: dict[str, Any]) -> str:
        with session_scope() as session:
            head = session.execute(
                select(ChainHead).where(ChainHead.id == CHAIN_HEAD_ID).with_for_update()
            ).scalar_one_or_none()
            if head is None:
                head = _add_record(
                    session,
                    "chain_head",
                    id=CHAIN_HEAD_ID,
                    latest_hash=GENESIS_HASH,
                    entry_count=0,
                )
            prev_hash = head.latest_hash
            record = dict(fields, id=str(uuid.uuid4()), created_at=self._clock())
            chain_hash = compute_chain_hash(canonical_bytes(record), prev_hash)

            swapped = _update_records(
                session,
                "chain_head",
                values={
                    "latest_hash": chain_hash,
                    "entry_count": ChainHead.entry_count + 1,
                },
                id=CHAIN_HEAD_ID,
                latest_hash=prev_hash,
            )
            if swapped != 1:
                raise _ChainHeadMoved()

            metadata = record.pop("metadata")
            _add_record(
                session,
                "audit",
                extra_metadata=metadata,
                prev_hash=prev_hash,
                chain_hash=chain_hash,
                **record,
            )
            return chain_hash

    def verify_chain(self) -> ChainVerification:
        """Replay the log in creation order and report every entry that fails."""
        with session_scope() as session:
            entries = (
                session.execute(select(AuditLogEntry).order_by(AuditLogEntry.seq))
                .scalars()
                .all()
            )
            head = session.get(ChainHead, CHAIN_HEAD_ID)

        running = GENESIS_HASH
        broken: list[str] = []
        for entry in entries:
            recomputed = compute_chain_hash(canonical_bytes(entry_fields(entry)), running)
            if entry.prev_hash != running or recomputed != entry.chain_hash:
                broken.append(entry.id)
            running = recomputed

        last_hash = entries[-1].chain_hash if entries else GENESIS_HASH
        head_hash = head.latest_hash if head is not None else GENESIS_HASH
        head_count = head.entry_count if head is not None else 0
        head_matches = head_hash == last_hash and head_count == len(entries)

        reason = None
        if broken:
            reason = f"Chain broken at entry {broken[0]}"
        elif not head_matches:
            reason = "Chain head does not match the last entry"
        if reason:
            LOGGER.warning("Audit chain verification failed: %s", reason)
        return ChainVerification(
            valid=not broken and head_matches,
            checked=len(entries),
            head_matches=head_matches,
            broken_entries=broken,
            reason=reason,
        )

    def list_entries(self, filters: AuditFilters) -> tuple[list[AuditLogEntry], int]:
        conditions = []
        if filters.module:
            conditions.append(AuditLogEntry.module == filters.module)
        if filters.action:
            conditions.append(AuditLogEntry.action == filters.action)
        if filters.actor_email:
            conditions.append(
                AuditLogEntry.actor_email == filters.actor_email.strip().lower()
            )
        if filters.success is not None:
            conditions.append(AuditLogEntry.success == filters.success)

        with session_scope() as session:
            total = session.execute(
                select(func.count()).select_from(AuditLogEntry).where(*conditions)
            ).scalar_one()
            entries = (
                session.execute(
                    select(AuditLogEntry)
                    .where(*conditions)
                    .order_by(AuditLogEntry.seq.desc())
                    .limit(filters.limit)
                    .offset(filters.offset)
                )
                .scalars()
                .all()
            )
        return list(entries), total

    def export_csv(self, filters: AuditFilters) -> str:
        entries, _ = self.list_entries(filters)
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(CSV_COLUMNS)
        for entry in entries:
            row = []
            for column in CSV_COLUMNS:
                value = getattr(entry, column)
                if column == "created_at":
                    value = format_timestamp(value)
                row.append(_sanitize_csv_cell(value))
            writer.writerow(row)
        return buf.getvalue()


audit_writer = AuditChainWriter()
