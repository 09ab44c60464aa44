"""Audit chain: linkage, tamper detection, serialized appends, best-effort failures."""

import csv
import io
import threading

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from app.database import session_scope
from app.models.schema.audit import AuditLogEntry, ChainHead
from app.services.audit import (
    CHAIN_HEAD_ID,
    GENESIS_HASH,
    ActorRef,
    AuditFilters,
    RequestContext,
    canonical_bytes,
    compute_chain_hash,
    entry_fields,
)


def _entries():
    with session_scope() as session:
        return session.execute(select(AuditLogEntry).order_by(AuditLogEntry.seq)).scalars().all()


def _append_many(audit, count):
    hashes = []
    for index in range(count):
        hashes.append(
            audit.append(
                "Auth",
                "USER_LOGIN",
                actor=ActorRef(id=f"user-{index}", email=f"u{index}@x.com", role="User"),
                target_type="user",
                target_id=f"user-{index}",
                details={"attempt": index},
                context=RequestContext(ip_address="10.0.0.1", user_agent="pytest"),
            )
        )
    return hashes


def test_entries_link_to_predecessor(audit):
    hashes = _append_many(audit, 4)
    entries = _entries()

    assert [entry.chain_hash for entry in entries] == hashes
    assert entries[0].prev_hash == GENESIS_HASH
    for previous, current in zip(entries, entries[1:]):
        assert current.prev_hash == previous.chain_hash


def test_stored_hash_recomputes_exactly(audit):
    _append_many(audit, 3)
    for entry in _entries():
        recomputed = compute_chain_hash(canonical_bytes(entry_fields(entry)), entry.prev_hash)
        assert recomputed == entry.chain_hash


def test_chain_head_tracks_latest_entry(audit):
    hashes = _append_many(audit, 3)
    with session_scope() as session:
        head = session.get(ChainHead, CHAIN_HEAD_ID)
    assert head.latest_hash == hashes[-1]
    assert head.entry_count == 3


def test_verify_chain_accepts_untouched_log(audit):
    _append_many(audit, 5)
    report = audit.verify_chain()
    assert report.valid
    assert report.checked == 5
    assert report.head_matches
    assert report.broken_entries == []


def test_empty_log_verifies(audit):
    report = audit.verify_chain()
    assert report.valid
    assert report.checked == 0


def test_mutating_one_entry_breaks_it_and_every_later_entry(audit):
    _append_many(audit, 5)
    entries = _entries()
    with session_scope() as session:
        session.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.seq == entries[2].seq)
            .values(actor_email="mallory@x.com")
        )

    report = audit.verify_chain()
    assert not report.valid
    assert report.first_broken == entries[2].id
    assert report.broken_entries == [entry.id for entry in entries[2:]]


def test_deleting_last_entry_is_detected_by_head(audit):
    _append_many(audit, 3)
    last = _entries()[-1]
    with session_scope() as session:
        session.delete(session.get(AuditLogEntry, last.seq))

    report = audit.verify_chain()
    assert report.broken_entries == []
    assert not report.head_matches
    assert not report.valid


def test_canonical_bytes_encode_missing_fields_as_null():
    encoded = canonical_bytes({"module": "Auth", "action": "X"}).decode()
    assert '"actor_id":null' in encoded
    assert '"details":null' in encoded
    assert encoded.index('"action"') < encoded.index('"module"')
    assert " " not in encoded


def test_concurrent_appends_never_fork(audit):
    threads = [
        threading.Thread(target=_append_many, args=(audit, 5)) for _ in range(6)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = _entries()
    assert len(entries) == 30
    prev_hashes = [entry.prev_hash for entry in entries]
    assert len(set(prev_hashes)) == len(prev_hashes)
    assert audit.verify_chain().valid


def test_storage_failure_is_logged_not_raised(audit, monkeypatch, caplog):
    def broken(_fields):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(audit, "_append_once", broken)
    assert audit.append("Auth", "USER_LOGIN") is None
    assert "Failed to append audit entry Auth/USER_LOGIN" in caplog.text


def test_list_entries_filters_newest_first(audit):
    audit.append("Auth", "USER_LOGIN", actor=ActorRef(email="ann@x.com"))
    audit.append("Auth", "USER_LOGIN_FAILED", success=False)
    audit.append("Users", "USER_CREATED", actor=ActorRef(email="ann@x.com"))

    entries, total = audit.list_entries(AuditFilters(actor_email="ANN@x.com"))
    assert total == 2
    assert [entry.action for entry in entries] == ["USER_CREATED", "USER_LOGIN"]

    failed, total = audit.list_entries(AuditFilters(success=False))
    assert total == 1
    assert failed[0].action == "USER_LOGIN_FAILED"


def test_export_neutralizes_formula_cells(audit):
    audit.append("Auth", "OTP_ISSUED", target_summary="=HYPERLINK(\"http://evil\")")

    rows = list(csv.reader(io.StringIO(audit.export_csv(AuditFilters()))))
    header, row = rows[0], rows[1]
    assert header[:4] == ["id", "created_at", "module", "action"]
    assert row[header.index("target_summary")].startswith("'=")
