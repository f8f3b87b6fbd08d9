"""Tests for the append-only audit log."""
import pytest
from unittest.mock import MagicMock

from engine.audit import AuditLog
from engine.errors import AuditWriteError
from models.audit import RuleChangeLog
from models.enums import AuditAction


# ── In-memory ───────────────────────────────────────────

def test_sequence_increases_monotonically(audit_log):
    entries = [audit_log.record("rule-1", "evaluated") for _ in range(5)]
    assert [e.sequence for e in entries] == [1, 2, 3, 4, 5]


def test_entries_most_recent_first(audit_log):
    audit_log.record("rule-1", AuditAction.CREATED, user_id="alice")
    audit_log.record("rule-1", AuditAction.MODIFIED, user_id="bob")
    audit_log.record("rule-2", AuditAction.CREATED)

    entries = audit_log.entries(rule_id="rule-1")
    assert [e.action for e in entries] == [AuditAction.MODIFIED, AuditAction.CREATED]
    assert [e.user_id for e in entries] == ["bob", "alice"]


def test_entries_filter_by_action_and_limit(audit_log):
    for _ in range(3):
        audit_log.record("rule-1", "evaluated")
    audit_log.record("rule-1", "triggered")

    assert len(audit_log.entries(action="evaluated")) == 3
    assert len(audit_log.entries(action=AuditAction.TRIGGERED)) == 1
    assert len(audit_log.entries(limit=2)) == 2


def test_changes_accept_dict(audit_log):
    entry = audit_log.record("rule-1", "modified",
                             changes={"field": "priority", "old_value": 1, "new_value": 5})
    assert entry.changes == RuleChangeLog(field="priority", old_value=1, new_value=5)
    assert entry.to_dict()["changes"]["new_value"] == 5


def test_unknown_action_rejected(audit_log):
    with pytest.raises(ValueError):
        audit_log.record("rule-1", "renamed")


def test_entries_are_immutable(audit_log):
    entry = audit_log.record("rule-1", "created")
    with pytest.raises(Exception):
        entry.user_id = "mallory"


# ── Persistent store ────────────────────────────────────

def test_entries_persist_to_database(temp_db):
    audit = AuditLog(store=temp_db)
    audit.record("rule-1", "created", user_id="alice", metadata={"name": "Rule"})
    audit.record("rule-1", "triggered", impacted_alerts=["alert-1"])

    stored = temp_db.get_audit_entries(rule_id="rule-1")
    assert [e.action for e in stored] == [AuditAction.TRIGGERED, AuditAction.CREATED]
    assert stored[0].impacted_alerts == ["alert-1"]
    assert stored[1].metadata == {"name": "Rule"}


def test_sequence_continues_after_reopen(temp_db):
    AuditLog(store=temp_db).record("rule-1", "created")
    AuditLog(store=temp_db).record("rule-1", "created")
    reopened = AuditLog(store=temp_db)
    entry = reopened.record("rule-1", "modified")
    assert entry.sequence == 3


def test_batched_writes(temp_db):
    audit = AuditLog(store=temp_db, batch_size=3)
    audit.record("rule-1", "evaluated")
    audit.record("rule-1", "evaluated")
    assert audit.pending_count == 2
    assert temp_db.get_audit_entries() == []
    # pending entries are still visible to readers
    assert len(audit.entries(rule_id="rule-1")) == 2

    audit.record("rule-1", "evaluated")
    assert audit.pending_count == 0
    assert len(temp_db.get_audit_entries()) == 3


def test_flush_writes_partial_batch(temp_db):
    audit = AuditLog(store=temp_db, batch_size=10)
    audit.record("rule-1", "evaluated")
    assert audit.flush() == 1
    assert audit.flush() == 0
    assert len(temp_db.get_audit_entries()) == 1


def test_failed_write_raises_and_keeps_entries_pending():
    store = MagicMock()
    store.max_audit_sequence.return_value = 0
    store.get_audit_entries.return_value = []
    store.append_audit_entries.side_effect = OSError("disk full")
    audit = AuditLog(store=store)

    with pytest.raises(AuditWriteError) as exc:
        audit.record("rule-1", "created")
    assert len(exc.value.entries) == 1
    assert audit.pending_count == 1

    store.append_audit_entries.side_effect = None
    assert audit.flush() == 1
    assert audit.pending_count == 0
