"""Tests for the database module."""
import pytest
from datetime import timedelta

from models.alerts import AlertRecord, AlertRuleLinkage
from models.audit import RuleAuditLog
from models.database import Database
from models.enums import AuditAction
from models.rules import Rule, RuleCondition, RuleStatistics, utc_now


def test_table_creation(temp_db):
    """Verify all tables exist after init."""
    tables = temp_db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()
    names = {t["name"] for t in tables}
    assert "rules" in names
    assert "rule_statistics" in names
    assert "audit_log" in names
    assert "ab_tests" in names
    assert "ab_results" in names
    assert "alerts" in names
    assert "alert_rule_links" in names


def test_empty_db(temp_db):
    assert temp_db.get_rules() == []
    assert temp_db.get_all_statistics() == {}
    assert temp_db.get_audit_entries() == []
    assert temp_db.max_audit_sequence() == 0
    assert temp_db.get_ab_tests_with_metrics() == []
    assert temp_db.get_recent_alerts() == []
    assert temp_db.get_alert_stats() == {}


def test_context_manager(tmp_path):
    path = tmp_path / "nested" / "rules.db"
    with Database(str(path)) as db:
        assert db.conn is not None
    assert db.conn is None
    assert path.exists()


# ── Rules ───────────────────────────────────────────────

def test_save_and_load_rule(temp_db):
    rule = Rule(
        name="CPU",
        conditions=[RuleCondition(field="metadata.cpuUsage", operator="greater_than", value=90)],
        priority=3,
        tags=["system"],
        sequence=1,
    )
    temp_db.save_rule(rule)
    loaded = temp_db.get_rules()[0]
    assert loaded.id == rule.id
    assert loaded.priority == 3
    assert loaded.conditions[0].id == rule.conditions[0].id
    assert loaded.conditions[0].value.raw == 90


def test_save_rule_upserts(temp_db):
    rule = Rule(name="v1", sequence=1)
    temp_db.save_rule(rule)
    rule.name = "v2"
    temp_db.save_rule(rule)
    assert [r.name for r in temp_db.get_rules()] == ["v2"]


def test_deleted_rules_hidden_by_default(temp_db):
    temp_db.save_rule(Rule(name="live", sequence=1))
    temp_db.save_rule(Rule(name="gone", sequence=2, is_deleted=True, is_active=False))
    assert [r.name for r in temp_db.get_rules()] == ["live"]
    assert [r.name for r in temp_db.get_rules(include_deleted=True)] == ["live", "gone"]


# ── Statistics ──────────────────────────────────────────

def test_statistics_round_trip(temp_db):
    stats = RuleStatistics(times_triggered=4, evaluation_count=10, average_execution_time=2.5,
                           last_triggered=utc_now())
    temp_db.save_statistics("rule-1", stats)
    loaded = temp_db.get_all_statistics()["rule-1"]
    assert loaded.times_triggered == 4
    assert loaded.average_execution_time == 2.5
    assert loaded.last_triggered is not None


# ── Audit ───────────────────────────────────────────────

def test_audit_entries_filtering(temp_db):
    now = utc_now()
    temp_db.append_audit_entries([
        RuleAuditLog(rule_id="rule-1", action=AuditAction.CREATED, user_id="a", timestamp=now, sequence=1),
        RuleAuditLog(rule_id="rule-1", action=AuditAction.MODIFIED, user_id="a",
                     timestamp=now + timedelta(seconds=1), sequence=2),
        RuleAuditLog(rule_id="rule-2", action=AuditAction.CREATED, user_id="b",
                     timestamp=now + timedelta(seconds=2), sequence=3),
    ])
    assert [e.sequence for e in temp_db.get_audit_entries()] == [3, 2, 1]
    assert [e.sequence for e in temp_db.get_audit_entries(rule_id="rule-1")] == [2, 1]
    assert [e.sequence for e in temp_db.get_audit_entries(action="created")] == [3, 1]
    assert len(temp_db.get_audit_entries(limit=1)) == 1
    assert temp_db.max_audit_sequence() == 3


def test_audit_batch_is_atomic(temp_db):
    entry = RuleAuditLog(rule_id="rule-1", action=AuditAction.CREATED, user_id="a", sequence=1)
    temp_db.append_audit_entries([entry])
    duplicate = RuleAuditLog(rule_id="rule-1", action=AuditAction.MODIFIED, user_id="a", sequence=2)
    with pytest.raises(Exception):
        # second row reuses an existing id
        temp_db.append_audit_entries([duplicate, entry])
    assert [e.sequence for e in temp_db.get_audit_entries()] == [1]


# ── Alerts ──────────────────────────────────────────────

def test_alerts_and_linkage(temp_db):
    alert = AlertRecord(rule_id="rule-1", rule_name="Disk", title="Disk full", severity="critical")
    temp_db.save_alert(alert)
    temp_db.save_alert(AlertRecord(rule_id="rule-2", title="Slow", severity="warning"))
    temp_db.save_alert_linkage(AlertRuleLinkage(alert_id=alert.id, rule_id="rule-1"))

    assert [a["id"] for a in temp_db.get_alerts_for_rule("rule-1")] == [alert.id]
    assert temp_db.get_alerts_for_rule("rule-2") == []
    assert len(temp_db.get_recent_alerts()) == 2
    assert temp_db.get_alert_stats() == {"critical": 1, "warning": 1}
