"""Tests for background housekeeping jobs."""
import random
import pytest
from unittest.mock import MagicMock

from engine.audit import AuditLog
from engine.errors import AuditWriteError
from engine.jobs import EngineJobs
from config import load_config
from engine.builder import build_engine
from engine.statistics import StatisticsAggregator
from models.enums import ABTestStatus


def test_flush_job_writes_audit_and_statistics(temp_db):
    audit = AuditLog(store=temp_db, batch_size=10)
    stats = StatisticsAggregator()
    jobs = EngineJobs(audit, stats, db=temp_db)

    audit.record("rule-1", "evaluated")
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=3)
    assert jobs.flush_job() == 1
    assert len(temp_db.get_audit_entries()) == 1
    assert temp_db.get_all_statistics()["rule-1"].times_triggered == 1


def test_flush_job_survives_audit_failures():
    audit = MagicMock()
    audit.flush.side_effect = AuditWriteError("disk full")
    audit.pending_count = 3
    jobs = EngineJobs(audit, StatisticsAggregator())

    for _ in range(5):
        assert jobs.flush_job() == 0
    assert jobs._consecutive_failures == 5

    audit.flush.side_effect = None
    audit.flush.return_value = 3
    assert jobs.flush_job() == 3
    assert jobs._consecutive_failures == 0


def test_flush_job_persists_ab_assignments(temp_db, make_rule, make_event):
    components = build_engine(load_config(), db=temp_db, executor=MagicMock(), rng=random.Random(5))
    rule = components["rules"].create_rule(make_rule(name="Routed"))
    ab = components["ab_engine"]
    test = ab.create_test("Persist", rule.id, minimum_sample_size=1000)
    ab.start_test(test.id)
    event = make_event()
    components["scheduler"].process(event)
    components["jobs"].flush_job()
    components["scheduler"].shutdown()

    assert list(temp_db.get_ab_assignments(test.id)) == [event.id]
    _, metrics = temp_db.get_ab_tests_with_metrics()[0]
    assert sum(m.evaluation_count for m in metrics.values()) == 1


def test_recalculate_job_only_touches_running_tests():
    running, draft = MagicMock(), MagicMock()
    ab_engine = MagicMock()
    running.status = ABTestStatus.RUNNING
    running.id = "abtest_running"
    draft.status = ABTestStatus.DRAFT
    ab_engine.get_tests.return_value = [running, draft]
    jobs = EngineJobs(MagicMock(), StatisticsAggregator(), ab_engine=ab_engine)

    assert jobs.recalculate_job() == 1
    ab_engine.calculate_results.assert_called_once_with("abtest_running")


def test_start_and_stop(temp_db):
    audit = AuditLog(store=temp_db, batch_size=10)
    jobs = EngineJobs(audit, StatisticsAggregator(), db=temp_db, config={"jobs": {"flush_interval_seconds": 60}})
    jobs.start()
    audit.record("rule-1", "evaluated")
    jobs.stop()
    assert audit.pending_count == 0
    assert len(temp_db.get_audit_entries()) == 1


def test_statistics_flush_even_when_audit_store_fails(temp_db):
    store = MagicMock()
    store.max_audit_sequence.return_value = 0
    store.append_audit_entries.side_effect = OSError("disk full")
    audit = AuditLog(store=store, batch_size=10)
    stats = StatisticsAggregator()
    ab_engine = MagicMock()
    jobs = EngineJobs(audit, stats, ab_engine=ab_engine, db=temp_db)

    audit.record("rule-1", "evaluated")
    stats.record_evaluation("rule-1", matched=False, execution_time_ms=2)
    assert jobs.flush_job() == 0
    assert temp_db.get_all_statistics()["rule-1"].evaluation_count == 1
    ab_engine.flush.assert_called_once()
    assert audit.pending_count == 1
