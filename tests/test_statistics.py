"""Tests for the per-rule statistics aggregator."""
import random
import threading
import pytest

from engine.statistics import StatisticsAggregator
from models.rules import Rule, RuleStatistics


def test_new_rule_defaults(stats):
    s = stats.get("rule-1")
    assert s.evaluation_count == 0
    assert s.success_rate == 100.0
    assert s.performance_impact_score == 1.0
    assert s.last_triggered is None


def test_incremental_mean_matches_arithmetic_mean(stats):
    rng = random.Random(7)
    samples = [rng.uniform(0.1, 250.0) for _ in range(1000)]
    for t in samples:
        stats.record_evaluation("rule-1", matched=False, execution_time_ms=t)
    s = stats.get("rule-1")
    assert s.evaluation_count == len(samples)
    assert s.average_execution_time == pytest.approx(sum(samples) / len(samples), rel=1e-9)


def test_trigger_counters(stats):
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1, alerts_created=2)
    stats.record_evaluation("rule-1", matched=False, execution_time_ms=1)
    s = stats.get("rule-1")
    assert s.times_triggered == 1
    assert s.alerts_created == 2
    assert s.last_triggered is not None


def test_success_rate_counts_faults_and_action_failures(stats):
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1)
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1)
    stats.record_evaluation("rule-1", matched=False, execution_time_ms=1, faulted=True)
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1, action_failures=2)
    s = stats.get("rule-1")
    assert s.success_rate == 50.0
    assert s.failed_evaluations == 2
    assert s.action_failures == 2


def test_false_positive_rate(stats):
    for verdict in (True, False, False, False):
        stats.record_feedback("rule-1", is_false_positive=verdict)
    assert stats.get("rule-1").false_positive_rate == 25.0


def test_performance_impact_score_scale(stats):
    stats.record_evaluation("rule-1", matched=False, execution_time_ms=100)
    assert stats.get("rule-1").performance_impact_score == 4.6

    s = stats.update_resource_usage("rule-1", cpu_usage=100, memory_usage=50 * 1024 * 1024)
    assert s.performance_impact_score == 10.0
    assert 1.0 <= s.performance_impact_score <= 10.0


def test_budgets_come_from_config():
    stats = StatisticsAggregator({"statistics": {"execution_budget_ms": 10}})
    stats.record_evaluation("rule-1", matched=False, execution_time_ms=5)
    assert stats.get("rule-1").performance_impact_score == 2.8


def test_get_returns_copy(stats):
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1)
    copy = stats.get("rule-1")
    copy.times_triggered = 99
    assert stats.get("rule-1").times_triggered == 1


def test_concurrent_updates_are_not_lost(stats):
    def worker():
        for _ in range(250):
            stats.record_evaluation("rule-1", matched=True, execution_time_ms=2.0)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    s = stats.get("rule-1")
    assert s.evaluation_count == 2000
    assert s.times_triggered == 2000
    assert s.average_execution_time == pytest.approx(2.0)


def test_reset(stats):
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=1)
    stats.reset("rule-1")
    assert stats.get("rule-1") == RuleStatistics()


def test_flush_and_load_round_trip(temp_db, stats):
    stats.record_evaluation("rule-1", matched=True, execution_time_ms=12.5)
    stats.record_feedback("rule-1", is_false_positive=True)
    assert stats.flush(temp_db) == 1
    assert stats.flush(temp_db) == 0

    restored = StatisticsAggregator()
    restored.load(temp_db)
    s = restored.get("rule-1")
    assert s.evaluation_count == 1
    assert s.average_execution_time == pytest.approx(12.5)
    assert s.false_positives == 1


def test_summary_roll_up(stats):
    busy = Rule(name="Busy", priority=1)
    quiet = Rule(name="Quiet", is_active=False)
    for _ in range(3):
        stats.record_evaluation(busy.id, matched=True, execution_time_ms=10)
    stats.record_evaluation(quiet.id, matched=False, execution_time_ms=30, faulted=True)

    summary = stats.summary([busy, quiet])
    assert summary["total_rules"] == 2
    assert summary["active_rules"] == 1
    assert summary["total_executions"] == 4
    assert summary["average_execution_time"] == pytest.approx(15.0)
    assert summary["success_rate"] == 50.0
    assert summary["total_triggers"] == 3
    assert summary["top_performing_rules"][0]["rule_id"] == busy.id
