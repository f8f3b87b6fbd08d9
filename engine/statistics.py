"""Per-rule statistics accumulator.

Lock discipline: each rule has its own lock and every mutation of that rule's
RuleStatistics happens while holding it. ``_registry_lock`` only guards the
creation of accumulators and locks, never a statistics update. Readers get
copies, never the live accumulator.
"""
import logging
import threading
from dataclasses import replace
from typing import Dict, List, Optional

from models.rules import RuleStatistics, utc_now

logger = logging.getLogger("opsrules.engine.statistics")

IMPACT_WEIGHTS = {"execution": 0.4, "cpu": 0.3, "memory": 0.3}


class StatisticsAggregator:
    def __init__(self, config=None):
        cfg = (config or {}).get("statistics", {})
        self.execution_budget_ms = float(cfg.get("execution_budget_ms", 100.0))
        self.memory_budget_bytes = float(cfg.get("memory_budget_bytes", 10 * 1024 * 1024))
        self._stats: Dict[str, RuleStatistics] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._dirty = set()
        self._registry_lock = threading.Lock()

    def _entry(self, rule_id):
        with self._registry_lock:
            if rule_id not in self._stats:
                self._stats[rule_id] = RuleStatistics()
                self._locks[rule_id] = threading.Lock()
            return self._stats[rule_id], self._locks[rule_id]

    def register(self, rule_id, statistics: Optional[RuleStatistics] = None):
        """Create (or seed from storage) the accumulator for a rule."""
        with self._registry_lock:
            self._stats[rule_id] = replace(statistics) if statistics else RuleStatistics()
            self._locks.setdefault(rule_id, threading.Lock())

    def get(self, rule_id) -> RuleStatistics:
        stats, lock = self._entry(rule_id)
        with lock:
            return replace(stats)

    def all(self) -> Dict[str, RuleStatistics]:
        with self._registry_lock:
            ids = list(self._stats)
        return {rule_id: self.get(rule_id) for rule_id in ids}

    # --- updates ---

    def record_evaluation(self, rule_id, matched, execution_time_ms, alerts_created=0,
                          faulted=False, action_failures=0) -> RuleStatistics:
        """Fold one evaluation of one rule into its statistics."""
        stats, lock = self._entry(rule_id)
        with lock:
            stats.evaluation_count += 1
            if matched:
                stats.times_triggered += 1
                stats.last_triggered = utc_now()
                stats.alerts_created += alerts_created
            stats.action_failures += action_failures
            if faulted or action_failures:
                stats.failed_evaluations += 1
            else:
                stats.successful_evaluations += 1
            stats.success_rate = stats.successful_evaluations / stats.evaluation_count * 100
            # incremental mean: avg' = avg + (sample - avg) / n
            stats.average_execution_time += (
                (execution_time_ms - stats.average_execution_time) / stats.evaluation_count
            )
            stats.performance_impact_score = self._impact_score(stats)
            self._dirty.add(rule_id)
            return replace(stats)

    def record_feedback(self, rule_id, is_false_positive) -> RuleStatistics:
        """Record a reviewer's verdict on one of the rule's triggers."""
        stats, lock = self._entry(rule_id)
        with lock:
            if is_false_positive:
                stats.false_positives += 1
            else:
                stats.true_positives += 1
            reviewed = stats.false_positives + stats.true_positives
            stats.false_positive_rate = stats.false_positives / reviewed * 100
            self._dirty.add(rule_id)
            return replace(stats)

    def update_resource_usage(self, rule_id, cpu_usage, memory_usage) -> RuleStatistics:
        """Store externally measured CPU (%) and memory (bytes) for a rule."""
        stats, lock = self._entry(rule_id)
        with lock:
            stats.cpu_usage = max(float(cpu_usage), 0.0)
            stats.memory_usage = max(float(memory_usage), 0.0)
            stats.performance_impact_score = self._impact_score(stats)
            self._dirty.add(rule_id)
            return replace(stats)

    def _impact_score(self, stats):
        execution = min(stats.average_execution_time / self.execution_budget_ms, 1.0)
        cpu = min(stats.cpu_usage / 100.0, 1.0)
        memory = min(stats.memory_usage / self.memory_budget_bytes, 1.0)
        load = (IMPACT_WEIGHTS["execution"] * execution
                + IMPACT_WEIGHTS["cpu"] * cpu
                + IMPACT_WEIGHTS["memory"] * memory)
        return round(1 + 9 * load, 1)

    def reset(self, rule_id):
        self.register(rule_id)
        with self._registry_lock:
            self._dirty.add(rule_id)

    # --- persistence ---

    def load(self, db):
        for rule_id, stats in db.get_all_statistics().items():
            self.register(rule_id, stats)

    def flush(self, db) -> int:
        """Persist statistics of rules updated since the last flush."""
        with self._registry_lock:
            dirty, self._dirty = self._dirty, set()
        for rule_id in dirty:
            db.save_statistics(rule_id, self.get(rule_id))
        if dirty:
            logger.debug(f"Flushed statistics for {len(dirty)} rule(s)")
        return len(dirty)

    # --- analytics ---

    def summary(self, rules, top=5) -> dict:
        """Dashboard roll-up across the given rules."""
        rows = [(rule, self.get(rule.id)) for rule in rules]
        executions = sum(s.evaluation_count for _, s in rows)
        weighted_time = sum(s.average_execution_time * s.evaluation_count for _, s in rows)
        top_rules: List[dict] = [
            {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "times_triggered": s.times_triggered,
                "success_rate": round(s.success_rate, 2),
            }
            for rule, s in sorted(rows, key=lambda r: (-r[1].times_triggered, -r[1].success_rate))[:top]
        ]
        return {
            "total_rules": len(rows),
            "active_rules": sum(1 for rule, _ in rows if rule.is_active),
            "total_executions": executions,
            "average_execution_time": round(weighted_time / executions, 4) if executions else 0.0,
            "success_rate": round(sum(s.success_rate for _, s in rows) / len(rows), 2) if rows else 100.0,
            "total_triggers": sum(s.times_triggered for _, s in rows),
            "top_performing_rules": top_rules,
        }
