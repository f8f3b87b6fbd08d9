"""Evaluation scheduler: run every active rule against each incoming event."""
import logging
import threading
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engine.abtest import Routing
from engine.dispatcher import DispatchResult
from engine.errors import AuditWriteError
from engine.matcher import RuleMatcher
from models.enums import AuditAction
from models.rules import format_timestamp, utc_now

logger = logging.getLogger("opsrules.engine.scheduler")


@dataclass
class RuleEvaluationResult:
    rule_id: str
    rule_name: str
    priority: int
    matched: bool = False
    condition_results: List[Any] = field(default_factory=list)
    action_outcomes: List[Any] = field(default_factory=list)
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    ab_test_id: Optional[str] = None
    variant_id: Optional[str] = None
    ab_fallback_reason: Optional[str] = None
    audit_error: Optional[str] = None

    @property
    def executed_action_types(self) -> List[str]:
        return [o.action_type.value for o in self.action_outcomes if o.succeeded]

    @property
    def faulted(self):
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "priority": self.priority,
            "matched": self.matched,
            "condition_results": [c.to_dict() for c in self.condition_results],
            "actions": [o.to_dict() for o in self.action_outcomes],
            "executed_action_types": self.executed_action_types,
            "execution_time_ms": round(self.execution_time_ms, 3),
            "error": self.error,
            "ab_test_id": self.ab_test_id,
            "variant_id": self.variant_id,
            "ab_fallback_reason": self.ab_fallback_reason,
            "audit_error": self.audit_error,
        }


@dataclass
class EvaluationReport:
    event_id: str
    results: List[RuleEvaluationResult] = field(default_factory=list)
    started_at: Any = field(default_factory=utc_now)
    duration_ms: float = 0.0

    @property
    def matched_rules(self) -> List[RuleEvaluationResult]:
        return [r for r in self.results if r.matched]

    @property
    def errors(self) -> List[RuleEvaluationResult]:
        return [r for r in self.results if r.faulted]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "started_at": format_timestamp(self.started_at),
            "duration_ms": round(self.duration_ms, 3),
            "rules_evaluated": len(self.results),
            "rules_matched": len(self.matched_rules),
            "results": [r.to_dict() for r in self.results],
        }


class EvaluationScheduler:
    """Evaluate-all, act-on-all-matches scheduler.

    Each event is evaluated against one snapshot of the active rules. Rules
    run in parallel on a bounded pool and results are merged back in
    priority order. A fault in one rule is confined to that rule's result.
    """

    def __init__(self, rules_manager, statistics, audit, dispatcher, matcher=None,
                 ab_engine=None, max_workers=4, audit_evaluations=True):
        self.rules_manager = rules_manager
        self.statistics = statistics
        self.audit = audit
        self.dispatcher = dispatcher
        self.matcher = matcher or RuleMatcher()
        self.ab_engine = ab_engine
        self.audit_evaluations = audit_evaluations
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rule-eval")
        self._ingest = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ingest")
        self._pending = set()
        self._pending_lock = threading.Lock()
        self._cancelled = threading.Event()

    # --- public API ---

    def process(self, event) -> EvaluationReport:
        """Evaluate all active rules against one event."""
        report = EvaluationReport(event_id=event.id)
        start = time.perf_counter()
        rules = self.rules_manager.snapshot()
        futures = [self._pool.submit(self._evaluate_rule, rule, event) for rule in rules]
        for rule, future in zip(rules, futures):
            try:
                report.results.append(future.result())
            except Exception as e:
                # _evaluate_rule contains its own faults; this covers pool-level failures
                logger.error(f"Evaluation of rule {rule.id} could not run: {e}")
                report.results.append(RuleEvaluationResult(rule.id, rule.name, rule.priority, error=str(e)))
        report.duration_ms = (time.perf_counter() - start) * 1000
        if report.matched_rules:
            logger.info(f"Event {event.id}: {len(report.matched_rules)}/{len(rules)} rule(s) matched")
        return report

    def process_batch(self, events) -> List[EvaluationReport]:
        """Process events in order; stops early once cancel() is called."""
        reports = []
        for event in events:
            if self._cancelled.is_set():
                logger.info(f"Batch cancelled after {len(reports)} event(s)")
                break
            reports.append(self.process(event))
        return reports

    def submit(self, event):
        """Queue an event for processing and return a Future for its report."""
        future = self._ingest.submit(self._process_queued, event)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def cancel(self):
        """Stop queued work. Evaluations already committed stay committed."""
        self._cancelled.set()
        with self._pending_lock:
            pending = list(self._pending)
        cancelled = sum(1 for f in pending if f.cancel())
        logger.info(f"Cancelled {cancelled} queued event(s)")
        return cancelled

    def resume(self):
        self._cancelled.clear()

    def test_rule(self, rule, event) -> Dict[str, Any]:
        """Dry run: match only, no statistics, audit entries or effects."""
        start = time.perf_counter()
        match = self.matcher.matches(rule, event)
        return {
            "rule_id": rule.id,
            "passed": match.matched,
            "condition_results": [c.to_dict() for c in match.condition_results],
            "actions_executed": [a.type.value for a in rule.actions] if match.matched else [],
            "execution_time_ms": round((time.perf_counter() - start) * 1000, 3),
        }

    def shutdown(self, wait=True):
        self._ingest.shutdown(wait=wait)
        self._pool.shutdown(wait=wait)
        self.dispatcher.shutdown(wait=False)

    # --- internals ---

    def _forget(self, future):
        with self._pending_lock:
            self._pending.discard(future)

    def _process_queued(self, event):
        if self._cancelled.is_set():
            raise CancelledError()
        return self.process(event)

    def _evaluate_rule(self, rule, event) -> RuleEvaluationResult:
        result = RuleEvaluationResult(rule_id=rule.id, rule_name=rule.name, priority=rule.priority)
        routing = Routing(rule=rule)
        dispatch = DispatchResult()
        start = time.perf_counter()
        try:
            if self.ab_engine is not None:
                routing = self.ab_engine.select(rule, event)
                result.ab_test_id = routing.test_id
                result.variant_id = routing.variant_id
                result.ab_fallback_reason = routing.fallback_reason
            match = self.matcher.matches(routing.rule, event)
            result.matched = match.matched
            result.condition_results = match.condition_results
            if match.matched:
                dispatch = self.dispatcher.execute(routing.rule.actions, event, routing.rule)
                result.action_outcomes = dispatch.outcomes
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.exception(f"Rule {rule.id} failed on event {event.id}")
        result.execution_time_ms = (time.perf_counter() - start) * 1000

        self.statistics.record_evaluation(
            rule.id,
            matched=result.matched,
            execution_time_ms=result.execution_time_ms,
            alerts_created=dispatch.alerts_created,
            faulted=result.faulted,
            action_failures=len(dispatch.failures),
        )
        if routing.routed:
            self.ab_engine.record_variant_evaluation(
                routing.test_id, routing.variant_id, result.matched, result.execution_time_ms)

        if self.audit_evaluations:
            self._audit(rule, event, result, dispatch)
        return result

    def _audit(self, rule, event, result, dispatch):
        metadata = {
            "event_id": event.id,
            "matched": result.matched,
            "execution_time_ms": round(result.execution_time_ms, 3),
        }
        if result.variant_id:
            metadata.update(ab_test_id=result.ab_test_id, variant_id=result.variant_id)
        if result.error:
            metadata["error"] = result.error
        entries = [(AuditAction.EVALUATED, {"metadata": metadata})]
        if result.matched:
            entries.append((AuditAction.TRIGGERED, {
                "metadata": {
                    "event_id": event.id,
                    "executed_actions": result.executed_action_types,
                    "failed_actions": [o.action_type.value for o in dispatch.failures],
                },
                "impacted_alerts": dispatch.alert_ids,
            }))
        errors = []
        # each entry is queued even if an earlier write failed
        for action, kwargs in entries:
            try:
                self.audit.record(rule.id, action, "system", **kwargs)
            except AuditWriteError as e:
                errors.append(str(e))
                logger.error(f"Audit write failed for rule {rule.id} ({action.value}) on event {event.id}: {e}")
        if errors:
            result.audit_error = "; ".join(errors)
