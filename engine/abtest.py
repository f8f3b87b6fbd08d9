"""A/B testing of rule variants: lifecycle, traffic routing, and result snapshots."""
import copy
import logging
import random
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from engine.errors import (
    ABTestNotFoundError, InvalidTransitionError, RoutingError, ValidationError,
)
from engine.significance import compare_proportions, proportion_interval
from models.abtest import ABTest, ABTestResult, ABTestVariant, VariantMetrics
from models.enums import ABTestStatus, AuditAction, VariantStatus
from models.rules import RuleAction, RuleCondition, utc_now

logger = logging.getLogger("opsrules.engine.abtest")

TEST_TRANSITIONS = {
    ABTestStatus.DRAFT: {ABTestStatus.RUNNING, ABTestStatus.CANCELLED},
    ABTestStatus.RUNNING: {ABTestStatus.COMPLETED, ABTestStatus.CANCELLED},
    ABTestStatus.COMPLETED: set(),
    ABTestStatus.CANCELLED: set(),
}

VARIANT_TRANSITIONS = {
    VariantStatus.DRAFT: {VariantStatus.RUNNING},
    VariantStatus.RUNNING: {VariantStatus.COMPLETED, VariantStatus.PAUSED},
    VariantStatus.COMPLETED: set(),
    VariantStatus.PAUSED: set(),
}

OVERRIDABLE_FIELDS = ("name", "description", "conditions", "actions", "priority", "tags")
TRAFFIC_TOLERANCE = 1e-6


@dataclass
class Routing:
    """Which rule to evaluate for a base rule, and why."""
    rule: object
    test_id: Optional[str] = None
    variant_id: Optional[str] = None
    fallback_reason: Optional[str] = None

    @property
    def routed(self):
        return self.variant_id is not None


def _transition(kind, table, current, target):
    if target not in table[current]:
        raise InvalidTransitionError(kind, current.value, target.value)
    return target


def apply_override(base_rule, variant):
    """The variant's effective rule: base rule with the variant configuration on top."""
    rule = copy.deepcopy(base_rule)
    config = variant.configuration or {}
    for key, value in config.items():
        if key not in OVERRIDABLE_FIELDS:
            continue
        if key == "conditions":
            value = [c if isinstance(c, RuleCondition) else RuleCondition.from_dict(c) for c in value]
        elif key == "actions":
            value = [a if isinstance(a, RuleAction) else RuleAction.from_dict(a) for a in value]
        elif key == "priority":
            value = int(value)
        setattr(rule, key, value)
    rule.id = variant.rule_id or base_rule.id
    return rule


class ABTestEngine:
    def __init__(self, rules_manager, audit, db=None, rng=None, config=None):
        cfg = (config or {}).get("abtest", {})
        self.rules_manager = rules_manager
        self.audit = audit
        self.db = db
        self.rng = rng or random.Random()
        self.confidence = float(cfg.get("confidence_level", 0.95))
        self.auto_calculate = bool(cfg.get("auto_calculate", True))
        self._tests: Dict[str, ABTest] = {}
        self._metrics: Dict[str, Dict[str, VariantMetrics]] = {}
        self._assignments: Dict[str, Dict[str, str]] = {}
        self._unsaved: Dict[str, Dict[str, str]] = {}
        self._dirty = set()
        self._lock = threading.RLock()
        self.fallback_count = 0
        rules_manager.add_in_use_check(self.tests_referencing)

    def load(self):
        if self.db is None:
            return
        with self._lock:
            for test, metrics in self.db.get_ab_tests_with_metrics():
                self._tests[test.id] = test
                self._metrics[test.id] = metrics
                self._assignments[test.id] = self.db.get_ab_assignments(test.id)
        logger.info(f"Loaded {len(self._tests)} A/B tests from store")

    def _persist(self, test):
        if self.db is not None:
            self.db.save_ab_test(test, self._metrics.get(test.id, {}))

    def flush(self) -> int:
        """Persist metrics and event assignments recorded since the last flush."""
        if self.db is None:
            return 0
        with self._lock:
            dirty, self._dirty = self._dirty, set()
            unsaved, self._unsaved = self._unsaved, {}
            tests = [self._tests[tid] for tid in dirty]
        for test in tests:
            self._persist(test)
        for test_id, assignments in unsaved.items():
            self.db.save_ab_assignments(test_id, assignments)
        return len(tests)

    # --- queries ---

    def get_test(self, test_id) -> ABTest:
        test = self._tests.get(test_id)
        if test is None:
            raise ABTestNotFoundError(test_id)
        return test

    def get_tests(self, rule_id=None) -> List[ABTest]:
        tests = sorted(self._tests.values(), key=lambda t: t.created_at)
        if rule_id:
            tests = [t for t in tests if t.base_rule_id == rule_id]
        return tests

    def get_results(self, test_id) -> List[ABTestResult]:
        return list(self.get_test(test_id).results)

    def get_metrics(self, test_id) -> Dict[str, VariantMetrics]:
        self.get_test(test_id)
        with self._lock:
            return {vid: copy.copy(m) for vid, m in self._metrics.get(test_id, {}).items()}

    def tests_referencing(self, rule_id) -> List[str]:
        """Draft or running tests that use the rule as base or variant."""
        with self._lock:
            return [
                t.id for t in self._tests.values()
                if t.status in (ABTestStatus.DRAFT, ABTestStatus.RUNNING)
                and (t.base_rule_id == rule_id or any(v.rule_id == rule_id for v in t.variants))
            ]

    def running_test_for(self, rule_id) -> Optional[ABTest]:
        for test in self._tests.values():
            if test.status == ABTestStatus.RUNNING and test.base_rule_id == rule_id:
                return test
        return None

    # --- lifecycle ---

    def create_test(self, name, base_rule_id, variants=None, hypothesis="", description="",
                    success_metric="true_positive_rate", minimum_sample_size=100, user_id="system") -> ABTest:
        base = self.rules_manager.require_rule(base_rule_id)
        if minimum_sample_size < 1:
            raise ValidationError("minimum_sample_size must be at least 1")
        if variants is None:
            variants = [
                ABTestVariant(name="Control (Current)", rule_id=base.id, is_control=True, traffic_percentage=50),
                ABTestVariant(name="Test Variant", rule_id=f"{base.id}-test", traffic_percentage=50),
            ]
        variants = [v if isinstance(v, ABTestVariant) else ABTestVariant.from_dict(v) for v in variants]
        for v in variants:
            if not v.rule_id:
                v.rule_id = base.id if v.is_control else f"{base.id}-{v.id}"
            if not 0 <= v.traffic_percentage <= 100:
                raise ValidationError(f"Variant {v.name}: traffic_percentage must be within 0-100")
        if sum(1 for v in variants if v.is_control) != 1:
            raise ValidationError("An A/B test needs exactly one control variant")

        test = ABTest(
            name=name,
            base_rule_id=base.id,
            variants=variants,
            hypothesis=hypothesis,
            description=description or f"A/B test for {base.name}",
            success_metric=success_metric,
            minimum_sample_size=int(minimum_sample_size),
            created_by=user_id,
        )
        with self._lock:
            self._tests[test.id] = test
            self._metrics[test.id] = {v.id: VariantMetrics(variant_id=v.id) for v in variants}
            self._assignments[test.id] = {}
        self._persist(test)
        logger.info(f"A/B test created: {test.id} on rule {base.id}")
        return test

    def check_routable(self, test):
        """Raise RoutingError unless the test can take traffic."""
        active = test.active_variants() if test.status == ABTestStatus.RUNNING else [
            v for v in test.variants if v.status != VariantStatus.PAUSED
        ]
        if not active:
            raise RoutingError(f"A/B test {test.id} has no active variants")
        if sum(1 for v in active if v.is_control) != 1:
            raise RoutingError(f"A/B test {test.id} has no active control variant")
        total = sum(v.traffic_percentage for v in active)
        if abs(total - 100) > TRAFFIC_TOLERANCE:
            raise RoutingError(f"A/B test {test.id} traffic sums to {total}, not 100")
        return active

    def start_test(self, test_id, user_id="system") -> ABTest:
        with self._lock:
            test = self.get_test(test_id)
            _transition("A/B test", TEST_TRANSITIONS, test.status, ABTestStatus.RUNNING)
            self.rules_manager.require_rule(test.base_rule_id)
            other = self.running_test_for(test.base_rule_id)
            if other is not None:
                raise ValidationError(f"Rule {test.base_rule_id} already has a running A/B test: {other.id}")
            try:
                self.check_routable(test)
            except RoutingError as e:
                raise ValidationError(str(e)) from e

            now = utc_now()
            test.status = ABTestStatus.RUNNING
            test.started_at = now
            for v in test.variants:
                v.status = _transition("variant", VARIANT_TRANSITIONS, v.status, VariantStatus.RUNNING)
                v.started_at = now
        self._persist(test)
        logger.info(f"A/B test started: {test.id}")
        self.audit.record(test.base_rule_id, AuditAction.AB_TEST_STARTED, user_id,
                          metadata={"test_id": test.id, "variants": [v.id for v in test.variants]})
        return test

    def pause_variant(self, test_id, variant_id, rebalance=False, user_id="system") -> ABTest:
        """Stop routing to one variant; optionally spread its traffic over the rest."""
        with self._lock:
            test = self.get_test(test_id)
            variant = test.get_variant(variant_id)
            if variant is None:
                raise ValidationError(f"Variant {variant_id} is not part of test {test_id}")
            variant.status = _transition("variant", VARIANT_TRANSITIONS, variant.status, VariantStatus.PAUSED)
            variant.ended_at = utc_now()
            if rebalance:
                remaining = test.active_variants()
                total = sum(v.traffic_percentage for v in remaining)
                if total > 0:
                    for v in remaining:
                        v.traffic_percentage = v.traffic_percentage / total * 100
        self._persist(test)
        logger.info(f"A/B test {test_id}: variant {variant_id} paused by {user_id}")
        return test

    def complete_test(self, test_id, user_id="system") -> ABTest:
        with self._lock:
            test = self.get_test(test_id)
            _transition("A/B test", TEST_TRANSITIONS, test.status, ABTestStatus.COMPLETED)
            test.status = ABTestStatus.COMPLETED
            test.ended_at = utc_now()
            for v in test.variants:
                if v.status == VariantStatus.RUNNING:
                    v.status = VariantStatus.COMPLETED
                    v.ended_at = test.ended_at
            final = self._calculate_locked(test)
        self._persist(test)
        logger.info(f"A/B test completed: {test.id} ({test.current_sample_size} samples)")
        self.audit.record(test.base_rule_id, AuditAction.AB_TEST_COMPLETED, user_id, metadata={
            "test_id": test.id,
            "sample_size": test.current_sample_size,
            "results": [r.to_dict() for r in final],
        })
        return test

    def cancel_test(self, test_id, user_id="system", reason=None) -> ABTest:
        """Stop the test immediately. Metrics already recorded are kept."""
        with self._lock:
            test = self.get_test(test_id)
            _transition("A/B test", TEST_TRANSITIONS, test.status, ABTestStatus.CANCELLED)
            test.status = ABTestStatus.CANCELLED
            test.ended_at = utc_now()
            for v in test.variants:
                if v.status == VariantStatus.RUNNING:
                    v.status = VariantStatus.PAUSED
                    v.ended_at = test.ended_at
        self._persist(test)
        logger.info(f"A/B test cancelled: {test.id} by {user_id}" + (f" ({reason})" if reason else ""))
        return test

    # --- routing ---

    def choose_variant(self, test, rng=None) -> ABTestVariant:
        """Weighted pick among active variants, proportional to traffic."""
        active = self.check_routable(test)
        point = (rng or self.rng).random() * 100
        cumulative = 0.0
        for v in active:
            cumulative += v.traffic_percentage
            if point < cumulative:
                return v
        return active[-1]

    def select(self, base_rule, event) -> Routing:
        """Pick the rule to evaluate for ``base_rule`` on this event.

        Without a running test the base rule is returned unchanged. If the
        running test cannot take traffic the base rule is evaluated instead
        and the reason is returned (and counted) rather than swallowed.
        """
        with self._lock:
            test = self.running_test_for(base_rule.id)
            if test is None:
                return Routing(rule=base_rule)
            try:
                variant = self.choose_variant(test)
            except RoutingError as e:
                self.fallback_count += 1
                logger.warning(f"A/B routing fallback for rule {base_rule.id}: {e}")
                return Routing(rule=base_rule, test_id=test.id, fallback_reason=str(e))
            test.current_sample_size += 1
            self._assignments[test.id][event.id] = variant.id
            self._unsaved.setdefault(test.id, {})[event.id] = variant.id
            self._dirty.add(test.id)
        return Routing(rule=apply_override(base_rule, variant), test_id=test.id, variant_id=variant.id)

    # --- metrics ---

    def record_variant_evaluation(self, test_id, variant_id, matched, execution_time_ms):
        with self._lock:
            test = self.get_test(test_id)
            metrics = self._metrics[test_id].setdefault(variant_id, VariantMetrics(variant_id=variant_id))
            metrics.evaluation_count += 1
            metrics.total_execution_time += execution_time_ms
            if matched:
                metrics.alerts_generated += 1
            self._dirty.add(test_id)
            evaluated = sum(m.evaluation_count for m in self._metrics[test_id].values())
            due = (self.auto_calculate and test.status == ABTestStatus.RUNNING
                   and evaluated % test.minimum_sample_size == 0)
        if due:
            self.calculate_results(test_id)

    def record_outcome(self, test_id, event_id, is_true_positive, satisfaction_score=None):
        """Attribute a reviewer verdict to whichever variant handled the event."""
        with self._lock:
            self.get_test(test_id)
            variant_id = self._assignments.get(test_id, {}).get(event_id)
            if variant_id is None:
                raise ValidationError(f"Event {event_id} was not routed by test {test_id}")
        self.record_variant_feedback(test_id, variant_id, is_true_positive, satisfaction_score)
        return variant_id

    def record_variant_feedback(self, test_id, variant_id, is_true_positive, satisfaction_score=None):
        with self._lock:
            self.get_test(test_id)
            metrics = self._metrics[test_id].setdefault(variant_id, VariantMetrics(variant_id=variant_id))
            if is_true_positive:
                metrics.true_positives += 1
            else:
                metrics.false_positives += 1
            if satisfaction_score is not None:
                metrics.satisfaction_scores.append(float(satisfaction_score))
            self._dirty.add(test_id)

    def calculate_results(self, test_id) -> List[ABTestResult]:
        """Append a fresh result snapshot for every variant."""
        with self._lock:
            test = self.get_test(test_id)
            results = self._calculate_locked(test)
        self._persist(test)
        return results

    def _calculate_locked(self, test) -> List[ABTestResult]:
        metrics = self._metrics.setdefault(test.id, {})
        control = test.control
        if control is None:
            raise ValidationError(f"A/B test {test.id} has no control variant")
        base = metrics.setdefault(control.id, VariantMetrics(variant_id=control.id))

        now = utc_now()
        results = []
        for variant in test.variants:
            m = metrics.setdefault(variant.id, VariantMetrics(variant_id=variant.id))
            if variant.is_control:
                p_value = 1.0
                lower, upper = proportion_interval(m.true_positives, m.alerts_generated, self.confidence)
            else:
                comparison = compare_proportions(
                    base.true_positives, base.alerts_generated,
                    m.true_positives, m.alerts_generated,
                    self.confidence,
                )
                p_value, lower, upper = comparison.p_value, comparison.lower, comparison.upper
            results.append(ABTestResult(
                test_id=test.id,
                variant_id=variant.id,
                alerts_generated=m.alerts_generated,
                false_positive_rate=m.false_positive_rate,
                true_positive_rate=m.true_positive_rate,
                avg_execution_time=m.avg_execution_time,
                user_satisfaction_score=m.user_satisfaction_score,
                statistical_significance=p_value,
                confidence_lower=lower,
                confidence_upper=upper,
                sample_size=m.evaluation_count,
                calculated_at=now,
            ))
        test.results.extend(results)
        if self.db is not None:
            self.db.append_ab_results(results)
        logger.debug(f"A/B test {test.id}: calculated {len(results)} result(s)")
        return results
