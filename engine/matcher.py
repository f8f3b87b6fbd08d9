"""Rule matching: fold a rule's condition chain into one verdict."""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from engine.conditions import ConditionEvaluator
from models.enums import LogicalOperator


@dataclass
class ConditionResult:
    condition_id: str
    condition: str
    passed: bool
    actual_value: Any
    expected_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition_id": self.condition_id,
            "condition": self.condition,
            "passed": self.passed,
            "actual_value": self.actual_value,
            "expected_value": self.expected_value,
        }


@dataclass
class MatchResult:
    matched: bool
    condition_results: List[ConditionResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "condition_results": [r.to_dict() for r in self.condition_results],
        }


class RuleMatcher:
    def __init__(self, evaluator=None):
        self.evaluator = evaluator or ConditionEvaluator()

    def matches(self, rule, event) -> MatchResult:
        """Evaluate every condition left to right and combine them.

        The chain is strictly left-associative: ``[A AND B OR C]`` is
        ``((A AND B) OR C)``. Each condition's logical operator joins it with
        the next one, so the last condition's operator is ignored. All
        conditions are evaluated even when the outcome is already decided,
        so the per-condition results are complete. No conditions means a match.
        """
        results = []
        for condition in rule.conditions:
            passed, actual = self.evaluator.evaluate_condition(condition, event)
            results.append(ConditionResult(
                condition_id=condition.id,
                condition=condition.describe(),
                passed=passed,
                actual_value=actual,
                expected_value=condition.value.raw,
            ))

        if not results:
            return MatchResult(matched=True, condition_results=[])

        verdict = results[0].passed
        for previous, current in zip(rule.conditions, results[1:]):
            if previous.logical_operator == LogicalOperator.OR:
                verdict = verdict or current.passed
            else:
                verdict = verdict and current.passed
        return MatchResult(matched=verdict, condition_results=results)
