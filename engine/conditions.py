"""Condition evaluation: compare one event field value against a condition."""
import logging
import math
import re
from functools import lru_cache

from models.enums import ConditionOperator
from models.rules import BoolValue, ListValue, NumberValue, StringValue, condition_value

logger = logging.getLogger("opsrules.engine.conditions")

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def to_string(value):
    """String form used by contains/regex/string equality."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_string(v) for v in value)
    return str(value)


def to_number(value):
    """Numeric parse; anything unparseable becomes NaN."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def to_bool(value):
    """Boolean coercion; returns None when the value has no boolean reading."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


@lru_cache(maxsize=256)
def _compile(pattern):
    return re.compile(pattern)


def _equals(actual, expected):
    if isinstance(expected, StringValue):
        return to_string(actual) == expected.value
    if isinstance(expected, NumberValue):
        number = to_number(actual)
        return not math.isnan(number) and number == expected.value
    if isinstance(expected, BoolValue):
        coerced = to_bool(actual)
        return coerced is not None and coerced == expected.value
    if isinstance(expected, ListValue):
        if not isinstance(actual, (list, tuple)) or len(actual) != len(expected.items):
            return False
        return all(_equals(a, e) for a, e in zip(actual, expected.items))
    return False


def _compare(actual, expected, op):
    left = to_number(actual)
    right = to_number(expected.raw) if not isinstance(expected, ListValue) else math.nan
    if math.isnan(left) or math.isnan(right):
        return False
    return op(left, right)


def _regex(actual, expected):
    try:
        return _compile(to_string(expected.raw)).search(to_string(actual)) is not None
    except re.error as e:
        logger.debug(f"Invalid regex {expected.raw!r}: {e}")
        return False


def _in(actual, expected):
    if not isinstance(expected, ListValue):
        return False
    return any(_equals(actual, item) for item in expected.items)


_OPERATORS = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.CONTAINS: lambda a, e: to_string(e.raw).lower() in to_string(a).lower(),
    ConditionOperator.GREATER_THAN: lambda a, e: _compare(a, e, lambda x, y: x > y),
    ConditionOperator.LESS_THAN: lambda a, e: _compare(a, e, lambda x, y: x < y),
    ConditionOperator.REGEX: _regex,
    ConditionOperator.IN: _in,
}


def evaluate(actual_value, operator, expected_value) -> bool:
    """Evaluate ``actual_value <operator> expected_value``.

    Never raises: unknown operators, coercion failures and bad patterns all
    resolve to False so one malformed condition cannot abort a rule.
    """
    try:
        op = operator if isinstance(operator, ConditionOperator) else ConditionOperator(operator)
        return bool(_OPERATORS[op](actual_value, condition_value(expected_value)))
    except Exception as e:
        logger.debug(f"Condition evaluation failed ({operator}): {e}")
        return False


class ConditionEvaluator:
    """Evaluates RuleCondition objects against events."""

    def evaluate(self, actual_value, operator, expected_value) -> bool:
        return evaluate(actual_value, operator, expected_value)

    def evaluate_condition(self, condition, event):
        """Returns (passed, actual_value) for one condition on one event."""
        try:
            actual = event.get_field(condition.field)
        except Exception as e:
            logger.debug(f"Field lookup failed for {condition.field}: {e}")
            return False, None
        return evaluate(actual, condition.operator, condition.value), actual
