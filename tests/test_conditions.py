"""Tests for condition evaluation and value coercion."""
import math
import pytest

from engine.conditions import ConditionEvaluator, evaluate, to_bool, to_number, to_string
from models.events import Event
from models.rules import BoolValue, ListValue, NumberValue, RuleCondition, StringValue, condition_value


# ── Coercion ────────────────────────────────────────────

def test_to_string():
    assert to_string(None) == ""
    assert to_string(True) == "true"
    assert to_string(5.0) == "5"
    assert to_string(2.5) == "2.5"
    assert to_string(["a", 1]) == "a,1"


def test_to_number():
    assert to_number("42") == 42.0
    assert to_number(" 3.5 ") == 3.5
    assert to_number(True) == 1.0
    assert math.isnan(to_number("abc"))
    assert math.isnan(to_number(""))
    assert math.isnan(to_number(None))


def test_to_bool():
    assert to_bool("TRUE") is True
    assert to_bool("no") is False
    assert to_bool(0) is False
    assert to_bool("maybe") is None
    assert to_bool(None) is None


def test_condition_value_tags():
    assert condition_value(True) == BoolValue(True)
    assert condition_value(3) == NumberValue(3.0)
    assert condition_value("x") == StringValue("x")
    assert condition_value(["a", 2]) == ListValue((StringValue("a"), NumberValue(2.0)))
    assert condition_value(None) == StringValue("")


# ── Operators ───────────────────────────────────────────

@pytest.mark.parametrize("actual,operator,expected,result", [
    ("critical", "equals", "critical", True),
    ("Critical", "equals", "critical", False),
    ("5", "equals", 5, True),
    (5, "equals", "5", True),
    ("true", "equals", True, True),
    ("database-primary", "contains", "DATABASE", True),
    ("web-01", "contains", "database", False),
    ("95.5", "greater_than", 90, True),
    (80, "greater_than", "90", False),
    (10, "less_than", 20, True),
    ("ERR-1234", "regex", r"^ERR-\d+$", True),
    ("WARN-1", "regex", r"^ERR-\d+$", False),
    ("security", "in", ["security", "auth"], True),
    ("system", "in", ["security", "auth"], False),
    (3, "in", [1, 2, 3], True),
])
def test_operators(actual, operator, expected, result):
    assert evaluate(actual, operator, expected) is result


def test_greater_than_non_numeric_expected_is_false():
    assert evaluate(100, "greater_than", "abc") is False
    assert evaluate("abc", "less_than", 5) is False


def test_missing_field_numeric_comparison_is_false():
    assert evaluate(None, "greater_than", 0) is False
    assert evaluate(None, "less_than", 0) is False


def test_bad_regex_is_false_not_raised():
    assert evaluate("anything", "regex", "[unclosed") is False
    assert evaluate("anything", "regex", "(?P<") is False


def test_in_requires_list():
    assert evaluate("a", "in", "abc") is False


def test_unknown_operator_is_false():
    assert evaluate("a", "starts_with", "a") is False


# ── Conditions against events ───────────────────────────

def test_evaluate_condition_top_level_field():
    event = Event(severity="critical")
    cond = RuleCondition(field="severity", operator="equals", value="critical")
    passed, actual = ConditionEvaluator().evaluate_condition(cond, event)
    assert passed is True
    assert actual == "critical"


def test_evaluate_condition_dotted_metadata_path():
    event = Event(metadata={"cpuUsage": 97, "host": {"region": "eu-west-1"}})
    evaluator = ConditionEvaluator()
    cpu = RuleCondition(field="metadata.cpuUsage", operator="greater_than", value=90)
    region = RuleCondition(field="metadata.host.region", operator="contains", value="eu")
    assert evaluator.evaluate_condition(cpu, event) == (True, 97)
    assert evaluator.evaluate_condition(region, event)[0] is True


def test_evaluate_condition_bare_metadata_and_payload_keys():
    event = Event(metadata={"cpuUsage": 40}, payload={"status_code": 503})
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate_condition(
        RuleCondition(field="cpuUsage", operator="less_than", value=50), event)[0] is True
    assert evaluator.evaluate_condition(
        RuleCondition(field="status_code", operator="in", value=[500, 502, 503]), event)[0] is True


def test_missing_field_resolves_to_none():
    event = Event()
    cond = RuleCondition(field="executionTime", operator="greater_than", value="abc")
    assert ConditionEvaluator().evaluate_condition(cond, event) == (False, None)
