"""Tests for rule matching over condition chains."""
import pytest

from engine.matcher import RuleMatcher


def _cond(field, value, logical_operator=None, operator="equals"):
    return {"field": field, "operator": operator, "value": value, "logical_operator": logical_operator}


@pytest.fixture
def matcher():
    return RuleMatcher()


def test_empty_conditions_always_match(matcher, make_rule, make_event):
    rule = make_rule(conditions=[])
    for event in (make_event(), make_event(severity="critical"), make_event(type="security", title="")):
        result = matcher.matches(rule, event)
        assert result.matched is True
        assert result.condition_results == []


def test_single_condition(matcher, make_rule, make_event):
    rule = make_rule(conditions=[_cond("severity", "critical")])
    assert matcher.matches(rule, make_event(severity="critical")).matched is True
    assert matcher.matches(rule, make_event(severity="info")).matched is False


def test_left_associative_and_then_or(matcher, make_rule, make_event):
    """[A AND B OR C] is ((A AND B) OR C): false A with true C still matches."""
    rule = make_rule(conditions=[
        _cond("severity", "critical", "AND"),    # A: false
        _cond("type", "security", "OR"),         # B: false
        _cond("source", "api-gateway"),          # C: true
    ])
    event = make_event(severity="info", type="system", source="api-gateway")
    assert matcher.matches(rule, event).matched is True


def test_left_associative_or_then_and(matcher, make_rule, make_event):
    """[A OR B AND C] is ((A OR B) AND C), not (A OR (B AND C))."""
    rule = make_rule(conditions=[
        _cond("severity", "critical", "OR"),     # A: true
        _cond("type", "security", "AND"),        # B: false
        _cond("source", "database"),             # C: false
    ])
    event = make_event(severity="critical", type="system", source="api-gateway")
    assert matcher.matches(rule, event).matched is False


def test_every_condition_is_evaluated(matcher, make_rule, make_event):
    rule = make_rule(conditions=[
        _cond("severity", "critical", "AND"),
        _cond("type", "system", "AND"),
        _cond("source", "api-gateway"),
    ])
    result = matcher.matches(rule, make_event(severity="info"))
    assert result.matched is False
    assert [r.passed for r in result.condition_results] == [False, True, True]


def test_last_condition_operator_is_ignored(matcher, make_rule, make_event):
    rule = make_rule(conditions=[_cond("severity", "critical", "OR")])
    assert matcher.matches(rule, make_event(severity="info")).matched is False


def test_missing_logical_operator_defaults_to_and(matcher, make_rule, make_event):
    rule = make_rule(conditions=[_cond("severity", "critical"), _cond("type", "security")])
    assert matcher.matches(rule, make_event(severity="critical", type="system")).matched is False
    assert matcher.matches(rule, make_event(severity="critical", type="security")).matched is True


def test_condition_results_carry_actual_and_expected(matcher, make_rule, make_event):
    rule = make_rule(conditions=[_cond("metadata.cpuUsage", 90, operator="greater_than")])
    result = matcher.matches(rule, make_event(metadata={"cpuUsage": 95}))
    cr = result.condition_results[0]
    assert cr.condition_id == rule.conditions[0].id
    assert cr.actual_value == 95
    assert cr.expected_value == 90
    assert result.to_dict()["condition_results"][0]["passed"] is True
