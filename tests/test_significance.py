"""Tests for the two-proportion comparison."""
import pytest

from engine.significance import compare_proportions, critical_value, proportion_interval


def test_critical_value_95():
    assert critical_value(0.95) == pytest.approx(1.959964, abs=1e-6)
    assert critical_value(0.99) > critical_value(0.95)


@pytest.mark.parametrize("confidence", [0, 1, 1.5, -0.2])
def test_critical_value_rejects_bad_confidence(confidence):
    with pytest.raises(ValueError):
        critical_value(confidence)


def test_known_value():
    result = compare_proportions(45, 100, 60, 100)
    assert result.difference == pytest.approx(0.15)
    assert result.z_score == pytest.approx(2.124, abs=1e-3)
    assert result.p_value == pytest.approx(0.0337, abs=1e-3)
    assert result.lower < result.difference < result.upper


def test_p_value_is_symmetric():
    ab = compare_proportions(30, 120, 50, 110)
    ba = compare_proportions(50, 110, 30, 120)
    assert ab.p_value == pytest.approx(ba.p_value)
    assert ab.difference == pytest.approx(-ba.difference)


def test_larger_difference_gives_smaller_p_value():
    p_values = [compare_proportions(50, 200, s, 200).p_value for s in (55, 65, 80, 110)]
    assert p_values == sorted(p_values, reverse=True)
    assert p_values[0] > p_values[-1]


def test_equal_proportions():
    result = compare_proportions(40, 100, 40, 100)
    assert result.p_value == pytest.approx(1.0)
    assert result.z_score == 0


def test_zero_variance_gives_p_value_of_one():
    assert compare_proportions(0, 50, 0, 50).p_value == 1.0
    assert compare_proportions(50, 50, 50, 50).p_value == 1.0
    assert compare_proportions(0, 0, 0, 0).p_value == 1.0


def test_p_value_in_range():
    for sa, sb in ((0, 100), (100, 0), (1, 99), (50, 50)):
        assert 0.0 <= compare_proportions(sa, 100, sb, 100).p_value <= 1.0


def test_proportion_interval_is_clipped():
    lower, upper = proportion_interval(1, 2)
    assert 0.0 <= lower < 0.5 < upper <= 1.0
    assert proportion_interval(0, 10) == (0.0, 0.0)
    assert proportion_interval(0, 0) == (0.0, 0.0)
