"""Two-proportion comparison used to score A/B test variants.

Test: pooled two-proportion z-test.

    p1 = x1 / n1, p2 = x2 / n2, p = (x1 + x2) / (n1 + n2)
    se_pooled = sqrt(p * (1 - p) * (1/n1 + 1/n2))
    z = (p2 - p1) / se_pooled
    p_value = 2 * (1 - Phi(|z|))

Interval: unpooled Wald interval of the difference p2 - p1,

    (p2 - p1) ± z_crit * sqrt(p1(1-p1)/n1 + p2(1-p2)/n2)

The p-value depends only on |z|, so swapping the two samples gives the same
value; for fixed sample sizes a larger |p2 - p1| gives a smaller p-value.
"""
import math
from dataclasses import dataclass

from scipy.stats import norm


@dataclass(frozen=True)
class Comparison:
    difference: float
    z_score: float
    p_value: float
    lower: float
    upper: float


def critical_value(confidence=0.95):
    if not 0 < confidence < 1:
        raise ValueError("confidence must be between 0 and 1")
    return float(norm.ppf(1 - (1 - confidence) / 2))


def compare_proportions(successes_a, trials_a, successes_b, trials_b, confidence=0.95) -> Comparison:
    """Compare proportion B against proportion A. Empty samples count as 1 trial."""
    n1, n2 = max(int(trials_a), 1), max(int(trials_b), 1)
    p1, p2 = min(successes_a / n1, 1.0), min(successes_b / n2, 1.0)
    diff = p2 - p1

    pooled = (successes_a + successes_b) / (n1 + n2)
    pooled = min(max(pooled, 0.0), 1.0)
    se_pooled = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    if se_pooled == 0:
        z, p_value = 0.0, 1.0
    else:
        z = diff / se_pooled
        p_value = float(min(2 * norm.sf(abs(z)), 1.0))

    se_diff = math.sqrt(p1 * (1 - p1) / n1 + p2 * (1 - p2) / n2)
    margin = critical_value(confidence) * se_diff
    return Comparison(difference=diff, z_score=z, p_value=p_value,
                      lower=diff - margin, upper=diff + margin)


def proportion_interval(successes, trials, confidence=0.95):
    """Wald interval of a single proportion, clipped to [0, 1]."""
    n = max(int(trials), 1)
    p = min(successes / n, 1.0)
    margin = critical_value(confidence) * math.sqrt(p * (1 - p) / n)
    return max(p - margin, 0.0), min(p + margin, 1.0)
