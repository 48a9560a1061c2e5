"""
Significance tests for A/B analysis.

ThresholdSignificance reproduces the simplified rule the routing service has
always used (p = 0.03 once more than 100 samples exist, else 0.15). It is a
placeholder, not a hypothesis test, and is kept only so historical analyses
stay comparable. WelchSignificance is a real two-sample test.

Both return the same SignificanceResult so the experiment framework can swap
them without changing its status rules.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass
class SignificanceResult:
    p_value: float
    effect_size: float
    confidence_interval: Tuple[float, float]
    method: str


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def sample_variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    m = mean(values)
    return sum((v - m) ** 2 for v in values) / (len(values) - 1)


def cohens_d(control: Sequence[float], variant: Sequence[float]) -> float:
    """Standardized mean difference using the pooled standard deviation."""
    n1, n2 = len(control), len(variant)
    if n1 < 2 or n2 < 2:
        return 0.0
    pooled = ((n1 - 1) * sample_variance(control) + (n2 - 1) * sample_variance(variant)) / (n1 + n2 - 2)
    if pooled <= 0:
        return 0.0
    return (mean(variant) - mean(control)) / math.sqrt(pooled)


def _difference_interval(control: Sequence[float], variant: Sequence[float],
                         z: float = 1.96) -> Tuple[float, float]:
    """Normal-approximation 95% interval for mean(variant) - mean(control)."""
    if not control or not variant:
        return (0.0, 0.0)
    diff = mean(variant) - mean(control)
    se = math.sqrt(sample_variance(control) / len(control) + sample_variance(variant) / len(variant))
    return (diff - z * se, diff + z * se)


class SignificanceTest:
    """Compares a variant's samples of one metric against the control's."""

    name = "base"

    def evaluate(self, control: Sequence[float], variant: Sequence[float],
                 total_samples: int) -> SignificanceResult:
        raise NotImplementedError


class ThresholdSignificance(SignificanceTest):
    """Fixed p-value by sample count. Effect size and interval are computed."""

    name = "threshold"

    def __init__(self, min_total: int = 100, significant_p: float = 0.03, default_p: float = 0.15):
        self.min_total = min_total
        self.significant_p = significant_p
        self.default_p = default_p

    def evaluate(self, control, variant, total_samples):
        p_value = self.significant_p if total_samples > self.min_total else self.default_p
        return SignificanceResult(
            p_value=p_value,
            effect_size=cohens_d(control, variant),
            confidence_interval=_difference_interval(control, variant),
            method=self.name,
        )


class WelchSignificance(SignificanceTest):
    """Welch's unequal-variance t-test, two-sided.

    The t statistic is converted to a p-value with the normal approximation,
    which is accurate once each arm has a few dozen samples (the analysis
    never runs below the minimum sample size anyway).
    """

    name = "welch"

    def evaluate(self, control, variant, total_samples):
        n1, n2 = len(control), len(variant)
        if n1 < 2 or n2 < 2:
            return SignificanceResult(1.0, 0.0, (0.0, 0.0), self.name)

        se = math.sqrt(sample_variance(control) / n1 + sample_variance(variant) / n2)
        diff = mean(variant) - mean(control)
        if se == 0:
            p_value = 1.0 if diff == 0 else 0.0
        else:
            t = diff / se
            p_value = math.erfc(abs(t) / math.sqrt(2))

        return SignificanceResult(
            p_value=min(1.0, max(0.0, p_value)),
            effect_size=cohens_d(control, variant),
            confidence_interval=_difference_interval(control, variant),
            method=self.name,
        )


SIGNIFICANCE_TESTS = {
    ThresholdSignificance.name: ThresholdSignificance,
    WelchSignificance.name: WelchSignificance,
}


def get_significance_test(name: str) -> SignificanceTest:
    try:
        return SIGNIFICANCE_TESTS[name]()
    except KeyError:
        raise ValueError(f"Unknown significance test: {name}") from None
