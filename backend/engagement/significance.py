from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional
import math

from backend.engagement.models import MetricName

SIGNIFICANCE_LEVEL = 0.05

RATE_METRICS = {MetricName.COMPLETION_RATE, MetricName.CTA_CLICK_RATE}


@dataclass
class VariantMetrics:
    value: float
    sample_size: int


@dataclass
class SignificanceResult:
    p_value: float
    confidence: float
    z_score: float = 0.0

    @property
    def is_significant(self) -> bool:
        return self.p_value < SIGNIFICANCE_LEVEL


def normal_cdf(x: float) -> float:
    """
    Standard normal CDF, Abramowitz & Stegun 26.2.17 polynomial
    (absolute error < 7.5e-8). Kept instead of math.erf so confidence
    scores match the ones stored by earlier versions of the service.
    """
    t = 1.0 / (1.0 + 0.2316419 * abs(x))
    d = 0.3989423 * math.exp(-x * x / 2.0)
    prob = d * t * (0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274))))
    return 1.0 - prob if x > 0 else prob


def compute_metric(events: Iterable[Mapping[str, object]], metric: MetricName) -> VariantMetrics:
    """
    events: rows with 'event_type' and 'user_id'
    sample size = distinct (non-null) users with any event for the variant
    """
    counts: dict = {}
    users = set()
    for e in events:
        kind = str(e["event_type"])
        counts[kind] = counts.get(kind, 0) + 1
        if e["user_id"] is not None:
            users.add(e["user_id"])

    metric = MetricName(metric)
    value = 0.0

    if metric == MetricName.COMPLETION_RATE:
        plays = counts.get("play_start", 0)
        completions = counts.get("complete", 0)
        value = (completions / plays) * 100 if plays > 0 else 0.0

    elif metric == MetricName.ENGAGEMENT_SCORE:
        # weighted sum, not a percentage
        value = (
            1.0 * counts.get("like", 0)
            + 2.0 * counts.get("share", 0)
            + 1.5 * counts.get("save", 0)
        )

    elif metric == MetricName.CTA_CLICK_RATE:
        impressions = counts.get("impression", 0)
        clicks = counts.get("cta_click", 0)
        value = (clicks / impressions) * 100 if impressions > 0 else 0.0

    return VariantMetrics(value=float(value), sample_size=len(users))


def as_proportion(value: float, metric: MetricName) -> float:
    if MetricName(metric) in RATE_METRICS:
        return value / 100.0
    return value


def two_proportion_z_test(p1: float, n1: int, p2: float, n2: int) -> SignificanceResult:
    """
    Pooled two-proportion z-test, two-tailed.

    No significance (p=1, confidence=0) when either sample is empty or the
    pooled standard error is zero or undefined.
    """
    no_result = SignificanceResult(p_value=1.0, confidence=0.0, z_score=0.0)

    if n1 <= 0 or n2 <= 0:
        return no_result

    p_pool = (p1 * n1 + p2 * n2) / (n1 + n2)
    variance = p_pool * (1 - p_pool) * (1 / n1 + 1 / n2)
    if variance <= 0:
        return no_result

    se = math.sqrt(variance)
    if se == 0:
        return no_result

    z = abs(p1 - p2) / se
    p_value = 2 * (1 - normal_cdf(z))
    # the polynomial can land a hair outside [0, 1] near z=0
    p_value = min(1.0, max(0.0, p_value))
    confidence = round((1 - p_value) * 100, 2)

    return SignificanceResult(p_value=p_value, confidence=confidence, z_score=z)


def compare_variants(a: VariantMetrics, b: VariantMetrics, metric: MetricName) -> SignificanceResult:
    return two_proportion_z_test(
        as_proportion(a.value, metric),
        a.sample_size,
        as_proportion(b.value, metric),
        b.sample_size,
    )


def pick_winner(
    a: VariantMetrics,
    b: VariantMetrics,
    significance: SignificanceResult,
    variant_a_id: str,
    variant_b_id: str,
) -> Optional[str]:
    if not significance.is_significant or a.value == b.value:
        return None
    return variant_a_id if a.value > b.value else variant_b_id
