import math

import pytest

from backend.engagement.models import MetricName
from backend.engagement.significance import (
    VariantMetrics,
    compare_variants,
    compute_metric,
    normal_cdf,
    pick_winner,
    two_proportion_z_test,
)


def _events(kind: str, n: int, users=None):
    users = users or ["u1"]
    return [{"event_type": kind, "user_id": users[i % len(users)]} for i in range(n)]


def test_completion_rate():
    events = _events("play_start", 100) + _events("complete", 60)
    m = compute_metric(events, MetricName.COMPLETION_RATE)
    assert m.value == pytest.approx(60.0)


def test_completion_rate_without_plays_is_zero():
    m = compute_metric(_events("complete", 5), MetricName.COMPLETION_RATE)
    assert m.value == 0.0


def test_engagement_score_weights():
    events = _events("like", 4) + _events("share", 3) + _events("save", 2) + _events("impression", 50)
    m = compute_metric(events, MetricName.ENGAGEMENT_SCORE)
    assert m.value == pytest.approx(4 + 6 + 3)


def test_cta_click_rate():
    events = _events("impression", 200) + _events("cta_click", 10)
    assert compute_metric(events, MetricName.CTA_CLICK_RATE).value == pytest.approx(5.0)
    assert compute_metric(_events("cta_click", 3), MetricName.CTA_CLICK_RATE).value == 0.0


def test_sample_size_counts_distinct_users():
    events = _events("impression", 30, users=["a", "b", "c"]) + [{"event_type": "impression", "user_id": None}]
    assert compute_metric(events, MetricName.CTA_CLICK_RATE).sample_size == 3


def test_normal_cdf_matches_erf_closely():
    for x in [-3.0, -1.5, -0.2, 0.0, 0.7, 1.96, 3.5]:
        exact = 0.5 * (1 + math.erf(x / math.sqrt(2)))
        assert normal_cdf(x) == pytest.approx(exact, abs=1e-6)


def test_sixty_vs_forty_percent_is_significant():
    a = VariantMetrics(value=60.0, sample_size=80)
    b = VariantMetrics(value=40.0, sample_size=80)
    result = compare_variants(a, b, MetricName.COMPLETION_RATE)

    # pPool=0.5, se=sqrt(0.25 * 2/80), z=0.2/se
    expected_z = 0.2 / math.sqrt(0.25 * (2 / 80))
    assert result.z_score == pytest.approx(expected_z)
    assert result.p_value < 0.05
    assert result.confidence == pytest.approx(98.86, abs=0.01)
    assert pick_winner(a, b, result, "A", "B") == "A"


def test_swapping_variants_swaps_winner():
    a = VariantMetrics(value=60.0, sample_size=80)
    b = VariantMetrics(value=40.0, sample_size=80)
    forward = compare_variants(a, b, MetricName.COMPLETION_RATE)
    backward = compare_variants(b, a, MetricName.COMPLETION_RATE)
    assert forward.p_value == pytest.approx(backward.p_value)
    assert pick_winner(b, a, backward, "B", "A") == "A"
    assert pick_winner(b, a, backward, "A", "B") == "B"


def test_identical_metrics_never_significant():
    a = VariantMetrics(value=35.0, sample_size=500)
    b = VariantMetrics(value=35.0, sample_size=500)
    result = compare_variants(a, b, MetricName.COMPLETION_RATE)
    assert result.p_value == 1.0
    assert result.confidence == 0.0
    assert pick_winner(a, b, result, "A", "B") is None


def test_zero_standard_error():
    result = two_proportion_z_test(0.0, 50, 0.0, 50)
    assert result.p_value == 1.0
    assert result.confidence == 0.0


@pytest.mark.parametrize("n1,n2", [(0, 10), (10, 0), (0, 0)])
def test_zero_sample_is_safe(n1, n2):
    result = two_proportion_z_test(0.7, n1, 0.1, n2)
    assert result.p_value == 1.0
    assert result.confidence == 0.0
    assert not result.is_significant


def test_engagement_score_outside_unit_interval_is_not_significant():
    a = VariantMetrics(value=40.0, sample_size=30)
    b = VariantMetrics(value=5.0, sample_size=30)
    result = compare_variants(a, b, MetricName.ENGAGEMENT_SCORE)
    assert result.p_value == 1.0
    assert pick_winner(a, b, result, "A", "B") is None


def test_small_difference_is_not_significant():
    a = VariantMetrics(value=51.0, sample_size=40)
    b = VariantMetrics(value=49.0, sample_size=40)
    result = compare_variants(a, b, MetricName.COMPLETION_RATE)
    assert not result.is_significant
    assert 0 < result.confidence < 95
    assert pick_winner(a, b, result, "A", "B") is None
