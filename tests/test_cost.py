"""
Tests for the cost and reliability model.
"""

import math

import pytest

from mdap.cost import (
    MAX_PARALLEL_CALLS,
    MS_PER_CALL,
    calculate_expected_samples,
    calculate_min_k,
    calculate_success_probability,
    estimate_cost,
    format_cost_estimate,
    format_duration,
)
from mdap.models import CostEstimateConfig

STEPS = [1, 10, 100, 1_000, 10_000, 100_000, 1_000_000]
RATES = [0.51, 0.6, 0.75, 0.9, 0.95, 0.99, 0.999]
TARGETS = [0.01, 0.5, 0.9, 0.95, 0.99, 0.999]


class TestMinK:
    """Tests for calculate_min_k."""

    def test_always_at_least_one(self):
        for s in STEPS:
            for p in RATES:
                for t in TARGETS:
                    assert calculate_min_k(s, p, t) >= 1

    def test_non_decreasing_in_steps(self):
        for p in RATES:
            for t in TARGETS:
                ks = [calculate_min_k(s, p, t) for s in STEPS]
                assert ks == sorted(ks)

    def test_non_decreasing_in_target(self):
        for s in STEPS:
            for p in RATES:
                ks = [calculate_min_k(s, p, t) for t in TARGETS]
                assert ks == sorted(ks)

    def test_non_increasing_in_success_rate(self):
        for s in STEPS:
            for t in TARGETS:
                ks = [calculate_min_k(s, p, t) for p in RATES]
                assert ks == sorted(ks, reverse=True)

    def test_target_near_one_with_many_steps(self):
        k = calculate_min_k(10**8, 0.99, 0.999999999)

        assert math.isfinite(k)
        assert k == 9

    def test_logarithmic_growth(self):
        for s in [1_000, 10_000, 100_000, 1_000_000]:
            assert 1 <= calculate_min_k(s, 0.99, 0.95) <= 5

    def test_known_values(self):
        assert calculate_min_k(1, 0.99, 0.95) == 1
        assert calculate_min_k(1_000_000, 0.99, 0.95) == 4

    def test_perfect_success_rate(self):
        assert calculate_min_k(1_000_000, 1.0, 0.999) == 1

    @pytest.mark.parametrize("p", [0.5, 0.3, 0.0])
    def test_rejects_low_success_rate(self, p):
        with pytest.raises(ValueError, match="must be > 0.5"):
            calculate_min_k(100, p, 0.95)

    @pytest.mark.parametrize("t", [0.0, 1.0, -0.1, 1.5])
    def test_rejects_target_outside_unit_interval(self, t):
        with pytest.raises(ValueError, match="between 0 and 1"):
            calculate_min_k(100, 0.99, t)

    def test_rejects_zero_steps(self):
        with pytest.raises(ValueError):
            calculate_min_k(0, 0.99, 0.95)

    def test_result_meets_target(self):
        for s in STEPS:
            for p in [0.6, 0.9, 0.99]:
                k = calculate_min_k(s, p, 0.95)
                assert calculate_success_probability(s, k, p) >= 0.95 - 1e-9


class TestSuccessProbability:
    """Tests for calculate_success_probability."""

    def test_formula(self):
        for s, k, p in [(1, 1, 0.9), (1000, 3, 0.99), (10_000, 5, 0.95)]:
            expected = (1 + ((1 - p) / p) ** k) ** (-s)
            assert calculate_success_probability(s, k, p) == pytest.approx(expected, rel=1e-12)

    @pytest.mark.parametrize("p", [0.5, 0.2, 1.0, 1.2])
    def test_zero_outside_open_range(self, p):
        assert calculate_success_probability(100, 3, p) == 0.0


class TestExpectedSamples:
    def test_formula(self):
        assert calculate_expected_samples(3, 0.99) == pytest.approx(3 / 0.98)

    def test_rejects_low_rate(self):
        with pytest.raises(ValueError):
            calculate_expected_samples(3, 0.5)


class TestEstimateCost:
    """Tests for estimate_cost."""

    def test_estimate(self):
        config = CostEstimateConfig(
            steps=1_000,
            success_rate=0.99,
            target_reliability=0.95,
            input_cost_per_million=0.5,
            output_cost_per_million=1.5,
            avg_input_tokens=300,
            avg_output_tokens=200,
        )

        estimate = estimate_cost(config)

        k = calculate_min_k(1_000, 0.99, 0.95)
        calls = math.ceil(1_000 * k / (2 * 0.99 - 1))
        assert estimate.k_required == k
        assert estimate.api_calls == calls
        assert estimate.tokens == calls * 500
        assert estimate.cost == pytest.approx(calls * 300 / 1e6 * 0.5 + calls * 200 / 1e6 * 1.5)
        assert estimate.estimated_time_ms == pytest.approx(
            calls / min(k, MAX_PARALLEL_CALLS) * MS_PER_CALL
        )

    def test_invalid_config_raises(self):
        with pytest.raises(ValueError):
            estimate_cost(CostEstimateConfig(steps=100, success_rate=0.4))

    def test_steps_must_be_positive(self):
        with pytest.raises(ValueError):
            CostEstimateConfig(steps=0)

    def test_format(self):
        text = format_cost_estimate(estimate_cost(CostEstimateConfig(steps=10_000)))

        assert text.startswith("Cost: $")
        assert "API Calls:" in text
        assert "Required k:" in text
        assert "Estimated Time: ~" in text


class TestFormatDuration:
    @pytest.mark.parametrize(
        "ms,expected",
        [(500, "0s"), (45_000, "45s"), (125_000, "2m 5s"), (3_720_000, "1h 2m")],
    )
    def test_format(self, ms, expected):
        assert format_duration(ms) == expected
