"""
Cost & Reliability Model

Closed-form scaling laws for first-to-ahead-by-k voting over s independent
steps, each solved with per-sample success probability p:

    p_full = (1 + ((1-p)/p)^k)^(-s)
    k_min  = ceil(ln(t^(-1/s) - 1) / ln((1-p)/p))

k_min grows logarithmically in s, so even million-step workflows need only
a handful of votes per step.
"""

import math

from mdap.models import CostEstimate, CostEstimateConfig

# Wall-clock assumptions for estimate_cost()
MS_PER_CALL = 500
MAX_PARALLEL_CALLS = 10


def calculate_min_k(steps: int, success_rate: float, target_reliability: float) -> int:
    """
    Minimum vote margin k for a target end-to-end reliability.

    Args:
        steps: Number of steps (s)
        success_rate: Per-step success probability (p), must be > 0.5
        target_reliability: Target overall success probability (t), in (0, 1)

    Returns:
        k >= 1

    Raises:
        ValueError: If p <= 0.5 (voting cannot converge) or t is outside (0, 1)
    """
    if success_rate <= 0.5:
        raise ValueError("Success rate must be > 0.5 for voting to converge")
    if success_rate >= 1:
        return 1
    if target_reliability <= 0 or target_reliability >= 1:
        raise ValueError("Target reliability must be between 0 and 1 (exclusive)")
    if steps < 1:
        raise ValueError("Steps must be >= 1")

    # log(t^(-1/s) - 1), via expm1 so t near 1 with large s stays finite
    numerator = math.log(math.expm1(-math.log(target_reliability) / steps))
    denominator = math.log((1 - success_rate) / success_rate)

    return max(1, math.ceil(numerator / denominator))


def calculate_expected_samples(k: int, success_rate: float) -> float:
    """Expected samples per step for first-to-ahead-by-k at high p: k / (2p - 1)."""
    if success_rate <= 0.5:
        raise ValueError("Success rate must be > 0.5")
    return k / (2 * success_rate - 1)


def calculate_success_probability(steps: int, k: int, success_rate: float) -> float:
    """Probability of solving all steps; 0 when p <= 0.5 or p >= 1."""
    if success_rate <= 0.5 or success_rate >= 1:
        return 0.0

    ratio = (1 - success_rate) / success_rate
    return math.pow(1 + math.pow(ratio, k), -steps)


def estimate_cost(config: CostEstimateConfig) -> CostEstimate:
    """
    Estimate calls, tokens, money and time for a voting workflow.

    Example:
        estimate = estimate_cost(CostEstimateConfig(steps=10_000))
        print(format_cost_estimate(estimate))
    """
    k_required = calculate_min_k(config.steps, config.success_rate, config.target_reliability)
    samples_per_step = calculate_expected_samples(k_required, config.success_rate)

    api_calls = math.ceil(config.steps * samples_per_step)

    total_input_tokens = api_calls * config.avg_input_tokens
    total_output_tokens = api_calls * config.avg_output_tokens

    input_cost = total_input_tokens / 1_000_000 * config.input_cost_per_million
    output_cost = total_output_tokens / 1_000_000 * config.output_cost_per_million

    parallel_factor = min(k_required, MAX_PARALLEL_CALLS)
    estimated_time_ms = api_calls / parallel_factor * MS_PER_CALL

    return CostEstimate(
        cost=input_cost + output_cost,
        api_calls=api_calls,
        tokens=total_input_tokens + total_output_tokens,
        k_required=k_required,
        estimated_time_ms=estimated_time_ms,
    )


def format_duration(ms: float) -> str:
    hours = int(ms // 3_600_000)
    minutes = int(ms % 3_600_000 // 60_000)
    seconds = int(ms % 60_000 // 1000)

    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_cost_estimate(estimate: CostEstimate) -> str:
    """Render an estimate for display."""
    return "\n".join([
        f"Cost: ${estimate.cost:.2f}",
        f"API Calls: {estimate.api_calls:,}",
        f"Tokens: {estimate.tokens:,}",
        f"Required k: {estimate.k_required}",
        f"Estimated Time: ~{format_duration(estimate.estimated_time_ms)}",
    ])
