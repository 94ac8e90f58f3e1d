"""
Data models for MDAP voting.

These models define the core data structures shared by the voting engine,
the red-flag gate and the cost model.
"""

from enum import Enum
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class VoteStrategy(str, Enum):
    """Termination rule for a vote."""
    FIRST_TO_K = "first-to-k"                   # First candidate to reach k votes
    FIRST_TO_AHEAD_BY_K = "first-to-ahead-by-k"  # First candidate to lead by k votes


class VoteConfig(BaseModel):
    """Per-invocation voting parameters. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    # Margin (or count, for first-to-k) required to win
    k: int = Field(default=3, ge=1, description="Vote margin required to win")

    # Safety valve against unbounded draws
    max_samples: int = Field(default=100, ge=1, description="Hard cap on samples")

    # Concurrent sampling
    parallel: bool = Field(default=True)
    initial_batch: int = Field(default=3, ge=1)
    continuation_batch: int = Field(default=2, ge=1)
    max_concurrency: int = Field(default=5, ge=1)

    strategy: VoteStrategy = Field(default=VoteStrategy.FIRST_TO_AHEAD_BY_K)

    # Stop as soon as the leader cannot lose
    early_termination: bool = Field(default=True)

    def merged(self, overrides: Optional[Union["VoteConfig", dict]] = None) -> "VoteConfig":
        """Return a fresh config with caller overrides applied on top of this one."""
        if overrides is None:
            return self
        if isinstance(overrides, VoteConfig):
            overrides = overrides.model_dump(exclude_unset=True)
        return VoteConfig(**{**self.model_dump(), **overrides})


class ResponseMeta(BaseModel):
    """Transient metadata about a single sample."""

    tokens: Optional[int] = Field(None, description="Token count, if known")
    raw_text: Optional[str] = Field(None, description="Raw response text")
    latency_ms: Optional[float] = Field(None, description="Time to produce the sample")


class VoteResult(BaseModel):
    """Terminal value of a vote."""

    winner: Any = Field(..., description="Representative response of the winning key")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Winner votes / valid votes")
    total_samples: int = Field(..., ge=0)
    flagged_samples: int = Field(..., ge=0)
    votes: dict[str, int] = Field(default_factory=dict)
    converged: bool = Field(..., description="Whether a termination condition fired")
    warning: Optional[str] = Field(None, description="Advisory when not converged")

    @property
    def valid_samples(self) -> int:
        return sum(self.votes.values())


class CostEstimateConfig(BaseModel):
    """Inputs to the cost and reliability model."""

    steps: int = Field(..., ge=1, description="Number of steps in the workflow")
    success_rate: float = Field(default=0.99, description="Per-step success probability")
    target_reliability: float = Field(default=0.95, description="Target end-to-end reliability")

    # Pricing (USD per 1M tokens), defaults match a small model
    input_cost_per_million: float = Field(default=0.5, ge=0.0)
    output_cost_per_million: float = Field(default=1.5, ge=0.0)

    avg_input_tokens: int = Field(default=500, ge=0)
    avg_output_tokens: int = Field(default=300, ge=0)


class CostEstimate(BaseModel):
    """Derived cost estimate."""

    cost: float = Field(..., description="Estimated total cost in USD")
    api_calls: int = Field(..., description="Estimated number of oracle calls")
    tokens: int = Field(..., description="Estimated total tokens")
    k_required: int = Field(..., description="Minimum k for the target reliability")
    estimated_time_ms: float = Field(..., description="Estimated wall-clock time")
