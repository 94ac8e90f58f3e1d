"""
High-level reliable execution.

Runs a prompt through a provider adapter with voting and red flags, and
reports token usage and estimated spend. Shared by the CLI and the API
server.
"""

import math
from typing import Optional

from pydantic import BaseModel, Field
import structlog

from mdap.adapters import BaseAdapter, create_adapter
from mdap.config import DEFAULT_MODELS, Provider, Settings, load_settings
from mdap.consensus import VoteOptions, vote
from mdap.models import VoteConfig, VoteStrategy
from mdap.red_flags import RedFlagInput, parse_red_flags

logger = structlog.get_logger()

# USD per 1M tokens
MODEL_PRICING: dict[str, dict[str, float]] = {
    # OpenAI
    "gpt-4.1-mini": {"input": 0.4, "output": 1.6},
    "gpt-4.1": {"input": 2.0, "output": 8.0},
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-3.5-turbo": {"input": 0.5, "output": 1.5},
    # Anthropic
    "claude-3-5-sonnet-latest": {"input": 3.0, "output": 15.0},
    "claude-3-5-haiku-latest": {"input": 0.8, "output": 4.0},
    "claude-3-opus-latest": {"input": 15.0, "output": 75.0},
}
DEFAULT_PRICING = {"input": 0.5, "output": 1.5}


class ExecuteRequest(BaseModel):
    """A prompt to run reliably. Unset fields fall back to Settings."""

    prompt: str = Field(..., min_length=1, description="Prompt sent on every sample")
    system: Optional[str] = Field(None, description="Optional system prompt")
    k: Optional[int] = Field(None, ge=1)
    max_samples: Optional[int] = Field(None, ge=1)
    red_flags: Optional[list[RedFlagInput]] = Field(None)
    provider: Optional[str] = Field(None)
    model: Optional[str] = Field(None)
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, ge=1)
    api_key: Optional[str] = Field(None)
    debug: bool = Field(default=False)


class Usage(BaseModel):
    """Estimated token usage and cost."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0


class ExecuteResult(BaseModel):
    """Result of execute_reliable()."""

    winner: str
    confidence: float
    total_samples: int
    flagged_samples: int
    converged: bool
    votes: dict[str, int] = Field(default_factory=dict)
    usage: Usage = Field(default_factory=Usage)
    model: Optional[str] = None
    warning: Optional[str] = None


def estimate_tokens(text: str) -> int:
    """Rough approximation: 1 token ~ 4 characters."""
    return math.ceil(len(text) / 4)


def calculate_usage_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    pricing = MODEL_PRICING.get(model, DEFAULT_PRICING)
    return (
        input_tokens / 1_000_000 * pricing["input"]
        + output_tokens / 1_000_000 * pricing["output"]
    )


async def execute_reliable(
    request: ExecuteRequest,
    adapter: Optional[BaseAdapter] = None,
    settings: Optional[Settings] = None,
) -> ExecuteResult:
    """
    Execute a prompt with voting and red flags.

    Args:
        request: Prompt and per-request overrides
        adapter: Adapter to sample; built from settings when omitted
        settings: Resolved settings; loaded from file/env when omitted

    Returns:
        ExecuteResult with usage and, if not converged, a warning

    Raises:
        NoValidSamplesError: If every sample was flagged or failed
        ValueError: On invalid red flags, provider or missing API key
    """
    overrides = {
        key: value
        for key, value in {
            "provider": request.provider,
            "model": request.model,
            "api_key": request.api_key,
        }.items()
        if value is not None
    }
    if settings is None:
        settings = load_settings(overrides)
    elif overrides:
        merged = {**settings.model_dump(), **overrides}
        provider = Provider(merged["provider"])
        # Model and key of a different provider do not carry over
        if provider != settings.provider:
            if request.model is None:
                merged["model"] = DEFAULT_MODELS[provider]
            if request.api_key is None:
                merged["api_key"] = None
        settings = Settings(**merged)
    k = request.k or settings.k
    max_samples = request.max_samples or settings.max_samples
    red_flags = request.red_flags if request.red_flags is not None else settings.red_flags
    rules = parse_red_flags(red_flags)

    owns_adapter = adapter is None
    if adapter is None:
        adapter = create_adapter(
            settings.provider,
            api_key=settings.api_key,
            model=settings.model,
            temperature=request.temperature if request.temperature is not None else settings.temperature,
            max_tokens=request.max_tokens or settings.max_tokens,
        )

    usage = {"input": 0, "output": 0}
    prompt_tokens = estimate_tokens(request.prompt + (request.system or ""))

    async def oracle(prompt: str) -> str:
        response = await adapter.chat(prompt, system=request.system)
        usage["input"] += prompt_tokens
        usage["output"] += estimate_tokens(response)
        return response

    logger.info(
        "Executing reliable prompt",
        model=adapter.model_name,
        k=k,
        max_samples=max_samples,
        red_flags=[rule.name for rule in rules],
    )

    try:
        result = await vote(
            oracle,
            request.prompt,
            VoteOptions(
                vote=VoteConfig(
                    k=k,
                    max_samples=max_samples,
                    strategy=VoteStrategy.FIRST_TO_AHEAD_BY_K,
                ),
                red_flags=rules,
                debug=request.debug,
            ),
        )
    finally:
        if owns_adapter:
            await adapter.close()

    return ExecuteResult(
        winner=result.winner,
        confidence=result.confidence,
        total_samples=result.total_samples,
        flagged_samples=result.flagged_samples,
        converged=result.converged,
        votes=result.votes,
        usage=Usage(
            input_tokens=usage["input"],
            output_tokens=usage["output"],
            total_tokens=usage["input"] + usage["output"],
            estimated_cost=calculate_usage_cost(usage["input"], usage["output"], adapter.model_name),
        ),
        model=adapter.model_name,
        warning=result.warning,
    )


def format_execute_result(result: ExecuteResult) -> str:
    """Render an ExecuteResult for terminals and logs."""
    confidence = round(result.confidence * 100)
    lines = [
        f"Converged with {confidence}% confidence"
        if result.converged
        else f"Did not converge ({confidence}% confidence)",
        "",
        "Winner:",
        result.winner,
        "",
        "Stats:",
        f"  Samples: {result.total_samples} ({result.flagged_samples} flagged)",
        f"  Tokens: {result.usage.total_tokens:,}",
        f"  Cost: ${result.usage.estimated_cost:.4f}",
    ]
    if result.warning:
        lines.extend(["", f"Warning: {result.warning}"])
    return "\n".join(lines)
