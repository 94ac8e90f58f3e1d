"""
LLM provider adapters.

Adapters satisfy the oracle contract the voting engine samples: one prompt
in, one completion out.

Components:
- BaseAdapter: Abstract base class for adapters
- OpenAIAdapter / AnthropicAdapter: httpx-backed providers
- RateLimitedAdapter: Throttling and retry wrapper around any adapter
- create_adapter: Build an adapter from settings
"""

import os
from typing import Optional

import httpx

from mdap.adapters.anthropic import AnthropicAdapter
from mdap.adapters.base import AdapterConfig, AdapterError, BaseAdapter, HTTPAdapter
from mdap.adapters.openai import OpenAIAdapter
from mdap.adapters.rate_limit import (
    RATE_LIMIT_PRESETS,
    RateLimitConfig,
    RateLimitedAdapter,
    RateLimitStats,
    TokenBucket,
)
from mdap.config import API_KEY_ENV, DEFAULT_MODELS, Provider

ADAPTERS = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
}


def create_adapter(
    provider: Provider | str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    temperature: float = 0.1,
    max_tokens: int = 1024,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseAdapter:
    """
    Build an adapter for a provider.

    Raises:
        ValueError: Unknown provider or no API key available
    """
    try:
        provider = Provider(provider)
    except ValueError:
        raise ValueError(f"Unknown provider: {provider}") from None

    key = api_key or os.getenv(API_KEY_ENV[provider])
    if not key:
        raise ValueError(
            f"{provider.value} API key required. "
            f"Set {API_KEY_ENV[provider]} env var or pass api_key."
        )

    config = AdapterConfig(
        api_key=key,
        model=model or DEFAULT_MODELS[provider],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return ADAPTERS[provider](config, client=client)


__all__ = [
    # Base
    "BaseAdapter",
    "HTTPAdapter",
    "AdapterConfig",
    "AdapterError",
    # Providers
    "OpenAIAdapter",
    "AnthropicAdapter",
    "create_adapter",
    # Rate limiting
    "RateLimitedAdapter",
    "RateLimitConfig",
    "RateLimitStats",
    "TokenBucket",
    "RATE_LIMIT_PRESETS",
]
