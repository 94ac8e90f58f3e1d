"""
Configuration loading.

Settings are merged from, lowest priority first:
1. Built-in defaults
2. The first config file found walking up from the working directory
   (.mdaprc, .mdaprc.json, .mdap.json, mdap.config.json)
3. Environment variables (MDAP_*, OPENAI_API_KEY, ANTHROPIC_API_KEY)
4. Runtime overrides
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
import structlog

from mdap.red_flags import RedFlagInput, get_default_red_flags

logger = structlog.get_logger()

CONFIG_FILE_NAMES = [
    ".mdaprc",
    ".mdaprc.json",
    ".mdap.json",
    "mdap.config.json",
]


class Provider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


DEFAULT_MODELS = {
    Provider.OPENAI: "gpt-4.1-mini",
    Provider.ANTHROPIC: "claude-3-5-haiku-latest",
}

API_KEY_ENV = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
}


class Settings(BaseModel):
    """Resolved configuration."""

    provider: Provider = Field(default=Provider.OPENAI)
    model: str = Field(default=DEFAULT_MODELS[Provider.OPENAI])

    # Voting defaults
    k: int = Field(default=3, ge=1)
    max_samples: int = Field(default=30, ge=1)

    # Sampling defaults
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)

    red_flags: list[RedFlagInput] = Field(default_factory=get_default_red_flags)

    api_key: Optional[str] = Field(None, description="Provider API key")


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Search `start` and its parents for a config file."""
    current = (start or Path.cwd()).resolve()
    for directory in [current, *current.parents]:
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """
    Read a JSON config file into flat settings.

    File layout:
        {"provider": "openai", "model": "...", "defaults": {"k": 3, "maxSamples": 30, ...}}

    Unreadable files are ignored with a warning.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config file", path=str(path), error=str(e))
        return {}

    if not isinstance(raw, dict):
        return {}

    config: dict[str, Any] = {}
    if raw.get("provider"):
        config["provider"] = raw["provider"]
    if raw.get("model"):
        config["model"] = raw["model"]

    defaults = raw.get("defaults") or {}
    key_map = {
        "k": "k",
        "maxSamples": "max_samples",
        "max_samples": "max_samples",
        "temperature": "temperature",
        "maxTokens": "max_tokens",
        "max_tokens": "max_tokens",
        "redFlags": "red_flags",
        "red_flags": "red_flags",
    }
    for source, target in key_map.items():
        if source in defaults:
            config[target] = defaults[source]

    return config


def _positive_int(value: Optional[str]) -> Optional[int]:
    try:
        parsed = int(value) if value is not None else None
    except ValueError:
        return None
    return parsed if parsed is not None and parsed > 0 else None


def load_env_config(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Settings from environment variables. Invalid values are ignored."""
    env = os.environ if environ is None else environ
    config: dict[str, Any] = {}

    provider = env.get("MDAP_PROVIDER")
    if provider in (Provider.OPENAI.value, Provider.ANTHROPIC.value):
        config["provider"] = provider

    if env.get("MDAP_MODEL"):
        config["model"] = env["MDAP_MODEL"]

    # Provider keys are resolved in load_settings() once the provider is known
    if env.get("MDAP_API_KEY"):
        config["api_key"] = env["MDAP_API_KEY"]

    k = _positive_int(env.get("MDAP_K"))
    if k is not None:
        config["k"] = k

    max_samples = _positive_int(env.get("MDAP_MAX_SAMPLES"))
    if max_samples is not None:
        config["max_samples"] = max_samples

    max_tokens = _positive_int(env.get("MDAP_MAX_TOKENS"))
    if max_tokens is not None:
        config["max_tokens"] = max_tokens

    if env.get("MDAP_TEMPERATURE"):
        try:
            temperature = float(env["MDAP_TEMPERATURE"])
        except ValueError:
            temperature = None
        if temperature is not None and 0 <= temperature <= 2:
            config["temperature"] = temperature

    return config


def load_settings(
    overrides: Optional[dict[str, Any]] = None,
    cwd: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> Settings:
    """
    Load and resolve settings.

    Example:
        settings = load_settings({"k": 5, "provider": "anthropic"})
    """
    config_path = find_config_file(cwd)
    file_config = load_config_file(config_path) if config_path else {}
    env_config = load_env_config(environ)
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    merged = {**file_config, **env_config, **overrides}
    provider = Provider(merged.get("provider", Provider.OPENAI))

    # Pick the provider's default model unless one was set explicitly
    if "model" not in merged:
        merged["model"] = DEFAULT_MODELS[provider]

    # Fall back to the key variable of the resolved provider
    if "api_key" not in merged:
        env = os.environ if environ is None else environ
        key = env.get(API_KEY_ENV[provider])
        if key:
            merged["api_key"] = key

    settings = Settings(**merged)
    logger.debug(
        "Loaded settings",
        config_file=str(config_path) if config_path else None,
        provider=settings.provider.value,
        model=settings.model,
    )
    return settings


def get_default_settings() -> Settings:
    return Settings()


def validate_settings(config: dict[str, Any]) -> list[str]:
    """Human-readable problems with a partial settings dict."""
    errors: list[str] = []

    def is_positive_int(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool) and value >= 1

    if "k" in config and not is_positive_int(config["k"]):
        errors.append("k must be a positive integer")

    if "max_samples" in config and not is_positive_int(config["max_samples"]):
        errors.append("max_samples must be a positive integer")

    if "temperature" in config:
        temperature = config["temperature"]
        if not isinstance(temperature, (int, float)) or not 0 <= temperature <= 2:
            errors.append("temperature must be between 0 and 2")

    if "max_tokens" in config and not is_positive_int(config["max_tokens"]):
        errors.append("max_tokens must be a positive integer")

    if "provider" in config and config["provider"] not in (p.value for p in Provider):
        errors.append('provider must be "openai" or "anthropic"')

    return errors
