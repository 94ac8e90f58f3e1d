"""
Pytest fixtures for MDAP tests.
"""

import asyncio
from typing import Any, Iterable, Optional

import pytest

from mdap.adapters.base import BaseAdapter
from mdap.consensus import VoteOptions


class ScriptedOracle:
    """
    Oracle that replays a script of responses in call order.

    Exception instances in the script are raised instead of returned. Once
    the script runs out, `default` is returned (or the last entry repeats).
    """

    def __init__(self, script: Iterable[Any], default: Any = None, delay: float = 0.0):
        self.script = list(script)
        self.default = default
        self.delay = delay
        self.calls = 0
        self.inputs: list[Any] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, input: Any) -> Any:
        index = self.calls
        self.calls += 1
        self.inputs.append(input)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if index < len(self.script):
            value = self.script[index]
        elif self.default is not None:
            value = self.default
        else:
            value = self.script[-1]

        if isinstance(value, BaseException):
            raise value
        return value


class FakeAdapter(BaseAdapter):
    """In-memory adapter replaying canned completions."""

    def __init__(self, responses: Iterable[Any], model: str = "gpt-4.1-mini"):
        self.oracle = ScriptedOracle(responses)
        self.model = model
        self.prompts: list[tuple[str, Optional[str]]] = []
        self.closed = False

    @property
    def model_name(self) -> str:
        return self.model

    async def chat(self, prompt: str, system: Optional[str] = None) -> str:
        self.prompts.append((prompt, system))
        return await self.oracle(prompt)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_oracle():
    """Factory for ScriptedOracle instances."""
    return ScriptedOracle


@pytest.fixture
def fake_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter


@pytest.fixture
def sequential_options():
    """Vote options drawing one sample at a time."""

    def build(**vote: Any) -> VoteOptions:
        return VoteOptions(vote={"parallel": False, **vote})

    return build


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run in an empty directory with no MDAP or provider variables set."""
    for name in (
        "MDAP_PROVIDER",
        "MDAP_MODEL",
        "MDAP_API_KEY",
        "MDAP_K",
        "MDAP_MAX_SAMPLES",
        "MDAP_TEMPERATURE",
        "MDAP_MAX_TOKENS",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
