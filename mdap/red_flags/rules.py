"""
Built-in Red Flag Rules

A confused model tends to ramble, drop the requested format, or hedge.
These rules catch those symptoms so the sample is discarded instead of
repaired.
"""

import json
import re
from typing import Any, Callable, Iterable, Optional, Union

from mdap.models import ResponseMeta
from mdap.red_flags.base import RedFlagRule

# Rough estimate: 1 token ~ 4 characters
CHARS_PER_TOKEN = 4

Pattern = Union[str, re.Pattern]


class TooLongRule(RedFlagRule):
    """Flags responses over a token budget (characters when tokens are unknown)."""

    def __init__(self, max_tokens: int = 750, max_chars: Optional[int] = None):
        self.max_tokens = max_tokens
        self.max_chars = max_chars if max_chars is not None else max_tokens * CHARS_PER_TOKEN
        self.name = f"tooLong({max_tokens} tokens)"

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        if meta is not None and meta.tokens is not None:
            return meta.tokens > self.max_tokens
        return len(str(response)) > self.max_chars


class EmptyResponseRule(RedFlagRule):
    """Flags empty or whitespace-only responses."""

    name = "emptyResponse"

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        return response is None or len(str(response).strip()) == 0


class InvalidJsonRule(RedFlagRule):
    """Flags responses that do not parse as JSON. Any JSON value is accepted."""

    name = "invalidJson"

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        try:
            json.loads(response)
        except (TypeError, ValueError):
            return True
        return False


class PatternRule(RedFlagRule):
    """Flags on a regular expression search over the raw text."""

    def __init__(self, pattern: Pattern, must_match: bool, name: Optional[str] = None):
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.must_match = must_match
        prefix = "mustMatch" if must_match else "mustNotMatch"
        self.name = name or f"{prefix}({self.pattern.pattern})"

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        found = self.pattern.search(str(response)) is not None
        return not found if self.must_match else found


class ContainsPhraseRule(RedFlagRule):
    """Flags responses containing any of the given phrases (case-insensitive)."""

    def __init__(self, phrases: Iterable[str]):
        phrases = list(phrases)
        self.phrases = [p.lower() for p in phrases]
        shown = ", ".join(phrases[:2])
        suffix = "..." if len(phrases) > 2 else ""
        self.name = f"containsPhrase([{shown}{suffix}])"

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        lowered = str(response).lower()
        return any(phrase in lowered for phrase in self.phrases)


class CustomRule(RedFlagRule):
    """Wraps a caller-supplied predicate."""

    def __init__(self, name: str, predicate: Callable[[Any, Optional[ResponseMeta]], bool]):
        self.name = name
        self.predicate = predicate

    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        return bool(self.predicate(response, meta))


def too_long(max_tokens: int = 750, max_chars: Optional[int] = None) -> RedFlagRule:
    return TooLongRule(max_tokens, max_chars)


def empty_response() -> RedFlagRule:
    return EmptyResponseRule()


def invalid_json() -> RedFlagRule:
    return InvalidJsonRule()


def must_match(pattern: Pattern, name: Optional[str] = None) -> RedFlagRule:
    """Flag responses that do NOT match the pattern."""
    return PatternRule(pattern, must_match=True, name=name)


def must_not_match(pattern: Pattern, name: Optional[str] = None) -> RedFlagRule:
    """Flag responses that match the pattern."""
    return PatternRule(pattern, must_match=False, name=name)


def contains_phrase(phrases: Iterable[str]) -> RedFlagRule:
    return ContainsPhraseRule(phrases)


def custom(name: str, predicate: Callable[[Any, Optional[ResponseMeta]], bool]) -> RedFlagRule:
    return CustomRule(name, predicate)


class RedFlag:
    """Namespace for the built-in rule factories."""

    too_long = staticmethod(too_long)
    empty_response = staticmethod(empty_response)
    invalid_json = staticmethod(invalid_json)
    must_match = staticmethod(must_match)
    must_not_match = staticmethod(must_not_match)
    contains_phrase = staticmethod(contains_phrase)
    custom = staticmethod(custom)
