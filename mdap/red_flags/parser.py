"""
Red flag specifications from config files, CLI flags and API payloads.

String format:
    "tooLong:750"                    flag if > 750 tokens
    "emptyResponse"                  flag if empty
    "invalidJson"                    flag if not valid JSON
    "mustMatch:^\\{.*\\}$"           flag unless the regex matches
    "mustNotMatch:error|failed"      flag if the regex matches
    "containsPhrase:I cannot,I'm not sure"

Dict format:
    {"type": "tooLong", "value": 750}
    {"type": "mustMatch", "pattern": "^\\{.*\\}$"}
    {"type": "containsPhrase", "phrases": ["I cannot"]}
"""

import re
from typing import Iterable, Union

from mdap.red_flags.base import RedFlagRule
from mdap.red_flags.rules import RedFlag

RedFlagInput = Union[str, dict]

DEFAULT_MAX_TOKENS = 750
DEFAULT_RED_FLAGS: list[RedFlagInput] = ["tooLong:750", "emptyResponse"]


def get_default_red_flags() -> list[RedFlagInput]:
    return list(DEFAULT_RED_FLAGS)


def parse_red_flag(spec: RedFlagInput) -> RedFlagRule:
    """
    Parse a single red flag specification into a rule.

    Raises:
        ValueError: On unknown rule types or missing arguments
    """
    if isinstance(spec, str):
        rule_type, sep, value = spec.partition(":")
        if not sep or not rule_type:
            rule_type, value = spec, ""
        return _build(rule_type, value=value or None, pattern=value or None,
                      phrases=[p.strip() for p in value.split(",")] if value else None)

    if isinstance(spec, dict):
        rule_type = spec.get("type")
        if not rule_type:
            raise ValueError("Red flag object requires a 'type'")
        return _build(
            rule_type,
            value=spec.get("value"),
            pattern=spec.get("pattern"),
            phrases=spec.get("phrases"),
        )

    raise ValueError(f"Unsupported red flag specification: {spec!r}")


def parse_red_flags(specs: Iterable[RedFlagInput]) -> list[RedFlagRule]:
    return [parse_red_flag(spec) for spec in specs]


def _build(rule_type: str, value=None, pattern=None, phrases=None) -> RedFlagRule:
    if rule_type == "tooLong":
        if value is None:
            return RedFlag.too_long(DEFAULT_MAX_TOKENS)
        try:
            return RedFlag.too_long(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"tooLong requires an integer token limit, got {value!r}") from None
    if rule_type == "emptyResponse":
        return RedFlag.empty_response()
    if rule_type == "invalidJson":
        return RedFlag.invalid_json()
    if rule_type == "mustMatch":
        if not pattern:
            raise ValueError("mustMatch requires a pattern: mustMatch:regex")
        return RedFlag.must_match(_compile(pattern))
    if rule_type == "mustNotMatch":
        if not pattern:
            raise ValueError("mustNotMatch requires a pattern: mustNotMatch:regex")
        return RedFlag.must_not_match(_compile(pattern))
    if rule_type == "containsPhrase":
        if not phrases:
            raise ValueError("containsPhrase requires phrases: containsPhrase:phrase1,phrase2")
        return RedFlag.contains_phrase(phrases)
    raise ValueError(f"Unknown red flag type: {rule_type}")


def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid regex {pattern!r}: {e}") from None


def parse_rule_names(
    names: Iterable[str],
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> tuple[list[RedFlagRule], list[str]]:
    """
    Build rules from bare names such as "tooLong" or "invalidJson".

    A bare "tooLong" uses `max_tokens`. Returns the rules and the names that
    could not be parsed.
    """
    rules: list[RedFlagRule] = []
    rejected: list[str] = []
    for name in names:
        name = name.strip()
        if not name:
            continue
        spec = f"tooLong:{max_tokens}" if name == "tooLong" else name
        try:
            rules.append(parse_red_flag(spec))
        except ValueError:
            rejected.append(name)
    return rules, rejected
