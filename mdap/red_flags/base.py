"""
Red Flag Framework - Base class for sample rejection rules.

A red flag rule inspects a single response and decides whether it should be
discarded before it can vote. Rules are stateless and safe to share between
concurrent votes.

To add a new rule:
  1. Subclass RedFlagRule, implement check()
  2. Give it a descriptive name for diagnostics
  3. Expose a factory in mdap/red_flags/rules.py
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional, Sequence

from mdap.models import ResponseMeta


class RedFlagRule(ABC):
    """Abstract base class for all red flag rules."""

    name: str = ""

    @abstractmethod
    def check(self, response: Any, meta: Optional[ResponseMeta] = None) -> bool:
        """Return True to flag (discard) the response."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def first_flag(
    response: Any,
    rules: Sequence[RedFlagRule],
    meta: Optional[ResponseMeta] = None,
    on_flag: Optional[Callable[[Any, RedFlagRule], None]] = None,
) -> Optional[RedFlagRule]:
    """
    Evaluate rules in order and return the first one that flags.

    Args:
        response: The sample to check
        rules: Rules in evaluation order
        meta: Optional per-sample metadata
        on_flag: Called with (response, rule) when a rule fires

    Returns:
        The rule that flagged the response, or None if it passed
    """
    for rule in rules:
        if rule.check(response, meta):
            if on_flag is not None:
                on_flag(response, rule)
            return rule
    return None


def check_all(
    response: Any,
    rules: Iterable[RedFlagRule],
    meta: Optional[ResponseMeta] = None,
) -> list[tuple[str, bool]]:
    """Run every rule (no short-circuit) and return (rule name, flagged) pairs."""
    return [(rule.name, bool(rule.check(response, meta))) for rule in rules]
