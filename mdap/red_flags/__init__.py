"""
Red Flag Gate for MDAP voting.

Stateless predicates that reject a sample before it can vote.

Components:
- RedFlagRule: Base class for rules
- RedFlag: Factories for the built-in rules
- parse_red_flag(s): Build rules from string/dict specifications
"""

from mdap.red_flags.base import RedFlagRule, check_all, first_flag
from mdap.red_flags.parser import (
    DEFAULT_RED_FLAGS,
    RedFlagInput,
    get_default_red_flags,
    parse_red_flag,
    parse_red_flags,
    parse_rule_names,
)
from mdap.red_flags.rules import (
    ContainsPhraseRule,
    CustomRule,
    EmptyResponseRule,
    InvalidJsonRule,
    PatternRule,
    RedFlag,
    TooLongRule,
)

__all__ = [
    # Base
    "RedFlagRule",
    "first_flag",
    "check_all",
    # Built-ins
    "RedFlag",
    "TooLongRule",
    "EmptyResponseRule",
    "InvalidJsonRule",
    "PatternRule",
    "ContainsPhraseRule",
    "CustomRule",
    # Parsing
    "RedFlagInput",
    "DEFAULT_RED_FLAGS",
    "get_default_red_flags",
    "parse_red_flag",
    "parse_red_flags",
    "parse_rule_names",
]
