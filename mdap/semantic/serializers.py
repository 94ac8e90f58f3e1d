"""
Semantic serializers and presets.

A semantic serializer replaces exact-match vote keys with normalised keys,
so equivalent responses are counted as the same vote.
"""

from typing import Any, Callable, Optional

from mdap.semantic.similarity import SemanticConfig, prepare_text

Serializer = Callable[[Any], str]


def create_semantic_serializer(config: Optional[SemanticConfig] = None) -> Serializer:
    """
    Build a vote-key serializer from a semantic config.

    Example:
        serialize = create_semantic_serializer(SemanticConfig(json_aware=True))
        serialize('{ "b": 2, "a": 1 }')  # '{"a":1,"b":2}'
    """
    config = config or SemanticConfig()

    def serialize(response: Any) -> str:
        return prepare_text(response, config)

    return serialize


class SemanticPatterns:
    """Common semantic equivalence presets."""

    @staticmethod
    def json() -> SemanticConfig:
        """Ignore key order and formatting; exact after normalisation."""
        return SemanticConfig(json_aware=True, ignore_case=False, threshold=1.0)

    @staticmethod
    def case_insensitive() -> SemanticConfig:
        return SemanticConfig(ignore_case=True, ignore_whitespace=True, threshold=1.0)

    @staticmethod
    def fuzzy(threshold: float = 0.9) -> SemanticConfig:
        """Allow minor differences when clustering."""
        return SemanticConfig(ignore_case=True, ignore_whitespace=True, threshold=threshold)

    @staticmethod
    def natural(threshold: float = 0.85) -> SemanticConfig:
        """Looser matching for natural-language answers."""
        return SemanticConfig(ignore_case=True, ignore_whitespace=True, threshold=threshold)

    @staticmethod
    def exact() -> SemanticConfig:
        return SemanticConfig(ignore_case=False, ignore_whitespace=False, threshold=1.0)
