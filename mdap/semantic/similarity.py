"""
Semantic Equivalence

Groups responses that mean the same thing even when they are not
byte-identical: normalises case and whitespace, canonicalises JSON, and
scores fuzzy text similarity for offline clustering.
"""

import json
import re
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from mdap.semantic.canonical import to_canonical_json

SimilarityFunction = Callable[[Any, Any], float]
NormalizeFunction = Callable[[Any], str]

_WHITESPACE = re.compile(r"\s+")

# Blend weights for combined_similarity()
CHAR_WEIGHT = 0.4
TOKEN_WEIGHT = 0.6


class SemanticConfig(BaseModel):
    """Configuration for semantic deduplication."""

    # Responses with similarity >= threshold are considered equivalent
    threshold: float = Field(default=0.9, ge=0.0, le=1.0)

    similarity: Optional[SimilarityFunction] = Field(None, description="Custom similarity function")
    normalize: Optional[NormalizeFunction] = Field(None, description="Applied before comparison")

    json_aware: bool = Field(default=False, description="Canonicalise JSON before comparison")
    ignore_case: bool = Field(default=True)
    ignore_whitespace: bool = Field(default=True)


def normalize_string(s: str, ignore_case: bool = True, ignore_whitespace: bool = True) -> str:
    """Collapse whitespace runs and optionally lowercase."""
    if ignore_whitespace:
        s = _WHITESPACE.sub(" ", s).strip()
    if ignore_case:
        s = s.lower()
    return s


def normalize_json(s: str, ignore_case: bool = True) -> str:
    """Canonical JSON for parseable input, plain string normalisation otherwise."""
    try:
        parsed = json.loads(s)
    except (TypeError, ValueError):
        return normalize_string(s, ignore_case, True)

    normalized = to_canonical_json(parsed)
    return normalized.lower() if ignore_case else normalized


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit-cost insertions, deletions and substitutions."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row dynamic programme over the shorter string
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """1 - normalised edit distance."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def token_similarity(a: str, b: str) -> float:
    """Jaccard similarity of lowercased whitespace-separated words."""
    tokens_a = set(a.lower().split())
    tokens_b = set(b.lower().split())

    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0

    intersection = len(tokens_a & tokens_b)
    union = len(tokens_a | tokens_b)
    return intersection / union


def combined_similarity(a: str, b: str) -> float:
    return string_similarity(a, b) * CHAR_WEIGHT + token_similarity(a, b) * TOKEN_WEIGHT


def prepare_text(value: Any, config: SemanticConfig) -> str:
    """
    Comparison text for a response under `config`.

    In JSON-aware mode, structured values (dicts, lists, models) are
    canonicalised directly rather than through their Python repr.
    """
    if config.normalize:
        value = config.normalize(value)
    if config.json_aware:
        if isinstance(value, str):
            return normalize_json(value, config.ignore_case)
        try:
            normalized = to_canonical_json(value)
        except (TypeError, ValueError):
            return normalize_string(str(value), config.ignore_case, True)
        return normalized.lower() if config.ignore_case else normalized
    return normalize_string(str(value), config.ignore_case, config.ignore_whitespace)


def create_similarity_function(config: Optional[SemanticConfig] = None) -> SimilarityFunction:
    """
    Build a similarity function (0 = unrelated, 1 = equivalent).

    A custom `similarity` in the config is returned as-is.
    """
    config = config or SemanticConfig()
    if config.similarity is not None:
        return config.similarity

    def similarity(a: Any, b: Any) -> float:
        str_a = prepare_text(a, config)
        str_b = prepare_text(b, config)
        if str_a == str_b:
            return 1.0
        return combined_similarity(str_a, str_b)

    return similarity


class SemanticCluster(BaseModel):
    """A group of equivalent responses."""

    canonical: Any = Field(..., description="First response that opened the cluster")
    members: list[Any] = Field(default_factory=list)
    votes: int = Field(default=0)


def cluster_responses(
    responses: list[Any],
    config: Optional[SemanticConfig] = None,
) -> list[SemanticCluster]:
    """
    Greedy single-linkage clustering.

    Each response joins the first cluster whose canonical member is at least
    `threshold` similar, otherwise it opens a new cluster. Clusters are
    returned largest first; equal-sized clusters keep their creation order.
    """
    config = config or SemanticConfig()
    similarity = create_similarity_function(config)

    clusters: list[SemanticCluster] = []
    for response in responses:
        for cluster in clusters:
            if similarity(response, cluster.canonical) >= config.threshold:
                cluster.members.append(response)
                cluster.votes += 1
                break
        else:
            clusters.append(SemanticCluster(canonical=response, members=[response], votes=1))

    clusters.sort(key=lambda c: c.votes, reverse=True)
    return clusters
