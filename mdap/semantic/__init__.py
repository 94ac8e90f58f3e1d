"""
Response Canonicalizer for MDAP voting.

Maps raw samples to comparable vote keys.

Components:
- default_serialize: Exact-match keys (strings as-is, JSON otherwise)
- create_semantic_serializer: Case/whitespace/JSON-insensitive keys
- cluster_responses: Offline fuzzy clustering of responses
"""

from mdap.semantic.canonical import (
    CanonicalJSONEncoder,
    default_serialize,
    to_canonical_json,
)
from mdap.semantic.serializers import (
    SemanticPatterns,
    Serializer,
    create_semantic_serializer,
)
from mdap.semantic.similarity import (
    SemanticCluster,
    SemanticConfig,
    cluster_responses,
    combined_similarity,
    create_similarity_function,
    levenshtein_distance,
    normalize_json,
    normalize_string,
    string_similarity,
    token_similarity,
)

__all__ = [
    # Serialization
    "CanonicalJSONEncoder",
    "Serializer",
    "default_serialize",
    "to_canonical_json",
    "create_semantic_serializer",
    "SemanticPatterns",
    # Similarity
    "SemanticConfig",
    "SemanticCluster",
    "cluster_responses",
    "create_similarity_function",
    "combined_similarity",
    "levenshtein_distance",
    "string_similarity",
    "token_similarity",
    "normalize_json",
    "normalize_string",
]
