"""
Tests for response canonicalization and semantic matching.
"""

from datetime import datetime
from enum import Enum

import pytest
from pydantic import BaseModel

from mdap.semantic import (
    SemanticConfig,
    SemanticPatterns,
    cluster_responses,
    combined_similarity,
    create_semantic_serializer,
    create_similarity_function,
    default_serialize,
    levenshtein_distance,
    normalize_json,
    normalize_string,
    string_similarity,
    to_canonical_json,
    token_similarity,
)


class Color(Enum):
    RED = "red"


class Answer(BaseModel):
    value: int
    unit: str


class TestDefaultSerialize:
    """Tests for the default vote key."""

    def test_strings_pass_through(self):
        assert default_serialize("  Hello ") == "  Hello "

    def test_structured_values(self):
        assert default_serialize({"a": 1}) == '{"a": 1}'
        assert default_serialize([1, "two"]) == '[1, "two"]'
        assert default_serialize(3) == "3"

    def test_models_are_dumped(self):
        assert default_serialize(Answer(value=4, unit="m")) == '{"value": 4, "unit": "m"}'

    def test_unencodable_falls_back_to_str(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        assert default_serialize(Opaque()) == "opaque"

    def test_none(self):
        assert default_serialize(None) == "None"


class TestCanonicalJSON:
    """Tests for canonical JSON encoding."""

    def test_sorted_compact(self):
        assert to_canonical_json({"b": 2, "a": [1, {"d": 4, "c": 3}]}) == '{"a":[1,{"c":3,"d":4}],"b":2}'

    def test_extended_types(self):
        data = {"when": datetime(2024, 1, 2, 3, 4, 5), "color": Color.RED, "tags": {"y", "x"}}
        assert to_canonical_json(data) == '{"color":"red","tags":["x","y"],"when":"2024-01-02T03:04:05"}'

    def test_non_ascii_kept(self):
        assert to_canonical_json({"city": "Zürich"}) == '{"city":"Zürich"}'


class TestNormalization:
    """Tests for normalisation helpers."""

    def test_whitespace_insensitive(self):
        assert normalize_string("hello  world") == normalize_string("hello world")

    def test_case(self):
        assert normalize_string("Hello", ignore_case=False) == "Hello"
        assert normalize_string("Hello") == "hello"

    def test_json_key_order(self):
        a = normalize_json('{"name":"John","age":30}')
        b = normalize_json('{"age":30,"name":"John"}')
        assert a == b

    def test_json_falls_back_to_string(self):
        assert normalize_json("Not   JSON") == "not json"


class TestSemanticSerializer:
    """Tests for semantic vote keys."""

    def test_json_aware(self):
        serialize = create_semantic_serializer(SemanticConfig(json_aware=True))
        assert serialize('{"name":"John","age":30}') == serialize('{ "age": 30, "name": "John" }')

    def test_whitespace_insensitive(self):
        serialize = create_semantic_serializer(SemanticConfig())
        assert serialize("hello  world") == serialize("hello world")
        assert serialize("Hello World") == "hello world"

    def test_exact_preset_keeps_differences(self):
        serialize = create_semantic_serializer(SemanticPatterns.exact())
        assert serialize("Hello") != serialize("hello")

    def test_custom_normalize(self):
        serialize = create_semantic_serializer(SemanticConfig(normalize=lambda r: r["text"]))
        assert serialize({"text": "YES"}) == "yes"

    def test_json_aware_structured_values(self):
        serialize = create_semantic_serializer(SemanticConfig(json_aware=True))

        first = serialize({"name": "John", "age": 30})
        second = serialize({"age": 30, "name": "John"})

        assert first == second == '{"age":30,"name":"john"}'
        assert serialize([1, {"b": 2, "a": 1}]) == '[1,{"a":1,"b":2}]'

    def test_json_aware_keeps_case(self):
        serialize = create_semantic_serializer(SemanticPatterns.json())
        assert serialize({"name": "John"}) == '{"name":"John"}'


class TestSimilarity:
    """Tests for similarity scoring."""

    @pytest.mark.parametrize(
        "a,b,expected",
        [("kitten", "sitting", 3), ("", "abc", 3), ("abc", "", 3), ("flaw", "lawn", 2), ("same", "same", 0)],
    )
    def test_levenshtein(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_string_similarity(self):
        assert string_similarity("abc", "abc") == 1.0
        assert string_similarity("", "abc") == 0.0
        assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_token_similarity(self):
        assert token_similarity("the cat sat", "The cat ran") == pytest.approx(2 / 4)
        assert token_similarity("", "") == 1.0
        assert token_similarity("a", "") == 0.0

    def test_combined_weights(self):
        a, b = "the cat sat", "the cat ran"
        expected = 0.4 * string_similarity(a, b) + 0.6 * token_similarity(a, b)
        assert combined_similarity(a, b) == pytest.approx(expected)

    def test_normalized_equal_is_one(self):
        similarity = create_similarity_function()
        assert similarity("Hello   World", "hello world") == 1.0

    def test_json_aware_dicts_equal(self):
        similarity = create_similarity_function(SemanticConfig(json_aware=True))
        assert similarity({"a": 1, "b": 2}, {"b": 2, "a": 1}) == 1.0

    def test_custom_similarity_used(self):
        custom = lambda a, b: 0.5  # noqa: E731
        assert create_similarity_function(SemanticConfig(similarity=custom)) is custom


class TestClustering:
    """Tests for greedy clustering."""

    def test_clusters_sorted_by_size(self):
        responses = ["Paris", "London", "paris", "PARIS ", "London"]

        clusters = cluster_responses(responses)

        assert [c.votes for c in clusters] == [3, 2]
        assert clusters[0].canonical == "Paris"
        assert clusters[0].members == ["Paris", "paris", "PARIS "]
        assert clusters[1].canonical == "London"

    def test_threshold(self):
        responses = ["the answer is 42", "the answer is 43"]

        assert len(cluster_responses(responses, SemanticPatterns.exact())) == 2
        assert len(cluster_responses(responses, SemanticPatterns.fuzzy(0.5))) == 1

    def test_equal_sizes_keep_creation_order(self):
        clusters = cluster_responses(["b", "a"], SemanticPatterns.exact())
        assert [c.canonical for c in clusters] == ["b", "a"]

    def test_empty(self):
        assert cluster_responses([]) == []
