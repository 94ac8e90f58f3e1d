"""
Tests for the Consensus Engine.
"""

import itertools

import pytest

from mdap.consensus import (
    ConsensusEngine,
    NoValidSamplesError,
    VoteOptions,
    VoteTally,
    is_leader_guaranteed_to_win,
    reliable,
    should_terminate,
    vote,
    with_semantic_dedup,
)
from mdap.models import ResponseMeta, VoteConfig, VoteStrategy
from mdap.red_flags import RedFlag
from mdap.semantic import SemanticPatterns


def _tally(*keys):
    tally = VoteTally()
    for key in keys:
        tally.add(key, key)
    return tally


class TestVoteTally:
    """Tests for VoteTally ranking."""

    def test_ranked_by_count(self):
        tally = _tally("a", "b", "b", "c", "b", "c")
        assert tally.ranked() == [("b", 3), ("c", 2), ("a", 1)]

    def test_ties_keep_first_seen_order(self):
        tally = _tally("x", "y", "y", "x")
        assert tally.standings() == ("x", 2, 2)

    def test_empty(self):
        tally = VoteTally()
        assert tally.standings() is None
        assert tally.total == 0
        assert len(tally) == 0

    def test_representative_is_latest_response(self):
        tally = VoteTally()
        tally.add("k", {"v": 1})
        tally.add("k", {"v": 2})
        assert tally.representatives["k"] == {"v": 2}


class TestTermination:
    """Tests for the termination predicates."""

    def test_first_to_k(self):
        assert should_terminate(_tally("a", "a", "b"), 2, VoteStrategy.FIRST_TO_K) == "a"
        assert should_terminate(_tally("a", "b"), 2, VoteStrategy.FIRST_TO_K) is None

    def test_first_to_ahead_by_k(self):
        strategy = VoteStrategy.FIRST_TO_AHEAD_BY_K
        assert should_terminate(_tally("a", "a", "a", "b"), 2, strategy) == "a"
        assert should_terminate(_tally("a", "a", "b"), 2, strategy) is None

    def test_guaranteed_win_example(self):
        """Leader 5, runner-up 1, k=3, 2 samples left: 5 >= 3 + (1 + 2)."""
        tally = _tally(*["a"] * 5, "b")
        assert is_leader_guaranteed_to_win(tally, 3, VoteStrategy.FIRST_TO_AHEAD_BY_K, 2)
        assert not is_leader_guaranteed_to_win(tally, 3, VoteStrategy.FIRST_TO_AHEAD_BY_K, 3)

    def test_guaranteed_win_implies_natural_win(self):
        """Exhaustive over small tallies: the early exit always agrees with natural termination."""
        for strategy in VoteStrategy:
            for k in range(1, 6):
                for leader_votes, second, third in itertools.product(range(8), repeat=3):
                    tally = _tally(*["a"] * leader_votes, *["b"] * second, *["c"] * third)
                    for remaining in range(0, 8):
                        if is_leader_guaranteed_to_win(tally, k, strategy, remaining):
                            assert should_terminate(tally, k, strategy) == tally.standings()[0]


class TestConsensusEngine:
    """Tests for ConsensusEngine."""

    @pytest.mark.asyncio
    async def test_constant_oracle_converges_in_k_samples(self, scripted_oracle):
        oracle = scripted_oracle(["4"])

        result = await vote(oracle, "2 + 2", VoteOptions(vote={"k": 3}))

        assert result.converged is True
        assert result.winner == "4"
        assert result.total_samples == 3
        assert result.flagged_samples == 0
        assert result.confidence == 1.0
        assert result.votes == {"4": 3}
        assert oracle.inputs == ["2 + 2"] * 3

    @pytest.mark.asyncio
    async def test_constant_oracle_sequential(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["4"])

        result = await vote(oracle, "2 + 2", sequential_options(k=3))

        assert result.converged is True
        assert result.total_samples == 3

    @pytest.mark.asyncio
    async def test_too_long_samples_are_flagged(self, scripted_oracle):
        oracle = scripted_oracle(["x" * 1000, "x" * 1000], default="short")

        result = await vote(
            oracle,
            "prompt",
            VoteOptions(vote={"k": 3}, red_flags=[RedFlag.too_long(100)]),
        )

        assert result.converged is True
        assert result.winner == "short"
        assert result.flagged_samples == 2
        assert result.votes == {"short": 3}
        assert result.total_samples == 5

    @pytest.mark.asyncio
    async def test_all_flagged_raises(self, scripted_oracle):
        oracle = scripted_oracle([""])

        with pytest.raises(NoValidSamplesError, match="No valid samples after 5 attempts"):
            await vote(
                oracle,
                "prompt",
                VoteOptions(vote={"max_samples": 5}, red_flags=[RedFlag.empty_response()]),
            )
        assert oracle.calls == 5

    @pytest.mark.asyncio
    async def test_alternating_oracle_does_not_converge(self, scripted_oracle):
        oracle = scripted_oracle(["A", "B"] * 10)

        result = await vote(oracle, "prompt", VoteOptions(vote={"k": 10, "max_samples": 6}))

        assert result.converged is False
        assert result.total_samples == 6
        assert result.winner in ("A", "B")
        assert result.votes == {"A": 3, "B": 3}
        assert result.confidence == 0.5
        assert "did not converge after 6 samples" in result.warning

    @pytest.mark.asyncio
    async def test_tied_exhaustion_returns_first_seen(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["B", "A", "A", "B"])

        result = await vote(oracle, "prompt", sequential_options(k=5, max_samples=4))

        assert result.converged is False
        assert result.winner == "B"

    @pytest.mark.asyncio
    async def test_oracle_errors_count_as_flagged(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle([RuntimeError("timeout"), "ok", ValueError("bad"), "ok"])

        result = await vote(oracle, "prompt", sequential_options(k=2))

        assert result.converged is True
        assert result.winner == "ok"
        assert result.total_samples == 4
        assert result.flagged_samples == 2

    @pytest.mark.asyncio
    async def test_only_errors_raises(self, scripted_oracle):
        oracle = scripted_oracle([ConnectionError("down")])

        with pytest.raises(NoValidSamplesError):
            await vote(oracle, "prompt", VoteOptions(vote={"max_samples": 4}))

    @pytest.mark.asyncio
    async def test_first_to_k_ignores_margin(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["A", "B", "B", "A", "A"])

        result = await vote(
            oracle, "prompt", sequential_options(k=3, strategy=VoteStrategy.FIRST_TO_K)
        )

        assert result.winner == "A"
        assert result.total_samples == 5
        assert result.votes == {"A": 3, "B": 2}
        assert result.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_ahead_by_k_needs_margin(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["A", "B", "A", "A", "B", "A", "A"])

        result = await vote(oracle, "prompt", sequential_options(k=3))

        assert result.converged is True
        assert result.winner == "A"
        assert result.votes == {"A": 5, "B": 2}
        assert result.total_samples == 7

    @pytest.mark.asyncio
    async def test_structured_responses(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle([{"answer": 42}, {"answer": 41}, {"answer": 42}, {"answer": 42}])

        result = await vote(oracle, "prompt", sequential_options(k=2))

        assert result.winner == {"answer": 42}
        assert result.votes == {'{"answer": 42}': 3, '{"answer": 41}': 1}

    @pytest.mark.asyncio
    async def test_semantic_dedup_merges_variants(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(['{"a": 1, "b": 2}', '{ "b": 2, "a": 1 }', '{"a":1,"b":2}'])

        result = await vote(
            oracle,
            "prompt",
            with_semantic_dedup(sequential_options(k=3), SemanticPatterns.json()),
        )

        assert result.converged is True
        assert result.total_samples == 3
        assert list(result.votes.values()) == [3]

    @pytest.mark.asyncio
    async def test_custom_serializer(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["Paris", "paris.", "PARIS"])
        options = sequential_options(k=3).model_copy(
            update={"serialize": lambda r: r.strip(".").lower()}
        )

        result = await vote(oracle, "prompt", options)

        assert result.votes == {"paris": 3}
        assert result.winner == "PARIS"

    @pytest.mark.asyncio
    async def test_callbacks(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["", "yes", "yes"])
        flagged = []
        counted = []
        options = sequential_options(k=2).model_copy(update={
            "red_flags": [RedFlag.empty_response()],
            "on_flag": lambda response, rule: flagged.append((response, rule.name)),
            "on_sample": lambda response, votes: counted.append((response, votes)),
        })

        await vote(oracle, "prompt", options)

        assert flagged == [("", "emptyResponse")]
        assert counted == [("yes", 1), ("yes", 2)]

    @pytest.mark.asyncio
    async def test_token_counter_feeds_meta(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["one two three four five", "one", "one"])
        seen = []

        def over_budget(response, meta: ResponseMeta):
            seen.append(meta.tokens)
            return meta.tokens > 3

        options = sequential_options(k=2).model_copy(update={
            "red_flags": [RedFlag.custom("tooManyWords", over_budget)],
            "token_counter": lambda response: len(response.split()),
        })

        result = await vote(oracle, "prompt", options)

        assert seen == [5, 1, 1]
        assert result.flagged_samples == 1

    @pytest.mark.asyncio
    async def test_batches_respect_max_concurrency(self, scripted_oracle):
        oracle = scripted_oracle(["A", "B"] * 20, delay=0.001)

        result = await vote(
            oracle,
            "prompt",
            VoteOptions(vote={"k": 8, "max_samples": 20, "max_concurrency": 4, "continuation_batch": 3}),
        )

        assert oracle.max_in_flight <= 4
        assert result.total_samples == 20

    @pytest.mark.asyncio
    async def test_initial_batch_is_at_least_k(self, scripted_oracle):
        oracle = scripted_oracle(["A"], delay=0.001)

        result = await vote(
            oracle,
            "prompt",
            VoteOptions(vote={"k": 5, "initial_batch": 2, "max_concurrency": 10}),
        )

        assert oracle.max_in_flight == 5
        assert result.total_samples == 5

    @pytest.mark.asyncio
    async def test_sequential_draws_one_at_a_time(self, scripted_oracle, sequential_options):
        oracle = scripted_oracle(["A", "B", "A", "A", "A"], delay=0.001)

        await vote(oracle, "prompt", sequential_options(k=3))

        assert oracle.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_never_exceeds_max_samples(self, scripted_oracle):
        oracle = scripted_oracle(["A", "B", "C"] * 10)

        result = await vote(
            oracle,
            "prompt",
            VoteOptions(vote={"k": 5, "max_samples": 7, "initial_batch": 5, "continuation_batch": 5}),
        )

        assert oracle.calls == 7
        assert result.total_samples == 7

    @pytest.mark.asyncio
    async def test_early_termination_never_changes_outcome(self, scripted_oracle):
        """Every response sequence up to length 5 over three candidates."""
        for strategy in VoteStrategy:
            for k in range(1, 4):
                for length in range(1, 6):
                    for script in itertools.product("abc", repeat=length):
                        outcomes = []
                        for early in (True, False):
                            options = VoteOptions(vote={
                                "k": k,
                                "max_samples": length,
                                "parallel": False,
                                "strategy": strategy,
                                "early_termination": early,
                            })
                            result = await vote(scripted_oracle(script), "prompt", options)
                            outcomes.append((result.winner, result.converged, result.total_samples))
                        assert outcomes[0] == outcomes[1], (strategy, k, script)

    @pytest.mark.asyncio
    async def test_engine_is_reusable(self, scripted_oracle):
        engine = ConsensusEngine(VoteOptions(vote={"k": 2}))

        first = await engine.run(scripted_oracle(["x"]), "one")
        second = await engine.run(scripted_oracle(["y"]), "two")

        assert first.winner == "x"
        assert second.winner == "y"
        assert second.votes == {"y": 2}

    @pytest.mark.asyncio
    async def test_reliable_decorator(self, scripted_oracle):
        oracle = scripted_oracle(["42"])

        @reliable(VoteOptions(vote={"k": 2}))
        async def answer(question):
            return await oracle(question)

        result = await answer("meaning of life?")

        assert result.winner == "42"
        assert result.converged is True
        assert answer.__name__ == "answer"


class TestVoteConfig:
    """Tests for VoteConfig validation."""

    def test_defaults(self):
        config = VoteConfig()
        assert config.k == 3
        assert config.max_samples == 100
        assert config.strategy == VoteStrategy.FIRST_TO_AHEAD_BY_K
        assert config.early_termination is True

    @pytest.mark.parametrize("field", ["k", "max_samples", "max_concurrency"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValueError):
            VoteConfig(**{field: 0})

    def test_merged(self):
        config = VoteConfig(k=5).merged({"max_samples": 10})
        assert config.k == 5
        assert config.max_samples == 10

    def test_frozen(self):
        config = VoteConfig()
        with pytest.raises(ValueError):
            config.k = 10
