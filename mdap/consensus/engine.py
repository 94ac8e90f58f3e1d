"""
Consensus Engine

Drives repeated calls to a stochastic oracle and decides which output is
correct using first-to-k or first-to-ahead-by-k voting.

Each batch of draws runs as one asyncio.gather group. The tally is only
touched after the whole batch has completed, on the single control path
that also runs the termination check, so no locking is needed.
"""

import asyncio
import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from mdap.consensus.options import VoteOptions
from mdap.models import ResponseMeta, VoteConfig, VoteResult, VoteStrategy
from mdap.red_flags import first_flag
from mdap.semantic import default_serialize

logger = structlog.get_logger()

OracleCall = Callable[[Any], Awaitable[Any]]


class NoValidSamplesError(RuntimeError):
    """Every draw in the sample budget was flagged or raised."""

    def __init__(self, max_samples: int):
        self.max_samples = max_samples
        super().__init__(
            f"No valid samples after {max_samples} attempts. All were flagged."
        )


class VoteTally:
    """
    Vote counts per canonical key, plus one representative response per key.

    Keys iterate in insertion order. Ranking is a stable sort by count, so
    among tied candidates the key seen first ranks higher.
    """

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.representatives: dict[str, Any] = {}

    def add(self, key: str, response: Any) -> int:
        count = self.counts.get(key, 0) + 1
        self.counts[key] = count
        self.representatives[key] = response
        return count

    def ranked(self) -> list[tuple[str, int]]:
        return sorted(self.counts.items(), key=lambda item: item[1], reverse=True)

    def standings(self) -> Optional[tuple[str, int, int]]:
        """(leader key, leader votes, runner-up votes), or None when empty."""
        ranked = self.ranked()
        if not ranked:
            return None
        leader, leader_votes = ranked[0]
        second = ranked[1][1] if len(ranked) > 1 else 0
        return leader, leader_votes, second

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __len__(self) -> int:
        return len(self.counts)


def should_terminate(tally: VoteTally, k: int, strategy: VoteStrategy) -> Optional[str]:
    """Return the winning key if the strategy's win condition holds."""
    standings = tally.standings()
    if standings is None:
        return None
    leader, leader_votes, second = standings

    if strategy == VoteStrategy.FIRST_TO_K:
        return leader if leader_votes >= k else None
    return leader if leader_votes >= k + second else None


def is_leader_guaranteed_to_win(
    tally: VoteTally,
    k: int,
    strategy: VoteStrategy,
    remaining_samples: int,
) -> bool:
    """
    True if the leader wins even if every remaining sample goes to the
    runner-up.

    With remaining_samples >= 0 this implies should_terminate() returns the
    same leader, so stopping here never changes the winner.
    """
    standings = tally.standings()
    if standings is None:
        return False
    _, leader_votes, second = standings

    if strategy == VoteStrategy.FIRST_TO_K:
        return leader_votes >= k
    return leader_votes >= k + second + max(remaining_samples, 0)


@dataclass
class _Draw:
    """Outcome of one oracle call, before it is folded into the tally."""

    response: Any = None
    meta: Optional[ResponseMeta] = None
    error: Optional[BaseException] = None


class ConsensusEngine:
    """
    Voting engine for unreliable oracles.

    One engine may run many votes, concurrently or not; every call to run()
    owns its own tally.

    Usage:
        engine = ConsensusEngine(VoteOptions(vote={"k": 3}))
        result = await engine.run(oracle_call, "What is 2 + 2?")
    """

    def __init__(self, options: Optional[VoteOptions] = None):
        self.options = options or VoteOptions()
        self.config: VoteConfig = self.options.vote
        self.serialize = self.options.serialize or default_serialize

    async def run(self, oracle_call: OracleCall, input: Any) -> VoteResult:
        """
        Sample the oracle until a candidate wins or the budget runs out.

        Raises:
            NoValidSamplesError: If max_samples draws produced no vote
        """
        cfg = self.config
        tally = VoteTally()
        counters = {"total": 0, "flagged": 0}

        if self.options.debug:
            logger.debug(
                "Starting vote",
                k=cfg.k,
                strategy=cfg.strategy.value,
                max_samples=cfg.max_samples,
                parallel=cfg.parallel,
            )

        if cfg.parallel:
            first_batch = min(max(cfg.initial_batch, cfg.k), cfg.max_concurrency, cfg.max_samples)
        else:
            first_batch = 1
        await self._draw_batch(oracle_call, input, first_batch, tally, counters)

        while True:
            winner = should_terminate(tally, cfg.k, cfg.strategy)
            if winner is not None:
                return self._result(tally, winner, counters, converged=True)

            remaining = cfg.max_samples - counters["total"]
            if cfg.early_termination and is_leader_guaranteed_to_win(
                tally, cfg.k, cfg.strategy, remaining
            ):
                leader = tally.standings()[0]
                logger.info(
                    "Early termination: leader guaranteed to win",
                    leader_votes=tally.counts[leader],
                    remaining=remaining,
                )
                return self._result(tally, leader, counters, converged=True)

            if remaining <= 0:
                break

            if cfg.parallel and cfg.continuation_batch > 1:
                batch = min(cfg.continuation_batch, cfg.max_concurrency, remaining)
            else:
                batch = 1
            await self._draw_batch(oracle_call, input, batch, tally, counters)

        standings = tally.standings()
        if standings is None:
            logger.error("No valid samples", max_samples=cfg.max_samples)
            raise NoValidSamplesError(cfg.max_samples)

        result = self._result(tally, standings[0], counters, converged=False)
        result.warning = (
            f"Vote did not converge after {cfg.max_samples} samples. "
            f"Returning best candidate with {round(result.confidence * 100)}% confidence. "
            "Consider: 1) Improving prompt for convergence, "
            "2) Increasing max_samples, 3) Using structured output (JSON)."
        )
        logger.warning(
            "Vote did not converge",
            total_samples=result.total_samples,
            flagged_samples=result.flagged_samples,
            candidates=len(tally),
            confidence=f"{result.confidence:.1%}",
        )
        return result

    async def _draw(self, oracle_call: OracleCall, input: Any) -> _Draw:
        started = time.perf_counter()
        try:
            response = await oracle_call(input)
        except Exception as e:
            return _Draw(error=e)

        meta = ResponseMeta(
            tokens=self.options.token_counter(response) if self.options.token_counter else None,
            raw_text=response if isinstance(response, str) else None,
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        return _Draw(response=response, meta=meta)

    async def _draw_batch(
        self,
        oracle_call: OracleCall,
        input: Any,
        size: int,
        tally: VoteTally,
        counters: dict[str, int],
    ) -> None:
        """Run `size` draws concurrently, then fold them into the tally in order."""
        if size == 1:
            draws = [await self._draw(oracle_call, input)]
        else:
            draws = await asyncio.gather(*(self._draw(oracle_call, input) for _ in range(size)))

        for draw in draws:
            counters["total"] += 1
            sample_no = counters["total"]

            if draw.error is not None:
                counters["flagged"] += 1
                if self.options.debug:
                    logger.debug("Sample errored", sample=sample_no, error=str(draw.error))
                continue

            rule = first_flag(draw.response, self.options.red_flags, draw.meta, self.options.on_flag)
            if rule is not None:
                counters["flagged"] += 1
                if self.options.debug:
                    logger.debug("Sample flagged", sample=sample_no, rule=rule.name)
                continue

            key = self.serialize(draw.response)
            votes = tally.add(key, draw.response)

            if self.options.on_sample is not None:
                self.options.on_sample(draw.response, votes)

            if self.options.debug:
                logger.debug("Sample counted", sample=sample_no, key=key[:50], votes=votes)

    def _result(
        self,
        tally: VoteTally,
        winner: str,
        counters: dict[str, int],
        converged: bool,
    ) -> VoteResult:
        winner_votes = tally.counts[winner]
        result = VoteResult(
            winner=tally.representatives[winner],
            confidence=winner_votes / tally.total,
            total_samples=counters["total"],
            flagged_samples=counters["flagged"],
            votes=dict(tally.counts),
            converged=converged,
        )
        if converged:
            logger.info(
                "Vote converged",
                winner_votes=winner_votes,
                total_samples=result.total_samples,
                flagged_samples=result.flagged_samples,
                confidence=f"{result.confidence:.1%}",
            )
        return result


async def vote(
    oracle_call: OracleCall,
    input: Any,
    options: Optional[VoteOptions] = None,
) -> VoteResult:
    """
    Run one vote.

    Args:
        oracle_call: Async single-argument function to sample
        input: Passed to every oracle call
        options: Vote parameters, red flags, serializer and callbacks

    Returns:
        VoteResult; check `converged` before trusting `winner`
    """
    return await ConsensusEngine(options).run(oracle_call, input)


def reliable(options: Optional[VoteOptions] = None):
    """
    Wrap an oracle so every call runs a vote.

    Example:
        @reliable(VoteOptions(vote={"k": 3}, red_flags=[RedFlag.too_long(750)]))
        async def extract(text: str) -> str:
            return await adapter.chat(f"Extract JSON from: {text}")

        result = await extract("Some document...")
        result.winner, result.confidence
    """
    engine = ConsensusEngine(options)

    def decorator(oracle_call: OracleCall) -> Callable[[Any], Awaitable[VoteResult]]:
        @functools.wraps(oracle_call)
        async def wrapper(input: Any) -> VoteResult:
            return await engine.run(oracle_call, input)

        return wrapper

    return decorator
