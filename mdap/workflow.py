"""
Workflow orchestration

Chains voting steps so the winner of one step becomes the input of the
next. Each step is an oracle sampled through the consensus engine.

Usage:
    wf = (
        Workflow("extract-and-classify", VoteOptions(vote={"k": 3}))
        .step("extract", extract_entities)
        .step("classify", classify_entities, retry=RetryPolicy(max_attempts=2))
    )
    result = await wf.run(document)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
import structlog

from mdap.consensus import ConsensusEngine, VoteOptions
from mdap.models import VoteResult
from mdap.tracking import RunTracker

logger = structlog.get_logger()

StepFunction = Callable[[Any], Awaitable[Any]]


class RetryPolicy(BaseModel):
    """Re-run a whole step when its vote raises."""

    max_attempts: int = Field(default=1, ge=1)
    delay_ms: float = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.delay_ms * self.backoff_multiplier ** (attempt - 1) / 1000


class StepResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    result: Optional[VoteResult] = None
    time_ms: float = 0.0
    skipped: bool = False
    attempts: int = 0
    error: Optional[Exception] = None


class WorkflowResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    output: Any = None
    steps: list[StepResult] = Field(default_factory=list)
    total_time_ms: float = 0.0
    total_samples: int = 0
    success: bool = True
    error: Optional[Exception] = None


@dataclass
class WorkflowStep:
    name: str
    execute: StepFunction
    options: Optional[VoteOptions] = None
    transform: Optional[Callable[[VoteResult], Any]] = None
    skip_if: Optional[Callable[[Any], bool]] = None
    retry: Optional[RetryPolicy] = None
    # Runs once and returns a VoteResult itself instead of being voted on
    direct: bool = False


def merge_options(base: Optional[VoteOptions], override: Optional[VoteOptions]) -> VoteOptions:
    """Fields explicitly set on `override` win over `base`."""
    base = base or VoteOptions()
    if override is None:
        return base
    return base.model_copy(
        update={name: getattr(override, name) for name in override.model_fields_set}
    )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def combine_results(winner: Any, labelled: list[tuple[str, VoteResult]]) -> VoteResult:
    """
    Fold independent votes into one step result.

    Each tally is kept under "<label>:<key>", so flagged_samples plus the
    vote counts still add up to total_samples. Confidence is the lowest of
    the parts; the result converges only if every part did.
    """
    results = [result for _, result in labelled]
    votes = {
        f"{label}:{key}": count
        for label, result in labelled
        for key, count in result.votes.items()
    }
    return VoteResult(
        winner=winner,
        confidence=min((r.confidence for r in results), default=1.0),
        total_samples=sum(r.total_samples for r in results),
        flagged_samples=sum(r.flagged_samples for r in results),
        votes=votes,
        converged=all(r.converged for r in results),
    )


class Workflow:
    """Builder for chains of reliable steps."""

    def __init__(
        self,
        name: str,
        options: Optional[VoteOptions] = None,
        tracker: Optional[RunTracker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.options = options or VoteOptions()
        self.tracker = tracker
        self._sleep = sleep
        self._steps: list[WorkflowStep] = []

    def step(
        self,
        name: str,
        execute: StepFunction,
        options: Optional[VoteOptions] = None,
        transform: Optional[Callable[[VoteResult], Any]] = None,
        skip_if: Optional[Callable[[Any], bool]] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> "Workflow":
        self._steps.append(WorkflowStep(name, execute, options, transform, skip_if, retry))
        return self

    def parallel(
        self,
        name: str,
        branches: list[tuple[str, StepFunction]],
        merge: Callable[[list[VoteResult]], Any],
        options: Optional[VoteOptions] = None,
    ) -> "Workflow":
        """
        Vote on several branches concurrently and merge their results.

        The merged value becomes the next step's input. The step reports the
        lowest branch confidence and converges only if every branch did.
        """
        step_options = merge_options(self.options, options)

        async def run_branches(value: Any) -> VoteResult:
            engine = ConsensusEngine(step_options)
            results = list(await asyncio.gather(
                *(engine.run(fn, value) for _, fn in branches)
            ))
            labelled = [(label, result) for (label, _), result in zip(branches, results)]
            return combine_results(merge(results), labelled)

        self._steps.append(WorkflowStep(name, run_branches, direct=True))
        return self

    def branch(
        self,
        name: str,
        condition: Callable[[Any], bool],
        if_true: StepFunction,
        if_false: StepFunction,
        options: Optional[VoteOptions] = None,
    ) -> "Workflow":
        """Vote on `if_true` or `if_false` depending on the current input."""

        async def choose(value: Any) -> Any:
            if condition(value):
                return await if_true(value)
            return await if_false(value)

        return self.step(name, choose, options=options)

    def with_retry(
        self,
        max_attempts: int,
        delay_ms: float = 1000,
        backoff_multiplier: float = 2.0,
    ) -> "Workflow":
        """Attach a retry policy to the most recently added step."""
        if not self._steps:
            raise ValueError("Cannot add retry to empty workflow")
        self._steps[-1].retry = RetryPolicy(
            max_attempts=max_attempts,
            delay_ms=delay_ms,
            backoff_multiplier=backoff_multiplier,
        )
        return self

    async def _execute(self, step: WorkflowStep, value: Any, record: StepResult) -> VoteResult:
        retry = step.retry or RetryPolicy()
        engine = None if step.direct else ConsensusEngine(merge_options(self.options, step.options))

        for attempt in range(1, retry.max_attempts + 1):
            record.attempts = attempt
            try:
                if engine is None:
                    return await step.execute(value)
                return await engine.run(step.execute, value)
            except Exception as e:
                if attempt >= retry.max_attempts:
                    raise
                logger.warning(
                    "Workflow step failed, retrying",
                    workflow=self.name,
                    step=step.name,
                    attempt=attempt,
                    error=str(e),
                )
                await self._sleep(retry.delay_for(attempt))

        raise RuntimeError(f'Step "{step.name}" failed after {retry.max_attempts} attempts')

    async def run(self, input: Any) -> WorkflowResult:
        """Execute all steps in order. A failing step stops the workflow."""
        started = time.perf_counter()
        tracked = self.tracker.start_run(self.name) if self.tracker else None
        outcome = WorkflowResult(output=input)
        current = input

        for step in self._steps:
            step_started = time.perf_counter()
            record = StepResult(name=step.name)

            if step.skip_if is not None and step.skip_if(current):
                record.skipped = True
                record.time_ms = _elapsed_ms(step_started)
                outcome.steps.append(record)
                if tracked:
                    self.tracker.record_step(tracked.id, step.name, skipped=True, time_ms=record.time_ms)
                continue

            try:
                result = await self._execute(step, current, record)
            except Exception as e:
                record.error = e
                record.time_ms = _elapsed_ms(step_started)
                outcome.steps.append(record)
                outcome.output = current
                outcome.success = False
                outcome.error = e
                outcome.total_time_ms = _elapsed_ms(started)
                logger.error("Workflow step failed", workflow=self.name, step=step.name, error=str(e))
                if tracked:
                    self.tracker.record_step(tracked.id, step.name, time_ms=record.time_ms, error=str(e))
                    self.tracker.complete_run(tracked.id, success=False, error=str(e))
                return outcome

            record.result = result
            record.time_ms = _elapsed_ms(step_started)
            outcome.steps.append(record)
            outcome.total_samples += result.total_samples
            current = step.transform(result) if step.transform else result.winner
            if tracked:
                self.tracker.record_step(tracked.id, step.name, result=result, time_ms=record.time_ms)

        outcome.output = current
        outcome.total_time_ms = _elapsed_ms(started)
        if tracked:
            self.tracker.complete_run(tracked.id, success=True)
        logger.info(
            "Workflow completed",
            workflow=self.name,
            steps=len(outcome.steps),
            total_samples=outcome.total_samples,
        )
        return outcome


def pipeline(
    steps: list[tuple[str, StepFunction]],
    options: Optional[VoteOptions] = None,
    name: str = "pipeline",
) -> Callable[[Any], Awaitable[WorkflowResult]]:
    """Sequential workflow from (name, function) pairs."""
    wf = Workflow(name, options)
    for step_name, fn in steps:
        wf.step(step_name, fn)
    return wf.run


async def run_parallel(
    operations: dict[str, Callable[[], Awaitable[Any]]],
    options: Optional[VoteOptions] = None,
) -> dict[str, VoteResult]:
    """Vote on independent zero-argument operations concurrently."""
    engine = ConsensusEngine(options)

    async def run_one(fn: Callable[[], Awaitable[Any]]) -> VoteResult:
        async def oracle(_: Any) -> Any:
            return await fn()

        return await engine.run(oracle, None)

    results = await asyncio.gather(*(run_one(fn) for fn in operations.values()))
    return dict(zip(operations.keys(), results))


async def decompose(
    input: Any,
    decomposer: StepFunction,
    executor: StepFunction,
    aggregator: Callable[[list[VoteResult]], Any],
    options: Optional[VoteOptions] = None,
) -> WorkflowResult:
    """
    Split a task into subtasks by vote, solve each subtask by vote, then
    aggregate.
    """
    started = time.perf_counter()
    engine = ConsensusEngine(options)
    outcome = WorkflowResult()

    try:
        step_started = time.perf_counter()
        split = await engine.run(decomposer, input)
        outcome.total_samples += split.total_samples
        outcome.steps.append(StepResult(
            name="decompose", result=split, time_ms=_elapsed_ms(step_started), attempts=1
        ))

        step_started = time.perf_counter()
        results = list(await asyncio.gather(*(engine.run(executor, sub) for sub in split.winner)))
        combined = combine_results(
            [r.winner for r in results], [(str(i), r) for i, r in enumerate(results)]
        )
        outcome.total_samples += combined.total_samples
        outcome.steps.append(StepResult(
            name="execute",
            result=combined,
            time_ms=_elapsed_ms(step_started),
            attempts=1,
        ))

        step_started = time.perf_counter()
        outcome.output = aggregator(results)
        outcome.steps.append(StepResult(name="aggregate", time_ms=_elapsed_ms(step_started), attempts=1))
    except Exception as e:
        logger.error("Decomposition failed", error=str(e))
        outcome.success = False
        outcome.error = e

    outcome.total_time_ms = _elapsed_ms(started)
    return outcome
