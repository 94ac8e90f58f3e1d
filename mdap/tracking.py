"""
Run Tracker

Records workflow runs and their voting steps for reporting. A tracker is an
ordinary object: whoever needs one creates it, passes it by reference, and
drops it when done. The API server owns one for the lifetime of the app.
"""

import itertools
import time
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field
import structlog

from mdap.models import VoteResult

logger = structlog.get_logger()


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TrackedStep(BaseModel):
    name: str
    skipped: bool = False
    time_ms: float = 0.0
    total_samples: int = 0
    flagged_samples: int = 0
    confidence: Optional[float] = None
    converged: Optional[bool] = None
    error: Optional[str] = None


class TrackedRun(BaseModel):
    id: str
    name: str
    status: RunStatus = RunStatus.RUNNING
    started_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    completed_at: Optional[str] = None
    steps: list[TrackedStep] = Field(default_factory=list)
    total_samples: int = 0
    error: Optional[str] = None


class TrackerStats(BaseModel):
    total_runs: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    total_samples: int = 0
    avg_confidence: float = 0.0


class TrackerEvent(BaseModel):
    type: str  # run:start, run:step, run:complete
    run: TrackedRun


EventHandler = Callable[[TrackerEvent], None]


class RunTracker:
    """
    Keeps the most recent `max_runs` runs and notifies subscribers of changes.

    Not thread-safe; use one tracker per event loop.
    """

    def __init__(self, max_runs: int = 100):
        self.max_runs = max_runs
        self._runs: "OrderedDict[str, TrackedRun]" = OrderedDict()
        self._handlers: list[EventHandler] = []
        self._ids = itertools.count(1)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event_type: str, run: TrackedRun) -> None:
        event = TrackerEvent(type=event_type, run=run)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error("Tracker event handler failed", event=event_type, error=str(e))

    def start_run(self, name: str) -> TrackedRun:
        run = TrackedRun(id=f"{int(time.time() * 1000)}-{next(self._ids)}", name=name)
        self._runs[run.id] = run
        while len(self._runs) > self.max_runs:
            self._runs.popitem(last=False)
        self._emit("run:start", run)
        return run

    def record_step(
        self,
        run_id: str,
        name: str,
        result: Optional[VoteResult] = None,
        time_ms: float = 0.0,
        skipped: bool = False,
        error: Optional[str] = None,
    ) -> Optional[TrackedStep]:
        run = self._runs.get(run_id)
        if run is None:
            return None

        step = TrackedStep(name=name, skipped=skipped, time_ms=time_ms, error=error)
        if result is not None:
            step.total_samples = result.total_samples
            step.flagged_samples = result.flagged_samples
            step.confidence = result.confidence
            step.converged = result.converged
            run.total_samples += result.total_samples

        run.steps.append(step)
        self._emit("run:step", run)
        return step

    def complete_run(self, run_id: str, success: bool = True, error: Optional[str] = None) -> None:
        run = self._runs.get(run_id)
        if run is None:
            return
        run.status = RunStatus.COMPLETED if success else RunStatus.FAILED
        run.completed_at = datetime.utcnow().isoformat()
        run.error = error
        self._emit("run:complete", run)

    def get_run(self, run_id: str) -> Optional[TrackedRun]:
        return self._runs.get(run_id)

    def list_runs(self) -> list[TrackedRun]:
        """Most recent first."""
        return list(reversed(self._runs.values()))

    def stats(self) -> TrackerStats:
        runs = list(self._runs.values())
        confidences = [
            step.confidence
            for run in runs
            for step in run.steps
            if step.confidence is not None
        ]
        return TrackerStats(
            total_runs=len(runs),
            running=sum(1 for r in runs if r.status == RunStatus.RUNNING),
            completed=sum(1 for r in runs if r.status == RunStatus.COMPLETED),
            failed=sum(1 for r in runs if r.status == RunStatus.FAILED),
            total_samples=sum(r.total_samples for r in runs),
            avg_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        )

    def clear(self) -> None:
        self._runs.clear()
