"""
REST API Server for MDAP.

Exposes reliable execution, cost estimation and response validation as
HTTP tools for agent frameworks.
"""

import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

# Load environment variables early
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import structlog
import uvicorn

from mdap import __version__
from mdap.adapters import BaseAdapter
from mdap.consensus import NoValidSamplesError
from mdap.cost import calculate_min_k, estimate_cost, format_cost_estimate
from mdap.execute import ExecuteRequest, ExecuteResult, estimate_tokens, execute_reliable
from mdap.models import CostEstimate, CostEstimateConfig, VoteResult
from mdap.red_flags import check_all, parse_rule_names
from mdap.tracking import RunTracker, TrackerStats

logger = structlog.get_logger()


# ============================================================================
# Request/Response Models
# ============================================================================

class EstimateRequest(BaseModel):
    """Cost estimate request. Ranges are checked by the cost model."""
    steps: int = Field(..., description="Number of steps in the workflow")
    success_rate: float = Field(0.99, description="Per-step success probability")
    target_reliability: float = Field(0.95, description="Target overall reliability")
    input_cost_per_million: float = Field(0.5, description="USD per 1M input tokens")
    output_cost_per_million: float = Field(1.5, description="USD per 1M output tokens")
    avg_input_tokens: int = Field(300, description="Average input tokens per call")
    avg_output_tokens: int = Field(200, description="Average output tokens per call")


class EstimateResponse(BaseModel):
    estimate: CostEstimate
    k_for_99: int
    k_for_999: int
    summary: str


class ValidateRequest(BaseModel):
    """Response validation request."""
    response: str = Field(..., description="Response text to check")
    rules: list[str] = Field(
        default_factory=lambda: ["tooLong", "emptyResponse"],
        description="Rule names or specifications",
    )
    max_tokens: int = Field(750, ge=1, description="Token limit for a bare tooLong")


class RuleCheck(BaseModel):
    rule: str
    flagged: bool


class ValidateResponse(BaseModel):
    valid: bool
    checks: list[RuleCheck]
    violations: list[str]
    unknown_rules: list[str] = Field(default_factory=list)
    token_estimate: int
    length: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str


# ============================================================================
# API Application
# ============================================================================

class MDAPAPI:
    """State owned by one app instance."""

    def __init__(self, adapter: Optional[BaseAdapter] = None, max_runs: int = 100):
        self.adapter = adapter
        self.max_runs = max_runs
        self.tracker: Optional[RunTracker] = None

    async def initialize(self):
        self.tracker = RunTracker(max_runs=self.max_runs)
        logger.info("MDAP API initialized", max_runs=self.max_runs)

    async def shutdown(self):
        if self.adapter is not None:
            await self.adapter.close()
        self.tracker = None
        logger.info("MDAP API shutdown")


def get_api(request: Request) -> MDAPAPI:
    return request.app.state.api


def get_tracker(api: MDAPAPI = Depends(get_api)) -> RunTracker:
    if api.tracker is None:
        raise HTTPException(status_code=503, detail="Tracker not initialized")
    return api.tracker


def create_app(adapter: Optional[BaseAdapter] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        adapter: Adapter used for every /execute call. When omitted, one is
            built per request from settings and the request's overrides.
    """
    api = MDAPAPI(adapter=adapter)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        await api.initialize()
        yield
        await api.shutdown()

    app = FastAPI(
        title="MDAP",
        description="Voting-based error correction for LLM agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.api = api

    # CORS
    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Endpoints
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.utcnow().isoformat(),
        )

    @app.post("/execute", response_model=ExecuteResult)
    async def execute(
        request: ExecuteRequest,
        api: MDAPAPI = Depends(get_api),
        tracker: RunTracker = Depends(get_tracker),
    ):
        """
        Run a prompt with voting and red flags.

        Returns 422 when every sample was flagged and 400 on invalid
        configuration (unknown provider, bad red flag, missing API key).
        """
        run = tracker.start_run("execute")
        started = time.perf_counter()
        try:
            result = await execute_reliable(request, adapter=api.adapter)
        except NoValidSamplesError as e:
            tracker.complete_run(run.id, success=False, error=str(e))
            raise HTTPException(status_code=422, detail=str(e))
        except ValueError as e:
            tracker.complete_run(run.id, success=False, error=str(e))
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error("Execution failed", error=str(e))
            tracker.complete_run(run.id, success=False, error=str(e))
            raise HTTPException(status_code=502, detail=str(e))

        tracker.record_step(
            run.id,
            "vote",
            result=VoteResult(
                winner=result.winner,
                confidence=result.confidence,
                total_samples=result.total_samples,
                flagged_samples=result.flagged_samples,
                votes=result.votes,
                converged=result.converged,
            ),
            time_ms=(time.perf_counter() - started) * 1000,
        )
        tracker.complete_run(run.id, success=True)
        return result

    @app.post("/estimate", response_model=EstimateResponse)
    async def estimate(request: EstimateRequest):
        """Estimate cost and required k for a workflow."""
        try:
            result = estimate_cost(CostEstimateConfig(**request.model_dump()))
            k_for_99 = calculate_min_k(request.steps, request.success_rate, 0.99)
            k_for_999 = calculate_min_k(request.steps, request.success_rate, 0.999)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return EstimateResponse(
            estimate=result,
            k_for_99=k_for_99,
            k_for_999=k_for_999,
            summary=format_cost_estimate(result),
        )

    @app.post("/validate", response_model=ValidateResponse)
    async def validate(request: ValidateRequest):
        """Check a response against red-flag rules."""
        rules, rejected = parse_rule_names(request.rules, max_tokens=request.max_tokens)
        checks = [
            RuleCheck(rule=name, flagged=flagged)
            for name, flagged in check_all(request.response, rules)
        ]
        violations = [check.rule for check in checks if check.flagged]
        return ValidateResponse(
            valid=not violations,
            checks=checks,
            violations=violations,
            unknown_rules=rejected,
            token_estimate=estimate_tokens(request.response),
            length=len(request.response),
        )

    @app.get("/stats", response_model=TrackerStats)
    async def stats(tracker: RunTracker = Depends(get_tracker)):
        """Aggregate statistics of recent runs."""
        return tracker.stats()

    return app


def run_server(host: str = None, port: int = None):
    """Run the API server."""
    if host is None:
        host = os.getenv("API_HOST", "0.0.0.0")
    if port is None:
        port = int(os.getenv("API_PORT", "8090"))

    logger.info("Starting MDAP API server", host=host, port=port)
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    run_server()
