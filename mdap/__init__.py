"""
MDAP: Massively Decomposed Agentic Processes

Voting-based error correction for stochastic LLM oracles. Each step is
sampled repeatedly; malformed samples are discarded by red flags and the
rest vote until one answer leads by a margin of k.

Components:
- ConsensusEngine / vote / reliable: First-to-(ahead-by-)k voting
- RedFlag: Sample rejection rules
- create_semantic_serializer: Looser vote keys
- estimate_cost / calculate_min_k: Cost and reliability model
- Workflow: Multi-step orchestration
- execute_reliable: Prompt execution through provider adapters
"""

from mdap.consensus import (
    ConsensusEngine,
    NoValidSamplesError,
    VoteOptions,
    reliable,
    vote,
    with_semantic_dedup,
)
from mdap.cost import (
    calculate_expected_samples,
    calculate_min_k,
    calculate_success_probability,
    estimate_cost,
    format_cost_estimate,
)
from mdap.models import (
    CostEstimate,
    CostEstimateConfig,
    ResponseMeta,
    VoteConfig,
    VoteResult,
    VoteStrategy,
)
from mdap.red_flags import RedFlag, RedFlagRule, parse_red_flags
from mdap.semantic import SemanticConfig, SemanticPatterns, create_semantic_serializer
from mdap.tracking import RunTracker
from mdap.workflow import Workflow, WorkflowResult, decompose, pipeline, run_parallel

__version__ = "0.1.0"
__all__ = [
    # Voting
    "ConsensusEngine",
    "NoValidSamplesError",
    "VoteOptions",
    "vote",
    "reliable",
    "with_semantic_dedup",
    # Models
    "VoteConfig",
    "VoteResult",
    "VoteStrategy",
    "ResponseMeta",
    "CostEstimate",
    "CostEstimateConfig",
    # Red flags
    "RedFlag",
    "RedFlagRule",
    "parse_red_flags",
    # Semantic matching
    "SemanticConfig",
    "SemanticPatterns",
    "create_semantic_serializer",
    # Cost model
    "calculate_min_k",
    "calculate_expected_samples",
    "calculate_success_probability",
    "estimate_cost",
    "format_cost_estimate",
    # Orchestration
    "Workflow",
    "WorkflowResult",
    "pipeline",
    "run_parallel",
    "decompose",
    "RunTracker",
]
