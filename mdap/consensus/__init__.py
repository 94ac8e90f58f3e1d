"""
Consensus Engine for MDAP.

Samples an unreliable oracle repeatedly and picks the answer by
first-to-k or first-to-ahead-by-k voting.

Components:
- ConsensusEngine: The sampling loop
- vote / reliable: Functional entry points
- VoteOptions: Per-vote parameters, red flags, serializer and callbacks
"""

from mdap.consensus.engine import (
    ConsensusEngine,
    NoValidSamplesError,
    OracleCall,
    VoteTally,
    is_leader_guaranteed_to_win,
    reliable,
    should_terminate,
    vote,
)
from mdap.consensus.options import VoteOptions, with_semantic_dedup

__all__ = [
    # Engine
    "ConsensusEngine",
    "NoValidSamplesError",
    "OracleCall",
    "VoteTally",
    "should_terminate",
    "is_leader_guaranteed_to_win",
    # Entry points
    "vote",
    "reliable",
    # Options
    "VoteOptions",
    "with_semantic_dedup",
]
