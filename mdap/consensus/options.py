"""
Options for a single vote.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from mdap.models import VoteConfig
from mdap.red_flags import RedFlagRule
from mdap.semantic import SemanticConfig, Serializer, create_semantic_serializer


class VoteOptions(BaseModel):
    """
    Everything a vote needs besides the oracle and its input.

    `vote` accepts a VoteConfig or a dict of overrides; unspecified fields
    take the VoteConfig defaults.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    vote: VoteConfig = Field(default_factory=VoteConfig)

    # Evaluated in order, first match discards the sample
    red_flags: list[RedFlagRule] = Field(default_factory=list)

    # Vote key for a response; default_serialize when unset
    serialize: Optional[Serializer] = Field(None)

    # Callbacks
    on_flag: Optional[Callable[[Any, RedFlagRule], None]] = Field(None)
    on_sample: Optional[Callable[[Any, int], None]] = Field(None)

    # Token count for ResponseMeta, consulted by token-aware red flags
    token_counter: Optional[Callable[[Any], int]] = Field(None)

    debug: bool = Field(default=False, description="Log every sample")


def with_semantic_dedup(
    options: Optional[VoteOptions] = None,
    semantic: Optional[SemanticConfig] = None,
) -> VoteOptions:
    """Copy of `options` that tallies votes under semantic keys."""
    options = options or VoteOptions()
    return options.model_copy(update={"serialize": create_semantic_serializer(semantic)})
