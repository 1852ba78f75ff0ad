"""
Retrieval policy: the per-turn configuration governing whether and
how aggressively the reader's documents are searched.

A policy is proposed by the language model in tutor mode, or written
by hand for the other modes. Either way, it is untrusted until it has
been passed through `sanitize_policy`, which clamps every numeric
field into its range and replaces values of the wrong type with the
value of a fallback policy. `RetrievalPolicy` itself rejects values
out of range, so that a policy in the state is always valid.
"""

import math
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TOP_K_RANGE = (1, 10)
MIN_SOURCES_RANGE = (0, 10)
UNIT_RANGE = (0.0, 1.0)


class RetrievalPolicy(BaseModel):
    enabled: bool = True
    mode: Literal['fast', 'comprehensive'] = 'fast'
    top_k: int = Field(default=5, ge=TOP_K_RANGE[0], le=TOP_K_RANGE[1])
    min_similarity: float = Field(default=0.2, ge=0.0, le=1.0)
    min_sources: int = Field(
        default=0, ge=MIN_SOURCES_RANGE[0], le=MIN_SOURCES_RANGE[1]
    )
    rewrite_query: bool = False
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    reason: str = ""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProposedPolicy(BaseModel):
    """The policy as requested from the language model. No range is
    enforced here: the values are clamped by sanitize_policy."""

    enabled: bool | None = Field(
        default=None, description="Whether to search the documents"
    )
    mode: str | None = Field(
        default=None,
        description="'fast' (passages) or 'comprehensive' "
        "(document overviews)",
    )
    top_k: float | None = Field(
        default=None, description="Number of passages (1-10)"
    )
    min_similarity: float | None = Field(
        default=None,
        description="Minimum similarity of a passage (0.1-0.6)",
    )
    min_sources: float | None = Field(
        default=None,
        description="Minimum number of passages required to answer",
    )
    rewrite_query: bool | None = Field(
        default=None,
        description="Whether to rewrite the message into a "
        "standalone question before searching",
    )
    confidence: float | None = Field(
        default=None, description="Confidence in the policy (0-1)"
    )
    reason: str | None = Field(
        default=None, description="Short justification"
    )


def _clamp(value: Any, low: float, high: float, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if math.isnan(value):
        return low
    return min(max(float(value), low), high)


def _clamp_int(value: Any, bounds: tuple[int, int], fallback: int) -> int:
    return int(round(_clamp(value, bounds[0], bounds[1], fallback)))


def sanitize_policy(
    raw: Mapping[str, Any] | BaseModel | None,
    fallback: RetrievalPolicy,
) -> RetrievalPolicy:
    """Build a valid policy from untrusted values.

    Args:
        raw: the proposed values (a mapping or a pydantic model, with
            snake_case or camelCase keys). Missing or mistyped values
            are taken from fallback
        fallback: the policy supplying the missing values

    Returns:
        a RetrievalPolicy with every numeric field in range. NaN is
        clamped to the lower bound, integers are rounded.
    """
    values: dict[str, Any]
    if raw is None:
        values = {}
    elif isinstance(raw, BaseModel):
        values = raw.model_dump()
    else:
        values = dict(raw)

    def pick(name: str, camel: str) -> Any:
        value = values.get(name)
        return values.get(camel) if value is None else value

    enabled = pick("enabled", "enabled")
    mode = pick("mode", "mode")
    rewrite = pick("rewrite_query", "rewriteQuery")
    reason = pick("reason", "reason")

    return RetrievalPolicy(
        enabled=enabled if isinstance(enabled, bool) else fallback.enabled,
        mode=(
            fallback.mode
            if mode is None
            else 'comprehensive' if mode == 'comprehensive' else 'fast'
        ),
        top_k=_clamp_int(pick("top_k", "topK"), TOP_K_RANGE, fallback.top_k),
        min_similarity=_clamp(
            pick("min_similarity", "minSimilarity"),
            *UNIT_RANGE,
            fallback.min_similarity,
        ),
        min_sources=_clamp_int(
            pick("min_sources", "minSources"),
            MIN_SOURCES_RANGE,
            fallback.min_sources,
        ),
        rewrite_query=(
            rewrite if isinstance(rewrite, bool) else fallback.rewrite_query
        ),
        confidence=_clamp(
            pick("confidence", "confidence"),
            *UNIT_RANGE,
            fallback.confidence,
        ),
        reason=reason if isinstance(reason, str) else fallback.reason,
    )


def qa_policy(has_history: bool) -> RetrievalPolicy:
    """Low-friction retrieval for direct questions."""
    return RetrievalPolicy(
        enabled=True,
        mode='fast',
        top_k=5,
        min_similarity=0.2,
        min_sources=0,
        rewrite_query=has_history,
        confidence=0.8,
        reason="QA mode: answer from the reader's documents",
    )


def copilot_policy(
    has_inline_context: bool, has_filter: bool
) -> RetrievalPolicy:
    """Retrieval is skipped when the reader has the material on
    screen and did not ask to search specific documents."""
    enabled = not has_inline_context or has_filter
    return RetrievalPolicy(
        enabled=enabled,
        mode='fast',
        top_k=5,
        min_similarity=0.2,
        min_sources=0,
        rewrite_query=False,
        confidence=0.85,
        reason=(
            "Copilot mode: search the documents"
            if enabled
            else "Copilot mode: answer from the text on screen"
        ),
    )


def default_tutor_policy(
    next_step: str,
    has_inline_context: bool,
    has_filter: bool,
    has_history: bool,
) -> RetrievalPolicy:
    """The policy supplying the values missing from the model's
    proposal in tutor mode."""
    planning = next_step == 'plan'
    return RetrievalPolicy(
        enabled=has_filter or not has_inline_context,
        mode='comprehensive' if planning else 'fast',
        top_k=8 if planning else 5,
        min_similarity=0.2,
        min_sources=0,
        rewrite_query=has_history,
        confidence=0.6,
        reason="Default fallback policy",
    )
