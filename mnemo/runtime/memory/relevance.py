"""
Relevance Scoring - Lexical relevance and retention value of interactions

WHAT: Query/compression configs and the two heuristic scoring functions
WHERE: mnemo/runtime/memory/relevance.py - used by AgentMemory retrieval/eviction
WHO: Callers fetching prior context before a model call; compression passes
TIME: Relevance O(k·|text|) per interaction; retention value O(n) per interaction

relevance = 0.4·(matched/len(keywords)) + 0.3·[domain in tags]
            + 0.2·max(0, 1 - age_days/30) + 0.1·[success]        (capped at 1.0)

retention = 0.4·[success] + max(0, 0.3 - 0.05·similar)
            + max(0, 0.2 - 0.01·age_days) + rating/10            (capped at 1.0)

The weights are a compatibility contract with stored fixtures.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import ValidationError
from .interactions import Interaction
from .models import age_in_days

KEYWORD_WEIGHT = 0.4
DOMAIN_WEIGHT = 0.3
RECENCY_WEIGHT = 0.2
SUCCESS_WEIGHT = 0.1
RECENCY_HORIZON_DAYS = 30

RETAIN_SUCCESS_WEIGHT = 0.4
RETAIN_UNIQUENESS_BASE = 0.3
RETAIN_UNIQUENESS_STEP = 0.05
RETAIN_RECENCY_BASE = 0.2
RETAIN_RECENCY_DECAY = 0.01
SIMILARITY_CUTOFF = 0.7
OLDER_KEEP_RATIO = 0.3


def _reject_unknown(cls: type, options: Mapping[str, Any], label: str) -> dict[str, Any]:
    options = dict(options)
    unknown = sorted(set(options) - {f.name for f in fields(cls)})
    if unknown:
        raise ValidationError(f"Unknown {label} options", unknown)
    return options


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class RelevanceQuery:
    """What a caller is about to ask; every criterion is optional."""

    keywords: tuple[str, ...] = ()
    domain: Optional[str] = None
    threshold: float = 0.3

    def __post_init__(self) -> None:
        errors = []
        keywords = self.keywords
        if isinstance(keywords, str):
            errors.append("keywords must be a sequence of strings")
        else:
            try:
                keywords = tuple(keywords)
            except TypeError:
                errors.append("keywords must be a sequence of strings")
            else:
                errors.extend(
                    f"keywords[{i}] must be a string" for i, kw in enumerate(keywords) if not isinstance(kw, str)
                )
        if self.domain is not None and not isinstance(self.domain, str):
            errors.append("domain must be a string")
        if not _is_number(self.threshold):
            errors.append("threshold must be a number")
        if errors:
            raise ValidationError("Invalid relevance query", errors)
        object.__setattr__(self, "keywords", keywords)

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> "RelevanceQuery":
        return cls(**_reject_unknown(cls, options or {}, "relevance query"))


@dataclass(frozen=True, slots=True)
class CompressionConfig:
    keep_recent_count: int = 50
    compression_threshold: int = 100

    def __post_init__(self) -> None:
        errors = []
        for f in fields(self):
            value = getattr(self, f.name)
            if not _is_count(value):
                errors.append(f"{f.name} must be an integer")
            elif value < 0:
                errors.append(f"{f.name} must be non-negative")
        if errors:
            raise ValidationError("Invalid compression options", errors)

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> "CompressionConfig":
        return cls(**_reject_unknown(cls, options or {}, "compression"))

    @property
    def older_quota(self) -> int:
        """How many pre-recent interactions survive a compression pass."""
        return math.floor(self.compression_threshold * OLDER_KEEP_RATIO)


class RelevantMemory(BaseModel):
    """Detached copy of a stored interaction with its relevance score."""

    interaction: Interaction
    relevance_score: float = Field(ge=0.0, le=1.0)


def score_relevance(interaction: Interaction, query: RelevanceQuery, *, now: datetime | None = None) -> float:
    """Heuristic [0, 1] match between a past interaction and a new query."""

    score = 0.0
    if query.keywords:
        text = interaction.text.lower()
        matches = sum(1 for keyword in query.keywords if keyword.lower() in text)
        score += (matches / len(query.keywords)) * KEYWORD_WEIGHT

    if query.domain and query.domain in interaction.tags:
        score += DOMAIN_WEIGHT

    recency = max(0.0, 1 - age_in_days(interaction.timestamp, now) / RECENCY_HORIZON_DAYS)
    score += recency * RECENCY_WEIGHT

    if interaction.success:
        score += SUCCESS_WEIGHT

    return min(1.0, score)


def retention_value(
    interaction: Interaction,
    history: Sequence[Interaction],
    *,
    now: datetime | None = None,
) -> float:
    """How much an interaction is worth keeping when history is compressed.

    Uniqueness counts the other interactions in ``history`` that score above
    SIMILARITY_CUTOFF against this interaction's prompt words.
    """

    score = RETAIN_SUCCESS_WEIGHT if interaction.success else 0.0

    own_terms = RelevanceQuery(keywords=tuple(interaction.prompt.split()))
    similar = sum(
        1
        for other in history
        if other is not interaction and score_relevance(other, own_terms, now=now) > SIMILARITY_CUTOFF
    )
    score += max(0.0, RETAIN_UNIQUENESS_BASE - similar * RETAIN_UNIQUENESS_STEP)

    score += max(0.0, RETAIN_RECENCY_BASE - age_in_days(interaction.timestamp, now) * RETAIN_RECENCY_DECAY)

    feedback = interaction.feedback
    if feedback is not None and feedback.rating:
        score += feedback.rating / 10

    return min(1.0, score)


def rank_relevant(
    interactions: Iterable[Interaction],
    query: RelevanceQuery,
    *,
    limit: int,
    now: datetime | None = None,
) -> list[RelevantMemory]:
    """Successful interactions scoring at least ``query.threshold``, best first.

    The sort is stable, so equal scores keep insertion order.
    """

    scored = []
    for interaction in interactions:
        if not interaction.success:
            continue
        relevance = score_relevance(interaction, query, now=now)
        if relevance >= query.threshold:
            scored.append(RelevantMemory(interaction=interaction.model_copy(deep=True), relevance_score=relevance))
    scored.sort(key=lambda item: item.relevance_score, reverse=True)
    return scored[: max(0, limit)]


__all__ = [
    "CompressionConfig",
    "RelevanceQuery",
    "RelevantMemory",
    "rank_relevant",
    "retention_value",
    "score_relevance",
]
