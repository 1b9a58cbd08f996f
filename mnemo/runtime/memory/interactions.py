"""
Interaction Records - Recorded agent exchanges and their feedback

WHAT: Interaction/feedback models plus the bounded history type
WHERE: mnemo/runtime/memory/interactions.py - storage unit of AgentMemory
WHO: AgentMemory appending, scoring and evicting exchanges
TIME: Append O(1); history capacity fixed at MAX_INTERACTIONS

Prompts and responses are truncated on the way in so a history of
MAX_INTERACTIONS records has a bounded footprint.
"""

from __future__ import annotations

from collections import Counter, deque
from datetime import datetime
from typing import ClassVar, Deque, Iterable, List, Optional

from pydantic import Field

from .models import EngineComponent, Integer, Number, Timestamp, generate_id, utcnow

MAX_INTERACTIONS = 100
MAX_PROMPT_CHARS = 500
MAX_RESPONSE_CHARS = 1000
PATTERN_WINDOW = 20
TOP_KEYWORDS = 10
TOP_HOURS = 5
MIN_KEYWORD_LENGTH = 4


class InteractionFeedback(EngineComponent):
    """User feedback attached to one interaction."""

    record_label: ClassVar[str] = "feedback"

    rating: Optional[Number] = None
    category: str = "general"
    comments: str = ""
    helpful: Optional[bool] = None
    timestamp: Timestamp = Field(default_factory=utcnow)


class Interaction(EngineComponent):
    """One recorded prompt/response exchange."""

    record_label: ClassVar[str] = "interaction"

    id: str = Field(default_factory=generate_id)
    timestamp: Timestamp = Field(default_factory=utcnow)
    prompt: str = Field(default="", max_length=MAX_PROMPT_CHARS)
    response: str = Field(default="", max_length=MAX_RESPONSE_CHARS)
    success: bool = False
    duration: Number = Field(default=0, ge=0)
    tokens: Integer = Field(default=0, ge=0)
    context_id: Optional[str] = None
    feedback: Optional[InteractionFeedback] = None
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def create(
        cls,
        *,
        prompt: str | None = None,
        response: str | None = None,
        success: bool = False,
        duration: float = 0,
        tokens: int = 0,
        context_id: str | None = None,
        feedback: InteractionFeedback | dict | None = None,
        tags: Iterable[str] = (),
        timestamp: datetime | None = None,
    ) -> "Interaction":
        """Build a record, truncating prompt and response to their stored size."""
        return cls(
            timestamp=timestamp or utcnow(),
            prompt=(prompt or "")[:MAX_PROMPT_CHARS],
            response=(response or "")[:MAX_RESPONSE_CHARS],
            success=success,
            duration=duration,
            tokens=tokens,
            context_id=context_id,
            feedback=feedback,
            tags=list(tags),
        )

    @property
    def text(self) -> str:
        return f"{self.prompt} {self.response}"


def bounded_history(items: Iterable[Interaction] = ()) -> Deque[Interaction]:
    """Ring buffer of interactions; appending past capacity drops the oldest."""
    return deque(items, maxlen=MAX_INTERACTIONS)


def extract_keywords(interactions: Iterable[Interaction]) -> dict[str, int]:
    """Top prompt words (longer than three characters) by frequency."""

    counts: Counter[str] = Counter()
    for interaction in interactions:
        counts.update(word for word in interaction.prompt.lower().split() if len(word) >= MIN_KEYWORD_LENGTH)
    return dict(counts.most_common(TOP_KEYWORDS))


def extract_common_hours(interactions: Iterable[Interaction]) -> dict[str, int]:
    """Top UTC hours of day by frequency; ties resolve to the earlier hour."""

    counts = Counter(interaction.timestamp.hour for interaction in interactions)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_HOURS]
    return {str(hour): count for hour, count in ranked}


__all__ = [
    "Interaction",
    "InteractionFeedback",
    "MAX_INTERACTIONS",
    "MAX_PROMPT_CHARS",
    "MAX_RESPONSE_CHARS",
    "PATTERN_WINDOW",
    "bounded_history",
    "extract_common_hours",
    "extract_keywords",
]
