"""
Agent Memory - Interaction history, knowledge reinforcement and eviction

WHAT: Per agent/user/session memory record with scoring and compression
WHERE: mnemo/runtime/memory/agent_memory.py - core of the retention engine
WHO: Host layers recording exchanges and fetching prior context for prompts
TIME: Append O(w) for pattern/trend refresh (w ≤ 40); compression O(n²), n ≤ 100

Holds a bounded history of interactions (oldest evicted first), derives
performance metrics and recurring patterns after every append, scores stored
interactions against new queries, tracks per-domain expertise and the overall
performance trend, reinforces a lightweight knowledge graph, and compresses
low-value history on demand.

Boundary Notes:
- One writer per record; the engine performs no locking
- Retrieval returns detached copies, never views into the stored history
- Compression keeps the most recent block verbatim and in order
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
from pydantic import Field, PrivateAttr, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .interactions import (
    MAX_INTERACTIONS,
    PATTERN_WINDOW,
    Interaction,
    InteractionFeedback,
    bounded_history,
    extract_common_hours,
    extract_keywords,
)
from .models import EngineComponent, EngineRecord, Integer, Number, Timestamp, age_in_days, generate_id, round_half_up, utcnow
from .relevance import (
    CompressionConfig,
    RelevanceQuery,
    RelevantMemory,
    rank_relevant,
    retention_value,
)
from .telemetry import NoOpTelemetryClient, TelemetryClient

logger = logging.getLogger(__name__)

GRAPH_CONFIDENCE_STEP = 0.05
GRAPH_CONFIDENCE_CAP = 0.95
ADAPTATION_MIN = 0.1
ADAPTATION_MAX = 0.95
ADAPTATION_REWARD = 0.02
ADAPTATION_PENALTY = 0.05


class TrendLabel(str, Enum):
    improving = "improving"
    declining = "declining"
    stable = "stable"
    insufficient_data = "insufficient_data"


class ExpertiseLevel(str, Enum):
    novice = "novice"
    intermediate = "intermediate"
    advanced = "advanced"
    expert = "expert"


# ---------------------------------------------------------------------------
# Record components
# ---------------------------------------------------------------------------


class _Component(EngineComponent):
    record_label: ClassVar[str] = "agent memory"


class KnowledgeEntry(_Component):
    value: Any = None
    confidence: Number = Field(default=0.7, ge=0.0, le=1.0)
    source: str = "interaction"
    reinforcements: Integer = Field(default=0, ge=0)
    tags: List[str] = Field(default_factory=list)
    timestamp: Timestamp = Field(default_factory=utcnow)


class GraphConcept(_Component):
    concept: str
    value: Any = None
    confidence: Number = Field(default=0.7, ge=0.0, le=1.0)
    reinforcements: Integer = Field(default=1, ge=0)
    timestamp: Timestamp = Field(default_factory=utcnow)


class KnowledgeGraph(_Component):
    """Per-domain list of reinforced concepts; not a general graph store."""

    concepts: Dict[str, List[GraphConcept]] = Field(default_factory=dict)
    relationships: List[Dict[str, Any]] = Field(default_factory=list)


class MemoryPatterns(_Component):
    keywords: Dict[str, int] = Field(default_factory=dict)
    common_hours: Dict[str, int] = Field(default_factory=dict)
    last_updated: Optional[Timestamp] = None


class PerformanceSnapshot(_Component):
    success_rate: Number = Field(default=0.0, ge=0.0, le=1.0)
    average_response_time: Number = Field(default=0.0, ge=0.0)
    total_interactions: Integer = Field(default=0, ge=0)
    error_count: Integer = Field(default=0, ge=0)
    improvement_trend: TrendLabel = TrendLabel.stable


class DomainRating(_Component):
    rating: Number = 0.0
    count: Integer = Field(default=0, ge=0)


class LearningState(_Component):
    adaptation_score: Number = Field(default=0.5, ge=ADAPTATION_MIN, le=ADAPTATION_MAX)
    domain_expertise: Dict[str, DomainRating] = Field(default_factory=dict)
    weaknesses: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DomainExpertise:
    level: ExpertiseLevel
    confidence: float
    experience: int
    avg_response_time: int = 0
    success_rate: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


@dataclass(slots=True)
class PerformanceTrend:
    trend: TrendLabel
    confidence: float
    recent_success_rate: float | None = None
    recent_avg_time: int | None = None
    success_change: float | None = None
    time_change: float | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["trend"] = self.trend.value
        return data


# ---------------------------------------------------------------------------
# Compression
# ---------------------------------------------------------------------------


def compress_history(
    history: Sequence[Interaction],
    config: CompressionConfig | None = None,
    *,
    now: datetime | None = None,
) -> list[Interaction]:
    """Return the interactions that survive a compression pass.

    The last ``keep_recent_count`` interactions are always kept, in order.
    Older interactions are ranked by ``retention_value`` and the top
    ``older_quota`` survive, keeping their original relative order.
    """

    cfg = config or CompressionConfig()
    history = list(history)
    if len(history) <= cfg.compression_threshold:
        return history

    split = max(0, len(history) - cfg.keep_recent_count)
    older, recent = history[:split], history[split:]

    scored = [(retention_value(item, history, now=now), index) for index, item in enumerate(older)]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    kept = sorted(index for _, index in scored[: cfg.older_quota])
    return [older[index] for index in kept] + recent


# ---------------------------------------------------------------------------
# Memory record
# ---------------------------------------------------------------------------


class AgentMemory(EngineRecord):
    """Accumulated memory for one agent/user/session scope."""

    record_label: ClassVar[str] = "agent memory"

    id: str = Field(default_factory=generate_id, min_length=1)
    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    created: Timestamp = Field(default_factory=utcnow)
    updated: Timestamp = Field(default_factory=utcnow)
    last_accessed: Timestamp = Field(default_factory=utcnow)

    interactions: Deque[Interaction] = Field(default_factory=bounded_history)
    patterns: MemoryPatterns = Field(default_factory=MemoryPatterns)
    knowledge: Dict[str, Dict[str, KnowledgeEntry]] = Field(default_factory=dict)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    performance: PerformanceSnapshot = Field(default_factory=PerformanceSnapshot)
    context_associations: List[str] = Field(default_factory=list)
    knowledge_graph: KnowledgeGraph = Field(default_factory=KnowledgeGraph)
    learning: LearningState = Field(default_factory=LearningState)

    _telemetry: TelemetryClient = PrivateAttr(default_factory=NoOpTelemetryClient)

    @field_validator("interactions", mode="after")
    @classmethod
    def _bounded(cls, value: Iterable[Interaction]) -> Deque[Interaction]:
        items = list(value)
        if len(items) > MAX_INTERACTIONS:
            raise ValueError(f"at most {MAX_INTERACTIONS} interactions may be stored, got {len(items)}")
        return bounded_history(items)

    @property
    def telemetry(self) -> TelemetryClient:
        return self._telemetry

    def attach_telemetry(self, client: TelemetryClient) -> None:
        self._telemetry = client

    # ---------------------- recording ----------------------
    def add_interaction(
        self,
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
    ) -> Interaction:
        """Append an interaction and refresh derived metrics; returns the stored record."""

        record = _build(
            "interaction",
            Interaction.create,
            prompt=prompt,
            response=response,
            success=success,
            duration=duration,
            tokens=tokens,
            context_id=context_id,
            feedback=feedback,
            tags=tags,
            timestamp=timestamp,
        )
        if len(self.interactions) == MAX_INTERACTIONS:
            logger.debug(f"AgentMemory {self.id}: history full, evicting {self.interactions[0].id}")
        self.interactions.append(record)
        self._refresh_derived()
        now = utcnow()
        self.last_accessed = now
        self.updated = now
        return record

    def add_knowledge(
        self,
        domain: str,
        concept: str,
        value: Any,
        confidence: float = 0.7,
        source: str = "interaction",
        tags: Iterable[str] = (),
    ) -> KnowledgeEntry:
        """Upsert a knowledge entry and reinforce the matching graph concept."""

        prior = self.knowledge.get(domain, {}).get(concept)
        entry = _build(
            "knowledge",
            KnowledgeEntry,
            value=value,
            confidence=confidence,
            source=source,
            reinforcements=prior.reinforcements if prior else 0,
            tags=list(tags),
        )
        self.knowledge.setdefault(domain, {})[concept] = entry
        self._reinforce_concept(domain, concept, value, entry.confidence)
        self.touch()
        return entry

    def record_feedback(
        self,
        interaction_id: str,
        *,
        rating: float | None = None,
        category: str = "general",
        helpful: bool | None = None,
        comments: str = "",
    ) -> Optional[Interaction]:
        """Attach feedback to an interaction and nudge the learning state.

        An unknown ``interaction_id`` skips the attachment but the learning
        updates still apply. Returns the updated interaction, if any.
        """

        feedback = _build(
            "feedback",
            InteractionFeedback,
            rating=rating,
            category=category,
            comments=comments,
            helpful=helpful,
        )
        target = next((i for i in self.interactions if i.id == interaction_id), None)
        if target is None:
            logger.debug(f"AgentMemory {self.id}: feedback for unknown interaction {interaction_id}")
        else:
            target.feedback = feedback

        learning = self.learning
        if isinstance(helpful, bool):
            if helpful:
                learning.adaptation_score = min(ADAPTATION_MAX, learning.adaptation_score + ADAPTATION_REWARD)
            else:
                learning.adaptation_score = max(ADAPTATION_MIN, learning.adaptation_score - ADAPTATION_PENALTY)

        if category and feedback.rating is not None:
            stats = learning.domain_expertise.setdefault(category, DomainRating())
            stats.rating = (stats.rating * stats.count + feedback.rating) / (stats.count + 1)
            stats.count += 1

        self.touch()
        return target

    # ---------------------- retrieval ----------------------
    def get_relevant_memories(
        self,
        query: RelevanceQuery | Mapping[str, Any] | None = None,
        limit: int = 5,
        *,
        now: datetime | None = None,
    ) -> list[RelevantMemory]:
        """Successful interactions most relevant to ``query``, best first."""

        q = query if isinstance(query, RelevanceQuery) else RelevanceQuery.from_options(query)
        with self._telemetry.span(
            "memory.relevant_memories", agent_id=self.agent_id, keywords=len(q.keywords), limit=limit
        ) as span:
            results = rank_relevant(self.interactions, q, limit=limit, now=now)
            span.set_attribute("result_count", len(results))
        self.last_accessed = utcnow()
        return results

    def get_domain_expertise(self, domain: str) -> DomainExpertise:
        needle = domain.lower()
        subset = [i for i in self.interactions if domain in i.tags or needle in i.prompt.lower()]
        if not subset:
            return DomainExpertise(level=ExpertiseLevel.novice, confidence=0, experience=0)

        success_rate = float(np.mean([i.success for i in subset]))
        avg_duration = float(np.mean([i.duration for i in subset]))
        experience = len(subset)

        level = ExpertiseLevel.novice
        confidence = success_rate
        if experience >= 50 and success_rate >= 0.9:
            level = ExpertiseLevel.expert
            confidence = min(0.95, success_rate + 0.05)
        elif experience >= 20 and success_rate >= 0.8:
            level = ExpertiseLevel.advanced
            confidence = success_rate + 0.02
        elif experience >= 10 and success_rate >= 0.7:
            level = ExpertiseLevel.intermediate

        return DomainExpertise(
            level=level,
            confidence=round_half_up(confidence, 2),
            experience=experience,
            avg_response_time=int(round_half_up(avg_duration)),
            success_rate=round_half_up(success_rate, 2),
        )

    def get_performance_trends(self, window_size: int = 20) -> PerformanceTrend:
        """Compare the latest ``window_size`` interactions with the window before them."""

        if window_size < 1:
            raise ValidationError("Invalid trend window", [f"window_size must be positive, got {window_size}"])
        history = list(self.interactions)
        if len(history) < window_size:
            return PerformanceTrend(trend=TrendLabel.insufficient_data, confidence=0)

        recent = history[-window_size:]
        older = history[-2 * window_size : -window_size]

        recent_success = float(np.mean([i.success for i in recent]))
        recent_time = float(np.mean([i.duration for i in recent]))
        older_success = float(np.mean([i.success for i in older])) if older else recent_success
        older_time = float(np.mean([i.duration for i in older])) if older else recent_time

        success_diff = recent_success - older_success
        # positive means getting faster
        time_diff = (older_time - recent_time) / older_time if older_time else 0.0

        trend = TrendLabel.stable
        confidence = 0.5
        if success_diff > 0.1 or time_diff > 0.1:
            trend = TrendLabel.improving
        elif success_diff < -0.1 or time_diff < -0.1:
            trend = TrendLabel.declining
        if trend is not TrendLabel.stable:
            confidence = min(0.9, 0.5 + abs(success_diff) + abs(time_diff))

        return PerformanceTrend(
            trend=trend,
            confidence=round_half_up(confidence, 2),
            recent_success_rate=round_half_up(recent_success, 2),
            recent_avg_time=int(round_half_up(recent_time)),
            success_change=round_half_up(success_diff, 2),
            time_change=round_half_up(time_diff, 2),
        )

    # ---------------------- compression ----------------------
    def compress_memories(
        self,
        config: CompressionConfig | Mapping[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """Evict low-value older interactions; returns how many were dropped."""

        cfg = config if isinstance(config, CompressionConfig) else CompressionConfig.from_options(config)
        before = len(self.interactions)
        if before <= cfg.compression_threshold:
            return 0

        with self._telemetry.span("memory.compress", agent_id=self.agent_id, before=before) as span:
            survivors = compress_history(self.interactions, cfg, now=now)
            self.interactions = bounded_history(survivors)
            span.set_attribute("after", len(survivors))

        evicted = before - len(survivors)
        self._refresh_derived()
        self.touch()
        logger.info(f"AgentMemory {self.id}: compressed {before} -> {len(survivors)} interactions ({evicted} evicted)")
        return evicted

    # ---------------------- reporting ----------------------
    def get_stats(self, *, now: datetime | None = None) -> dict[str, Any]:
        total = len(self.interactions)
        successful = sum(1 for i in self.interactions if i.success)
        return {
            "total_interactions": total,
            "successful_interactions": successful,
            "success_rate": round_half_up(successful / total, 2) if total else 0,
            "knowledge_domains": len(self.knowledge),
            "knowledge_concepts": sum(len(concepts) for concepts in self.knowledge.values()),
            "memory_age_days": int(age_in_days(self.created, now) // 1),
            "last_accessed": self.last_accessed.isoformat(),
            "patterns": len(self.patterns.keywords) + len(self.patterns.common_hours),
            "adaptation_score": self.learning.adaptation_score,
        }

    # ---------------------- internals ----------------------
    def _refresh_derived(self) -> None:
        history = list(self.interactions)
        total = len(history)
        successes = sum(1 for i in history if i.success)
        self.performance = PerformanceSnapshot(
            success_rate=successes / total if total else 0.0,
            average_response_time=sum(i.duration for i in history) / total if total else 0.0,
            total_interactions=total,
            error_count=total - successes,
            improvement_trend=self.get_performance_trends().trend,
        )

        window = history[-PATTERN_WINDOW:]
        self.patterns = MemoryPatterns(
            keywords=extract_keywords(window),
            common_hours=extract_common_hours(window),
            last_updated=utcnow(),
        )

    def _reinforce_concept(self, domain: str, concept: str, value: Any, confidence: float) -> None:
        entries = self.knowledge_graph.concepts.setdefault(domain, [])
        existing = next((entry for entry in entries if entry.concept == concept), None)
        if existing is not None:
            existing.reinforcements += 1
            existing.confidence = min(GRAPH_CONFIDENCE_CAP, existing.confidence + GRAPH_CONFIDENCE_STEP)
            return
        entries.append(GraphConcept(concept=concept, value=value, confidence=confidence, reinforcements=1))


def _build(label: str, factory, /, **kwargs: Any):
    try:
        return factory(**kwargs)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(label, exc) from exc


__all__ = [
    "AgentMemory",
    "DomainExpertise",
    "DomainRating",
    "ExpertiseLevel",
    "GraphConcept",
    "KnowledgeEntry",
    "KnowledgeGraph",
    "LearningState",
    "MemoryPatterns",
    "PerformanceSnapshot",
    "PerformanceTrend",
    "TrendLabel",
    "compress_history",
]
