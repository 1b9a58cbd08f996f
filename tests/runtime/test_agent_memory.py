from datetime import datetime, timedelta, timezone

import pytest

from mnemo.runtime.memory.agent_memory import AgentMemory, ExpertiseLevel, TrendLabel
from mnemo.runtime.memory.errors import DeserializationError, ValidationError
from mnemo.runtime.memory.interactions import MAX_INTERACTIONS, Interaction
from mnemo.runtime.memory.relevance import RelevanceQuery
from mnemo.runtime.memory.telemetry import RecordingTelemetryClient


def _fill(memory: AgentMemory, count: int, *, success_every: int = 1, duration: float = 1000, **kwargs) -> None:
    for i in range(count):
        memory.add_interaction(
            prompt=kwargs.get("prompt", f"prompt {i}"),
            response="ok",
            success=(i % success_every == 0),
            duration=duration,
            tags=kwargs.get("tags", ()),
        )


# ---------------------------------------------------------------------------
# recording
# ---------------------------------------------------------------------------


def test_add_interaction_updates_performance_and_patterns():
    memory = AgentMemory(agent_id="agent-1")
    memory.add_interaction(prompt="Refactor database layer", success=True, duration=1200)
    memory.add_interaction(prompt="Refactor the cache layer", success=False, duration=800)

    perf = memory.performance
    assert perf.total_interactions == 2
    assert perf.success_rate == 0.5
    assert perf.error_count == 1
    assert perf.average_response_time == 1000
    assert perf.improvement_trend is TrendLabel.insufficient_data
    assert memory.patterns.keywords["refactor"] == 2
    assert memory.patterns.keywords["layer"] == 2
    assert "the" not in memory.patterns.keywords
    assert sum(memory.patterns.common_hours.values()) == 2


def test_prompt_and_response_are_truncated():
    memory = AgentMemory()
    record = memory.add_interaction(prompt="p" * 800, response="r" * 1500)
    assert len(record.prompt) == 500
    assert len(record.response) == 1000


def test_history_evicts_exactly_the_oldest():
    memory = AgentMemory()
    for i in range(MAX_INTERACTIONS + 1):
        memory.add_interaction(prompt=f"p{i}", success=True)

    prompts = [i.prompt for i in memory.interactions]
    assert len(prompts) == MAX_INTERACTIONS
    assert prompts[0] == "p1"
    assert prompts == [f"p{i}" for i in range(1, MAX_INTERACTIONS + 1)]


def test_invalid_interaction_is_rejected():
    memory = AgentMemory()
    with pytest.raises(ValidationError):
        memory.add_interaction(prompt="x", duration=-5)
    assert len(memory.interactions) == 0


# ---------------------------------------------------------------------------
# relevance
# ---------------------------------------------------------------------------


def test_relevance_scores_all_terms():
    now = datetime(2025, 5, 1, tzinfo=timezone.utc)
    memory = AgentMemory()
    memory.add_interaction(
        prompt="Deploy kubernetes cluster",
        response="applied manifests",
        success=True,
        tags=["devops"],
        timestamp=now,
    )
    query = RelevanceQuery(keywords=("Kubernetes", "helm"), domain="devops")
    results = memory.get_relevant_memories(query, now=now)
    assert len(results) == 1
    # 0.5*0.4 keywords + 0.3 domain + 0.2 recency + 0.1 success
    assert results[0].relevance_score == pytest.approx(0.8)


def test_relevant_memories_skip_failures_and_apply_threshold():
    now = datetime.now(timezone.utc)
    memory = AgentMemory()
    memory.add_interaction(prompt="python asyncio bug", success=False, tags=["python"], timestamp=now)
    memory.add_interaction(prompt="python asyncio fix", success=True, tags=["python"], timestamp=now)
    memory.add_interaction(prompt="unrelated", success=True, timestamp=now - timedelta(days=60))

    results = memory.get_relevant_memories({"keywords": ["asyncio"], "domain": "python"}, now=now)
    assert [r.interaction.prompt for r in results] == ["python asyncio fix"]
    assert all(r.interaction.success for r in results)

    none = memory.get_relevant_memories({"keywords": ["asyncio"], "domain": "rust", "threshold": 0.95}, now=now)
    assert none == []


def test_relevant_memories_sorted_limited_and_stable():
    now = datetime(2025, 5, 1, tzinfo=timezone.utc)
    memory = AgentMemory()
    for name in ("first", "second", "third"):
        memory.add_interaction(prompt=f"{name} cache tuning", success=True, timestamp=now)
    memory.add_interaction(prompt="cache tuning redis", success=True, tags=["redis"], timestamp=now)

    results = memory.get_relevant_memories(
        RelevanceQuery(keywords=("cache",), domain="redis"), limit=3, now=now
    )
    prompts = [r.interaction.prompt for r in results]
    assert prompts == ["cache tuning redis", "first cache tuning", "second cache tuning"]


def test_relevant_memories_are_detached_copies():
    memory = AgentMemory()
    memory.add_interaction(prompt="cache tuning", success=True)
    result = memory.get_relevant_memories({"keywords": ["cache"]})[0]
    result.interaction.prompt = "mutated"
    result.interaction.tags.append("x")
    assert memory.interactions[0].prompt == "cache tuning"
    assert memory.interactions[0].tags == []


def test_query_and_compression_options_are_validated():
    memory = AgentMemory()
    with pytest.raises(ValidationError):
        memory.get_relevant_memories({"keywords": ["a"], "similarity": 0.5})
    with pytest.raises(ValidationError):
        memory.get_relevant_memories({"keywords": "a"})
    with pytest.raises(ValidationError):
        memory.get_relevant_memories({"keywords": ["cache"], "threshold": "0.3"})
    with pytest.raises(ValidationError):
        memory.get_relevant_memories({"keywords": ["cache", 7]})
    with pytest.raises(ValidationError):
        memory.compress_memories({"keep_recent_count": "10"})


# ---------------------------------------------------------------------------
# expertise and trends
# ---------------------------------------------------------------------------


def test_domain_expertise_untouched_domain_is_novice():
    memory = AgentMemory()
    _fill(memory, 5, tags=["python"])
    result = memory.get_domain_expertise("rust")
    assert result.level == "novice"
    assert result.confidence == 0
    assert result.experience == 0


@pytest.mark.parametrize(
    "count, successes, level, confidence",
    [
        (10, 8, ExpertiseLevel.intermediate, 0.8),
        (20, 17, ExpertiseLevel.advanced, 0.87),
        (50, 46, ExpertiseLevel.expert, 0.95),
        (10, 5, ExpertiseLevel.novice, 0.5),
    ],
)
def test_domain_expertise_levels(count, successes, level, confidence):
    memory = AgentMemory()
    for i in range(count):
        memory.add_interaction(prompt="work item", success=i < successes, duration=1500, tags=["python"])
    result = memory.get_domain_expertise("python")
    assert result.level is level
    assert result.confidence == pytest.approx(confidence)
    assert result.experience == count
    assert result.avg_response_time == 1500


def test_domain_expertise_matches_prompt_text():
    memory = AgentMemory()
    memory.add_interaction(prompt="Tune PostgreSQL indexes", success=True)
    result = memory.get_domain_expertise("postgresql")
    assert result.experience == 1
    assert result.as_dict()["level"] == "novice"


def test_trends_require_a_full_window():
    memory = AgentMemory()
    _fill(memory, 5)
    trend = memory.get_performance_trends(window_size=20)
    assert trend.trend == "insufficient_data"
    assert trend.confidence == 0


def test_trends_detect_improvement():
    memory = AgentMemory()
    for i in range(20):
        memory.add_interaction(prompt="task", success=i % 2 == 0, duration=2000)
    for i in range(20):
        memory.add_interaction(prompt="task", success=i < 18, duration=1000)

    trend = memory.get_performance_trends()
    assert trend.trend is TrendLabel.improving
    assert trend.confidence > 0.5
    assert trend.success_change == pytest.approx(0.4)
    assert trend.time_change == pytest.approx(0.5)
    assert memory.performance.improvement_trend is TrendLabel.improving


def test_trends_detect_decline():
    memory = AgentMemory()
    _fill(memory, 20, duration=1000)
    _fill(memory, 20, success_every=2, duration=1000)
    trend = memory.get_performance_trends()
    assert trend.trend is TrendLabel.declining
    assert trend.confidence == pytest.approx(0.9)


def test_trends_without_older_window_are_stable():
    memory = AgentMemory()
    _fill(memory, 20, success_every=3)
    trend = memory.get_performance_trends()
    assert trend.trend is TrendLabel.stable
    assert trend.success_change == 0
    assert trend.time_change == 0


def test_trends_reject_non_positive_window():
    with pytest.raises(ValidationError):
        AgentMemory().get_performance_trends(window_size=0)


# ---------------------------------------------------------------------------
# compression
# ---------------------------------------------------------------------------


def test_compression_below_threshold_is_a_noop():
    memory = AgentMemory()
    _fill(memory, 40)
    assert memory.compress_memories() == 0
    assert len(memory.interactions) == 40


def test_compression_keeps_recent_block_and_quota():
    memory = AgentMemory()
    _fill(memory, MAX_INTERACTIONS, success_every=2)
    recent_ids = [i.id for i in list(memory.interactions)[-30:]]

    evicted = memory.compress_memories({"keep_recent_count": 30, "compression_threshold": 60})

    remaining = list(memory.interactions)
    assert evicted == MAX_INTERACTIONS - 48
    assert len(remaining) == 48
    assert [i.id for i in remaining[-30:]] == recent_ids
    assert memory.performance.total_interactions == 48
    assert memory.interactions.maxlen == MAX_INTERACTIONS


def test_compression_emits_telemetry():
    memory = AgentMemory(agent_id="agent-7")
    telemetry = RecordingTelemetryClient()
    memory.attach_telemetry(telemetry)
    _fill(memory, 80)

    memory.compress_memories({"keep_recent_count": 10, "compression_threshold": 50})
    memory.get_relevant_memories({"keywords": ["prompt"]})

    assert telemetry.names() == ["memory.compress", "memory.relevant_memories"]
    compress = telemetry.last("memory.compress")
    compress_attrs = compress.attributes
    assert compress_attrs["before"] == 80
    assert compress_attrs["after"] == 25
    assert compress.success


# ---------------------------------------------------------------------------
# knowledge and feedback
# ---------------------------------------------------------------------------


def test_add_knowledge_reinforces_graph_concept():
    memory = AgentMemory()
    memory.add_knowledge("python", "asyncio", "use gather for fan-out")
    first = memory.knowledge_graph.concepts["python"][0].confidence
    memory.add_knowledge("python", "asyncio", "prefer TaskGroup", tags=["py311"])

    entry = memory.knowledge["python"]["asyncio"]
    assert entry.reinforcements == 0
    assert entry.value == "prefer TaskGroup"
    assert entry.tags == ["py311"]

    concepts = memory.knowledge_graph.concepts["python"]
    assert len(concepts) == 1
    assert concepts[0].reinforcements == 2
    assert concepts[0].confidence > first
    assert concepts[0].confidence == pytest.approx(0.75)


def test_graph_confidence_is_capped():
    memory = AgentMemory()
    for _ in range(10):
        memory.add_knowledge("sql", "indexes", "btree", confidence=0.9)
    assert memory.knowledge_graph.concepts["sql"][0].confidence == pytest.approx(0.95)


def test_add_knowledge_rejects_out_of_range_confidence():
    with pytest.raises(ValidationError):
        AgentMemory().add_knowledge("sql", "indexes", "btree", confidence=1.5)


def test_record_feedback_updates_interaction_and_learning():
    memory = AgentMemory()
    record = memory.add_interaction(prompt="explain joins", success=True)

    updated = memory.record_feedback(record.id, rating=4, category="sql", helpful=True)
    assert updated is not None
    assert memory.interactions[0].feedback.rating == 4
    assert memory.learning.adaptation_score == pytest.approx(0.52)

    memory.record_feedback(record.id, rating=8, category="sql", helpful=False)
    assert memory.learning.adaptation_score == pytest.approx(0.47)
    stats = memory.learning.domain_expertise["sql"]
    assert stats.rating == pytest.approx(6)
    assert stats.count == 2


def test_record_feedback_for_unknown_interaction_is_silent():
    memory = AgentMemory()
    memory.add_interaction(prompt="x", success=True)
    assert memory.record_feedback("missing", helpful=True) is None
    assert memory.interactions[0].feedback is None
    assert memory.learning.adaptation_score == pytest.approx(0.52)


def test_nested_assignment_is_validated():
    memory = AgentMemory()
    with pytest.raises(ValidationError):
        memory.learning.adaptation_score = 5
    with pytest.raises(ValidationError):
        memory.agent_id = 12
    assert memory.learning.adaptation_score == 0.5


def test_adaptation_score_is_clamped():
    memory = AgentMemory()
    for _ in range(20):
        memory.record_feedback("missing", helpful=False)
    assert memory.learning.adaptation_score == pytest.approx(0.1)
    for _ in range(60):
        memory.record_feedback("missing", helpful=True)
    assert memory.learning.adaptation_score == pytest.approx(0.95)


# ---------------------------------------------------------------------------
# serialization
# ---------------------------------------------------------------------------


def test_serialize_round_trip():
    memory = AgentMemory(agent_id="agent-1", user_id="user-1", session_id="s-1")
    record = memory.add_interaction(prompt="cache tuning", success=True, tags=["redis"], tokens=42)
    memory.record_feedback(record.id, rating=9, category="redis", helpful=True)
    memory.add_knowledge("redis", "eviction", {"policy": "allkeys-lru"})
    memory.preferences["tone"] = "terse"

    restored = AgentMemory.deserialize(memory.serialize())
    assert restored.to_object() == memory.to_object()
    assert restored.model_dump() == memory.model_dump()
    assert restored.interactions.maxlen == MAX_INTERACTIONS

    query = {"keywords": ["cache"]}
    now = datetime.now(timezone.utc)
    assert [r.relevance_score for r in restored.get_relevant_memories(query, now=now)] == [
        r.relevance_score for r in memory.get_relevant_memories(query, now=now)
    ]


def test_from_object_validation():
    too_many = [Interaction.create(prompt=str(i)).model_dump() for i in range(MAX_INTERACTIONS + 1)]
    with pytest.raises(ValidationError):
        AgentMemory.from_object({"interactions": too_many})
    with pytest.raises(ValidationError):
        AgentMemory.from_object({"learning": {"adaptation_score": 0.99}})
    with pytest.raises(ValidationError):
        AgentMemory.from_object({"performance": {"success_rate": "high"}})
    with pytest.raises(DeserializationError):
        AgentMemory.deserialize('{"interactions": "oops"}')


def test_clone_gets_new_identity():
    memory = AgentMemory(agent_id="agent-1")
    memory.add_interaction(prompt="x", success=True)
    copy = memory.clone(agent_id="agent-2")
    assert copy.id != memory.id
    assert copy.agent_id == "agent-2"
    assert [i.id for i in copy.interactions] == [i.id for i in memory.interactions]
    assert copy.interactions.maxlen == MAX_INTERACTIONS


def test_stats():
    memory = AgentMemory()
    _fill(memory, 4, success_every=2)
    memory.add_knowledge("python", "typing", "use Protocol")
    stats = memory.get_stats()
    assert stats["total_interactions"] == 4
    assert stats["successful_interactions"] == 2
    assert stats["success_rate"] == 0.5
    assert stats["knowledge_domains"] == 1
    assert stats["knowledge_concepts"] == 1
    assert stats["memory_age_days"] == 0
