"""
Retention Engine - Importance, relevance and eviction for agent memory

WHAT: Context importance scoring, agent interaction memory, agent runtime state
WHERE: mnemo/runtime/memory/ - core of the runtime subsystem
WHO: API/CLI layers creating contexts, recording exchanges, updating agents
TIME: Synchronous in-memory operations; compression O(n²) with n ≤ 100

Entities:
- Context: hierarchical knowledge unit scored by ImportanceModel
- AgentMemory: bounded interaction history, knowledge graph, learning state
- AgentRuntimeState: task lifecycle, capabilities, memory pressure

Operations:
- ImportanceModel.calculate(context): 0-100 structural/temporal score
- AgentMemory.get_relevant_memories(query): lexical relevance retrieval
- AgentMemory.get_domain_expertise(domain) / get_performance_trends(window)
- AgentMemory.compress_memories(config): recency/importance eviction
- AgentMemory.add_knowledge(...) / record_feedback(...): reinforcement
- AgentRuntimeState.start_task / complete_task / perform_cleanup

Boundary Notes:
- Scoring weights are fixed contracts; overrides go through config structs
- Every entity round-trips through serialize()/deserialize()
"""

from .agent_memory import (  # noqa: F401
    AgentMemory,
    DomainExpertise,
    ExpertiseLevel,
    PerformanceTrend,
    TrendLabel,
    compress_history,
)
from .agent_state import AgentRuntimeState, AgentStatus, AgentType  # noqa: F401
from .context import Context, ContextInteraction, ContextQuery, ContextType  # noqa: F401
from .errors import (  # noqa: F401
    DeserializationError,
    MemoryEngineError,
    StateTransitionError,
    ValidationError,
)
from .importance import ImportanceConfig, ImportanceModel, calculate_importance, update_importance  # noqa: F401
from .interactions import Interaction, InteractionFeedback  # noqa: F401
from .relevance import CompressionConfig, RelevanceQuery, RelevantMemory  # noqa: F401
from .telemetry import (  # noqa: F401
    LoggingTelemetryClient,
    NoOpTelemetryClient,
    RecordingTelemetryClient,
    SpanRecord,
    TelemetryClient,
    TelemetrySpan,
)

__all__ = [
    "AgentMemory",
    "AgentRuntimeState",
    "AgentStatus",
    "AgentType",
    "CompressionConfig",
    "Context",
    "ContextInteraction",
    "ContextQuery",
    "ContextType",
    "DeserializationError",
    "DomainExpertise",
    "ExpertiseLevel",
    "ImportanceConfig",
    "ImportanceModel",
    "Interaction",
    "InteractionFeedback",
    "LoggingTelemetryClient",
    "MemoryEngineError",
    "NoOpTelemetryClient",
    "PerformanceTrend",
    "RecordingTelemetryClient",
    "RelevanceQuery",
    "RelevantMemory",
    "SpanRecord",
    "StateTransitionError",
    "TelemetryClient",
    "TelemetrySpan",
    "TrendLabel",
    "ValidationError",
    "calculate_importance",
    "compress_history",
    "update_importance",
]
