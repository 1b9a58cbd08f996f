"""
Agent Runtime State - Task lifecycle, capabilities and memory pressure

WHAT: Live status of one agent: current task, rolling performance, memory usage
WHERE: mnemo/runtime/memory/agent_state.py - consulted by schedulers and cleanup
WHO: Host layers updating an agent after each task and deciding when to clean up
TIME: Every operation O(1) apart from capability lookups (O(|capabilities|))

Lifecycle:
    idle ──start_task──▶ busy ──complete_task(ok)──▶ active
                              └─complete_task(fail)─▶ error
    active/error ──start_task──▶ busy

``perform_cleanup`` lowers memory usage without touching task or status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, List, Mapping, Optional

from pydantic import Field, field_validator, model_validator

from .errors import StateTransitionError, ValidationError
from .models import EngineComponent, EngineRecord, Integer, Number, Timestamp, generate_id, resolve_now, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TASK_MINUTES = 60
DEFAULT_CLEANUP_FREQUENCY_MS = 3_600_000
_MERGED_FIELDS = ("current_task", "performance_metrics", "memory_usage")


class AgentType(str, Enum):
    backend_architect = "backend-architect"
    backend_developer = "backend-developer"
    database_optimizer = "database-optimizer"
    file_analyzer = "file-analyzer"
    code_analyzer = "code-analyzer"
    test_runner = "test-runner"
    parallel_worker = "parallel-worker"


class AgentStatus(str, Enum):
    active = "active"
    idle = "idle"
    busy = "busy"
    error = "error"


DEFAULT_CAPABILITIES: Mapping[AgentType, tuple[str, ...]] = MappingProxyType(
    {
        AgentType.backend_architect: (
            "api-design",
            "service-architecture",
            "database-design",
            "caching-strategies",
            "security-patterns",
            "scalability-planning",
        ),
        AgentType.backend_developer: (
            "code-implementation",
            "unit-testing",
            "debugging",
            "refactoring",
            "performance-optimization",
            "documentation",
        ),
        AgentType.database_optimizer: (
            "schema-design",
            "index-optimization",
            "query-tuning",
            "migration-scripts",
            "constraint-management",
            "performance-analysis",
        ),
        AgentType.file_analyzer: (
            "file-summarization",
            "log-analysis",
            "content-extraction",
            "size-reduction",
            "pattern-detection",
        ),
        AgentType.code_analyzer: (
            "bug-detection",
            "code-review",
            "security-analysis",
            "complexity-analysis",
            "dependency-tracking",
        ),
        AgentType.test_runner: (
            "test-execution",
            "result-analysis",
            "coverage-reporting",
            "performance-testing",
            "integration-testing",
        ),
        AgentType.parallel_worker: (
            "workflow-coordination",
            "task-distribution",
            "progress-tracking",
            "conflict-resolution",
            "synchronization",
        ),
    }
)


class _Component(EngineComponent):
    record_label: ClassVar[str] = "agent state"


class CurrentTask(_Component):
    task_id: Optional[str] = None
    issue_number: Optional[int] = None
    stream: Optional[str] = None
    started_at: Optional[Timestamp] = None
    estimated_completion: Optional[Timestamp] = None


class PerformanceMetrics(_Component):
    success_rate: Number = Field(default=0.0, ge=0.0, le=1.0)
    avg_completion_time: Number = Field(default=0.0, ge=0.0)
    context_efficiency: Number = Field(default=0.0, ge=0.0)
    total_completed: Integer = Field(default=0, ge=0)
    total_failed: Integer = Field(default=0, ge=0)
    total_execution_time: Number = Field(default=0.0, ge=0.0)
    last_performance_update: Timestamp = Field(default_factory=utcnow)


class MemoryUsage(_Component):
    contexts_active: Integer = Field(default=0, ge=0)
    memory_size_mb: Number = Field(default=0.0, ge=0.0)
    peak_memory_size_mb: Number = Field(default=0.0, ge=0.0)
    last_cleanup: Timestamp = Field(default_factory=utcnow)
    cleanup_frequency_ms: Number = Field(default=DEFAULT_CLEANUP_FREQUENCY_MS, ge=0)
    retention_policy: str = "default"


class AgentRuntimeState(EngineRecord):
    """One agent's live status, capabilities and rolling metrics."""

    record_label: ClassVar[str] = "agent state"

    id: str = Field(default_factory=generate_id, min_length=1)
    type: AgentType = AgentType.backend_developer
    status: AgentStatus = AgentStatus.idle
    created: Timestamp = Field(default_factory=utcnow)
    updated: Timestamp = Field(default_factory=utcnow)
    current_task: CurrentTask = Field(default_factory=CurrentTask)
    capabilities: List[str] = Field(default_factory=list)
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    memory_usage: MemoryUsage = Field(default_factory=MemoryUsage)

    @model_validator(mode="before")
    @classmethod
    def _seed_capabilities(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("capabilities") is None:
            try:
                agent_type = AgentType(data.get("type", AgentType.backend_developer))
            except ValueError:
                return data  # the type field reports the error
            data = {**data, "capabilities": list(DEFAULT_CAPABILITIES[agent_type])}
        return data

    @field_validator("capabilities")
    @classmethod
    def _unique_capabilities(cls, value: List[str]) -> List[str]:
        seen: set[str] = set()
        for capability in value:
            if capability in seen:
                raise ValueError(f"duplicate capability: {capability}")
            seen.add(capability)
        return value

    # ---------------------- updates ----------------------
    def update(self, **changes: Any) -> "AgentRuntimeState":
        """Apply validated changes; nested task, metrics and usage mappings are merged.

        ``id`` and ``created`` are never changed. Nothing is applied if any
        change fails validation.
        """

        changes.pop("id", None)
        changes.pop("created", None)
        data = self.model_dump()
        for key, value in changes.items():
            if key in _MERGED_FIELDS and isinstance(value, Mapping):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        data["updated"] = utcnow()
        updated = type(self)(**data)
        for name in type(self).model_fields:
            setattr(self, name, getattr(updated, name))
        return self

    # ---------------------- task lifecycle ----------------------
    def start_task(
        self,
        task_id: str,
        *,
        issue_number: int | None = None,
        stream: str | None = None,
        estimated_duration_minutes: float | None = None,
        now: datetime | None = None,
    ) -> "AgentRuntimeState":
        """Move to ``busy`` and stamp the current task with its estimated completion."""

        if self.status is AgentStatus.busy:
            raise StateTransitionError(
                f"Agent {self.id} is already busy with task {self.current_task.task_id}"
            )
        now = resolve_now(now)
        minutes = DEFAULT_TASK_MINUTES if estimated_duration_minutes is None else estimated_duration_minutes
        self.current_task = CurrentTask(
            task_id=task_id,
            issue_number=issue_number,
            stream=stream,
            started_at=now,
            estimated_completion=now + timedelta(milliseconds=minutes * 60_000),
        )
        self.status = AgentStatus.busy
        self.updated = now
        logger.info(f"Agent {self.id} started task {task_id}")
        return self

    def complete_task(
        self,
        success: bool = True,
        *,
        execution_time: float | None = None,
        memory_peak: float | None = None,
        now: datetime | None = None,
    ) -> "AgentRuntimeState":
        """Fold the finished task into the cumulative metrics and leave ``busy``.

        ``execution_time`` is in milliseconds; when omitted it is measured
        from the task's ``started_at``.
        """

        if self.status is not AgentStatus.busy:
            raise StateTransitionError(f"Agent {self.id} has no task in progress (status={self.status.value})")
        now = resolve_now(now)
        started = self.current_task.started_at or now
        elapsed = execution_time if execution_time is not None else (now - started).total_seconds() * 1000

        metrics = self.performance_metrics
        if success:
            metrics.total_completed += 1
        else:
            metrics.total_failed += 1
        metrics.total_execution_time += elapsed

        total = metrics.total_completed + metrics.total_failed
        metrics.success_rate = metrics.total_completed / total if total else 0.0
        metrics.avg_completion_time = (
            metrics.total_execution_time / metrics.total_completed if metrics.total_completed else 0.0
        )
        metrics.last_performance_update = now

        if memory_peak is not None and memory_peak > self.memory_usage.peak_memory_size_mb:
            self.memory_usage.peak_memory_size_mb = memory_peak

        self._recompute_efficiency()
        task_id = self.current_task.task_id
        self.current_task = CurrentTask()
        self.status = AgentStatus.active if success else AgentStatus.error
        self.updated = now
        logger.info(f"Agent {self.id} finished task {task_id}: {'success' if success else 'failure'}")
        return self

    # ---------------------- memory pressure ----------------------
    def update_memory_usage(
        self,
        *,
        contexts_active: int | None = None,
        memory_size_mb: float | None = None,
    ) -> "AgentRuntimeState":
        usage = self.memory_usage
        if contexts_active is not None:
            if contexts_active < 0:
                raise ValidationError("Invalid memory usage", ["contexts_active must be non-negative"])
            usage.contexts_active = contexts_active
        if memory_size_mb is not None:
            if memory_size_mb < 0:
                raise ValidationError("Invalid memory usage", ["memory_size_mb must be non-negative"])
            usage.memory_size_mb = memory_size_mb
            usage.peak_memory_size_mb = max(usage.peak_memory_size_mb, memory_size_mb)
        self._recompute_efficiency()
        self.touch()
        return self

    def needs_cleanup(self, *, now: datetime | None = None) -> bool:
        elapsed_ms = (resolve_now(now) - self.memory_usage.last_cleanup).total_seconds() * 1000
        return elapsed_ms > self.memory_usage.cleanup_frequency_ms

    def perform_cleanup(
        self,
        *,
        contexts_freed: int = 0,
        memory_freed: float = 0,
        now: datetime | None = None,
    ) -> "AgentRuntimeState":
        """Subtract freed resources (floored at zero) and stamp ``last_cleanup``."""

        now = resolve_now(now)
        usage = self.memory_usage
        usage.contexts_active = max(0, usage.contexts_active - (contexts_freed or 0))
        usage.memory_size_mb = max(0.0, usage.memory_size_mb - (memory_freed or 0))
        usage.last_cleanup = now
        self._recompute_efficiency()
        self.updated = now
        logger.info(
            f"Agent {self.id} cleanup: {usage.contexts_active} contexts, {usage.memory_size_mb:.1f}MB remaining"
        )
        return self

    # ---------------------- capabilities ----------------------
    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities

    def add_capability(self, capability: str) -> "AgentRuntimeState":
        if capability not in self.capabilities:
            self.capabilities.append(capability)
            self.touch()
        return self

    def remove_capability(self, capability: str) -> "AgentRuntimeState":
        if capability in self.capabilities:
            self.capabilities.remove(capability)
            self.touch()
        else:
            logger.debug(f"Agent {self.id}: capability {capability} not present")
        return self

    # ---------------------- reporting ----------------------
    def workload_percentage(self, *, now: datetime | None = None) -> float:
        if self.status is AgentStatus.idle:
            return 0.0
        if self.status is AgentStatus.error:
            return 100.0
        if self.status is AgentStatus.busy:
            task = self.current_task
            if task.started_at and task.estimated_completion:
                total = (task.estimated_completion - task.started_at).total_seconds()
                if total <= 0:
                    return 100.0
                elapsed = (resolve_now(now) - task.started_at).total_seconds()
                return min(100.0, max(0.0, elapsed / total * 100))
            return 75.0
        return 50.0

    def performance_summary(self) -> dict[str, Any]:
        metrics = self.performance_metrics
        usage = self.memory_usage
        return {
            "success_rate": f"{metrics.success_rate * 100:.1f}%",
            "avg_completion_time": f"{metrics.avg_completion_time / 1000 / 60:.1f}m",
            "context_efficiency": f"{metrics.context_efficiency:.2f}",
            "total_tasks": metrics.total_completed + metrics.total_failed,
            "memory_usage": f"{usage.memory_size_mb:.1f}MB ({usage.contexts_active} contexts)",
        }

    def summary(self) -> str:
        perf = self.performance_summary()
        return (
            f"AgentState[{self.id[:8]}...] {self.type.value} ({self.status.value}) - "
            f"Workload: {self.workload_percentage():.0f}%, Success: {perf['success_rate']}, "
            f"Memory: {perf['memory_usage']}, Tasks: {perf['total_tasks']}"
        )

    def _recompute_efficiency(self) -> None:
        usage = self.memory_usage
        self.performance_metrics.context_efficiency = (
            usage.contexts_active / usage.memory_size_mb if usage.memory_size_mb > 0 else 0.0
        )


__all__ = [
    "AgentRuntimeState",
    "AgentStatus",
    "AgentType",
    "CurrentTask",
    "DEFAULT_CAPABILITIES",
    "MemoryUsage",
    "PerformanceMetrics",
]
