"""
Context Units - Hierarchical knowledge units with structural mutators

WHAT: Context record (project/epic/task/session/agent) and its query filter
WHERE: mnemo/runtime/memory/context.py - input to the importance model
WHO: API/CLI layers creating and linking knowledge units
TIME: Structural mutations O(n) in the size of the touched relationship list

A Context is a node in a path hierarchy (root-to-leaf segments) with parent,
child and reference links. Importance is stored but only ever recomputed on
demand by ``ImportanceModel``; no structural mutation changes it.

Boundary Notes:
- Every structural mutation stamps ``updated`` (which drives age decay)
- A context may not parent itself or list its parent among its children
- ``previous_interactions`` keeps only the last MAX_CONTEXT_INTERACTIONS entries
- Assigning to a nested field is validated per field; the parent/children rules
  are checked by the mutators and on whole-record validation only
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Deque, Iterable, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    EngineComponent,
    EngineRecord,
    Integer,
    Number,
    Timestamp,
    generate_id,
    resolve_now,
    unique_strings,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_CONTEXT_INTERACTIONS = 20


class ContextType(str, Enum):
    """Valid context unit types."""

    project = "project"
    epic = "epic"
    task = "task"
    session = "session"
    agent = "agent"


class ContextMetadata(EngineComponent):
    record_label: ClassVar[str] = "context"

    agent_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    retention_policy: str = "default"

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return unique_strings(value, "tags")


class ContextRelationships(EngineComponent):
    record_label: ClassVar[str] = "context"

    parent: Optional[str] = None
    children: List[str] = Field(default_factory=list)
    references: List[str] = Field(default_factory=list)

    @field_validator("children", "references")
    @classmethod
    def _unique_links(cls, value: List[str], info) -> List[str]:
        return unique_strings(value, info.field_name)


class ContextInteraction(EngineComponent):
    """Exchange that used this context, kept as a short trail."""

    record_label: ClassVar[str] = "context"

    timestamp: Timestamp = Field(default_factory=utcnow)
    prompt: str = ""
    agent_id: str = "unknown"
    response: str = ""
    tokens: Integer = Field(default=0, ge=0)
    duration: Number = Field(default=0, ge=0)


def interaction_trail(items: Iterable[ContextInteraction] = ()) -> Deque[ContextInteraction]:
    return deque(items, maxlen=MAX_CONTEXT_INTERACTIONS)


@dataclass(slots=True)
class ContextQuery:
    """Filter used by ``Context.matches``; every criterion is optional."""

    type: ContextType | str | None = None
    tags: tuple[str, ...] = ()
    hierarchy: tuple[str, ...] = ()
    min_importance: int | None = None
    content_search: str | None = None


class Context(EngineRecord):
    """Hierarchical, taggable unit of stored knowledge."""

    record_label: ClassVar[str] = "context"

    id: str = Field(default_factory=generate_id, min_length=1)
    type: ContextType = ContextType.task
    hierarchy: List[str] = Field(default_factory=list)
    importance: Integer = Field(default=0, ge=0, le=100)
    content: str = ""
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)
    relationships: ContextRelationships = Field(default_factory=ContextRelationships)
    previous_interactions: Deque[ContextInteraction] = Field(default_factory=interaction_trail)
    created: Timestamp = Field(default_factory=utcnow)
    updated: Timestamp = Field(default_factory=utcnow)

    @field_validator("hierarchy")
    @classmethod
    def _segments_not_blank(cls, value: List[str]) -> List[str]:
        if any(not segment.strip() for segment in value):
            raise ValueError("hierarchy segments must be non-empty strings")
        return value

    @field_validator("previous_interactions", mode="after")
    @classmethod
    def _bounded_trail(cls, value: Iterable[ContextInteraction]) -> Deque[ContextInteraction]:
        items = list(value)
        if len(items) > MAX_CONTEXT_INTERACTIONS:
            raise ValueError(
                f"at most {MAX_CONTEXT_INTERACTIONS} previous interactions may be stored, got {len(items)}"
            )
        return interaction_trail(items)

    @model_validator(mode="after")
    def _no_self_parenting(self) -> "Context":
        parent = self.relationships.parent
        if parent is not None:
            if parent == self.id:
                raise ValueError("a context cannot be its own parent")
            if parent in self.relationships.children:
                raise ValueError("parent must not also appear in children")
        return self

    # ---------------------- updates ----------------------
    def update(self, **changes: Any) -> "Context":
        """Apply validated changes; ``metadata``/``relationships`` are merged, not replaced."""

        changes.pop("id", None)
        changes.pop("created", None)
        data = self.model_dump()
        for key, value in changes.items():
            if key in ("metadata", "relationships") and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        data["updated"] = utcnow()
        updated = type(self)(**data)
        for name in type(self).model_fields:
            setattr(self, name, getattr(updated, name))
        return self

    # ---------------------- relationships ----------------------
    def has_parent(self) -> bool:
        return self.relationships.parent is not None

    def has_children(self) -> bool:
        return bool(self.relationships.children)

    def has_references(self) -> bool:
        return bool(self.relationships.references)

    def set_parent(self, parent_id: str) -> "Context":
        if parent_id == self.id or parent_id in self.relationships.children:
            raise ValidationError("Invalid context parent", [f"{parent_id} would make the context its own ancestor"])
        self.relationships.parent = parent_id
        self.touch()
        return self

    def remove_parent(self) -> "Context":
        self.relationships.parent = None
        self.touch()
        return self

    def add_child(self, child_id: str) -> "Context":
        if child_id == self.id or child_id == self.relationships.parent:
            raise ValidationError("Invalid context child", [f"{child_id} would make the context its own ancestor"])
        if child_id not in self.relationships.children:
            self.relationships.children.append(child_id)
            self.touch()
        return self

    def remove_child(self, child_id: str) -> "Context":
        if _discard(self.relationships.children, child_id):
            self.touch()
        else:
            logger.debug(f"Context {self.id}: child {child_id} not present")
        return self

    def add_reference(self, reference_id: str) -> "Context":
        if reference_id not in self.relationships.references:
            self.relationships.references.append(reference_id)
            self.touch()
        return self

    def remove_reference(self, reference_id: str) -> "Context":
        if _discard(self.relationships.references, reference_id):
            self.touch()
        return self

    # ---------------------- interactions ----------------------
    def add_interaction(
        self,
        *,
        prompt: str | None = None,
        response: str | None = None,
        agent_id: str | None = None,
        tokens: int = 0,
        duration: float = 0,
        timestamp: datetime | None = None,
    ) -> "Context":
        """Record an exchange against this context; past the limit the oldest drops out."""

        try:
            entry = ContextInteraction(
                timestamp=resolve_now(timestamp),
                prompt=prompt or "",
                agent_id=agent_id or "unknown",
                response=response or "",
                tokens=tokens,
                duration=duration,
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(self.record_label, exc) from exc
        self.previous_interactions.append(entry)
        self.touch()
        return self

    # ---------------------- tags ----------------------
    def add_tag(self, tag: str) -> "Context":
        if tag not in self.metadata.tags:
            self.metadata.tags.append(tag)
            self.touch()
        return self

    def remove_tag(self, tag: str) -> "Context":
        if _discard(self.metadata.tags, tag):
            self.touch()
        return self

    # ---------------------- queries ----------------------
    @property
    def hierarchy_path(self) -> str:
        return "/".join(self.hierarchy)

    def matches(self, query: ContextQuery) -> bool:
        """Return True when every criterion set on ``query`` holds for this context."""

        if query.type is not None and self.type != ContextType(query.type):
            return False
        if query.tags and not all(tag in self.metadata.tags for tag in query.tags):
            return False
        if query.hierarchy:
            if len(self.hierarchy) < len(query.hierarchy):
                return False
            if any(level != self.hierarchy[i] for i, level in enumerate(query.hierarchy)):
                return False
        if query.min_importance and self.importance < query.min_importance:
            return False
        if query.content_search and query.content_search.lower() not in self.content.lower():
            return False
        return True

    def summary(self) -> str:
        rel = self.relationships
        return (
            f"Context[{self.id[:8]}...] {self.type.value} at {self.hierarchy_path} "
            f"(importance: {self.importance}, children: {len(rel.children)}, "
            f"refs: {len(rel.references)}, tags: {len(self.metadata.tags)})"
        )


def _discard(values: List[str], item: str) -> bool:
    try:
        values.remove(item)
    except ValueError:
        return False
    return True


__all__ = [
    "Context",
    "ContextInteraction",
    "ContextMetadata",
    "ContextQuery",
    "ContextRelationships",
    "ContextType",
    "MAX_CONTEXT_INTERACTIONS",
    "interaction_trail",
]
