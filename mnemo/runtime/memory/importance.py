"""
Importance Model - Structural and temporal scoring of context units

WHAT: 0-100 importance score from hierarchy, links, tags, type and age
WHERE: mnemo/runtime/memory/importance.py - scoring leaf; reads Context only
WHO: Callers ranking contexts before cleanup or prompt packing
TIME: O(1) per context

score = base + depth·hierarchy_bonus + |children|·children_bonus
        + |references|·references_bonus + |tags|·tag_bonus
        + type_bonus[type] - age_days(updated)·age_decay

The result is clamped to [0, 100] and rounded half-up. Default weights are
consumed by dashboards and fixtures, so they must not drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from .context import Context, ContextType
from .errors import ValidationError
from .models import age_in_days, round_half_up, utcnow

logger = logging.getLogger(__name__)

TYPE_IMPORTANCE: Mapping[ContextType, int] = MappingProxyType(
    {
        ContextType.project: 20,
        ContextType.epic: 15,
        ContextType.task: 10,
        ContextType.agent: 8,
        ContextType.session: 5,
    }
)

MIN_IMPORTANCE = 0
MAX_IMPORTANCE = 100


@dataclass(frozen=True, slots=True)
class ImportanceConfig:
    """Weights for ``ImportanceModel``; defaults reproduce the production scores."""

    hierarchy_bonus: float = 5
    children_bonus: float = 3
    references_bonus: float = 2
    tag_bonus: float = 1
    age_decay: float = 0.1
    type_bonuses: Mapping[ContextType, int] = field(default_factory=lambda: TYPE_IMPORTANCE)

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> "ImportanceConfig":
        """Build a config from an option mapping, rejecting unknown keys."""

        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValidationError("Unknown importance options", unknown)
        for name, value in options.items():
            if name == "type_bonuses":
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError("Invalid importance options", [f"{name} must be a number"])
        if "type_bonuses" in options:
            try:
                bonuses = {ContextType(key): value for key, value in dict(options["type_bonuses"]).items()}
            except (TypeError, ValueError) as exc:
                raise ValidationError("Invalid importance options", [f"type_bonuses: {exc}"]) from exc
            options["type_bonuses"] = MappingProxyType({**TYPE_IMPORTANCE, **bonuses})
        return cls(**options)


class ImportanceModel:
    """Computes importance scores for contexts under a fixed configuration."""

    def __init__(self, config: ImportanceConfig | None = None) -> None:
        self.config = config or ImportanceConfig()

    def calculate(self, context: Context, *, now: datetime | None = None) -> int:
        cfg = self.config
        rel = context.relationships

        score = float(context.importance or 0)
        score += len(context.hierarchy) * cfg.hierarchy_bonus
        score += len(rel.children) * cfg.children_bonus
        score += len(rel.references) * cfg.references_bonus
        score += len(context.metadata.tags) * cfg.tag_bonus
        score -= age_in_days(context.updated, now) * cfg.age_decay
        score += cfg.type_bonuses.get(context.type, 0)

        clamped = max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, round_half_up(score)))
        return int(clamped)

    def update(self, context: Context, *, now: datetime | None = None) -> Context:
        """Store the recomputed score on ``context`` and stamp ``updated``."""

        previous = context.importance
        context.importance = self.calculate(context, now=now)
        context.touch(now)
        if previous != context.importance:
            logger.debug(f"Context {context.id}: importance {previous} -> {context.importance}")
        return context


def calculate_importance(context: Context, options: ImportanceConfig | Mapping[str, Any] | None = None) -> int:
    """Score ``context`` with default weights, or weights overridden by ``options``."""
    return ImportanceModel(_as_config(options)).calculate(context)


def update_importance(context: Context, options: ImportanceConfig | Mapping[str, Any] | None = None) -> Context:
    return ImportanceModel(_as_config(options)).update(context, now=utcnow())


def _as_config(options: ImportanceConfig | Mapping[str, Any] | None) -> ImportanceConfig:
    if isinstance(options, ImportanceConfig):
        return options
    return ImportanceConfig.from_options(options)


__all__ = [
    "ImportanceConfig",
    "ImportanceModel",
    "TYPE_IMPORTANCE",
    "calculate_importance",
    "update_importance",
]
