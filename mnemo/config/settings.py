"""
Engine Settings - Environment-resolved defaults for the retention engine

WHAT: Dataclass of tunables read from MNEMO_* environment variables
WHERE: mnemo/config/settings.py - configuration layer above the runtime
WHO: Host processes wiring AgentMemory/AgentRuntimeState into services
TIME: Resolved once at startup

Unset variables fall back to the engine's built-in defaults, so an empty
environment reproduces the standard scoring and eviction behaviour exactly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from ..runtime.memory.agent_state import DEFAULT_CLEANUP_FREQUENCY_MS
from ..runtime.memory.errors import ValidationError
from ..runtime.memory.relevance import CompressionConfig, RelevanceQuery

ENV_PREFIX = "MNEMO_"

T = TypeVar("T")


@dataclass(slots=True)
class EngineSettings:
    log_level: str = "INFO"
    relevance_threshold: float = 0.3
    relevant_limit: int = 5
    keep_recent_count: int = 50
    compression_threshold: int = 100
    trend_window: int = 20
    cleanup_frequency_ms: float = DEFAULT_CLEANUP_FREQUENCY_MS

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        defaults = EngineSettings()
        return EngineSettings(
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level).upper(),
            relevance_threshold=_read(env, "RELEVANCE_THRESHOLD", float, defaults.relevance_threshold),
            relevant_limit=_read(env, "RELEVANT_LIMIT", int, defaults.relevant_limit),
            keep_recent_count=_read(env, "KEEP_RECENT", int, defaults.keep_recent_count),
            compression_threshold=_read(env, "COMPRESSION_THRESHOLD", int, defaults.compression_threshold),
            trend_window=_read(env, "TREND_WINDOW", int, defaults.trend_window),
            cleanup_frequency_ms=_read(env, "CLEANUP_FREQUENCY_MS", float, defaults.cleanup_frequency_ms),
        )

    def relevance_query(self, keywords: tuple[str, ...] = (), domain: Optional[str] = None) -> RelevanceQuery:
        return RelevanceQuery(keywords=keywords, domain=domain, threshold=self.relevance_threshold)

    def compression_config(self) -> CompressionConfig:
        return CompressionConfig(
            keep_recent_count=self.keep_recent_count,
            compression_threshold=self.compression_threshold,
        )


def _read(env: Mapping[str, str], name: str, parse: Callable[[str], T], default: T) -> T:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return parse(raw)
    except ValueError as exc:
        raise ValidationError("Invalid engine settings", [f"{ENV_PREFIX}{name}={raw!r}: {exc}"]) from exc


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    """Apply the configured level to the ``mnemo`` logger tree."""

    settings = settings or EngineSettings.from_env()
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        raise ValidationError("Invalid engine settings", [f"unknown log level {settings.log_level!r}"])
    logging.getLogger("mnemo").setLevel(level)


__all__ = ["ENV_PREFIX", "EngineSettings", "configure_logging"]
