"""Configuration for the mnemo retention engine."""

from .settings import ENV_PREFIX, EngineSettings, configure_logging  # noqa: F401

__all__ = ["ENV_PREFIX", "EngineSettings", "configure_logging"]
