"""
Engine Errors - Failure taxonomy for the retention engine

WHAT: Exception types raised by context, memory and agent-state operations
WHERE: mnemo/runtime/memory/errors.py - shared by every engine module
WHO: Callers deciding whether a failure is user-facing or retryable
TIME: Raised synchronously; no operation in the engine retries

Missing targets (unknown interaction ids, absent capabilities) are not errors
here: mutators treat them as no-ops.
"""

from __future__ import annotations

from typing import Iterable, List

from pydantic import ValidationError as PydanticValidationError


class MemoryEngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(MemoryEngineError, ValueError):
    """Raised when construction input is malformed (bad enum, range, container type)."""

    def __init__(self, message: str, errors: Iterable[str] | None = None) -> None:
        self.errors: List[str] = list(errors or [])
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, label: str, exc: PydanticValidationError) -> "ValidationError":
        errors = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
            errors.append(f"{loc}: {err.get('msg', 'invalid value')}")
        return cls(f"Invalid {label} data", errors)


class DeserializationError(MemoryEngineError):
    """Raised when a serialized payload cannot be turned back into an entity."""


class StateTransitionError(MemoryEngineError):
    """Raised when an agent task lifecycle step is attempted from the wrong status."""


__all__ = [
    "MemoryEngineError",
    "ValidationError",
    "DeserializationError",
    "StateTransitionError",
]
