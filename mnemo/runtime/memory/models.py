"""
Engine Models - Shared record base and value types

WHAT: Pydantic base class, numeric/timestamp field types and time helpers
WHERE: mnemo/runtime/memory/models.py - data layer under every engine entity
WHO: Context, AgentMemory and AgentRuntimeState records
TIME: Model validation <1ms

Every entity serializes field-for-field to JSON and back. Construction input is
validated eagerly and unknown keys are rejected, so a record that exists is a
record whose scoring and eviction behaviour is well defined.

Boundary Notes:
- Timestamps are always timezone-aware UTC
- "Set of string" fields are ordered lists without duplicates
- Numeric fields refuse strings and booleans instead of coercing them
- Attribute assignment is validated too; failures raise ``ValidationError``
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Iterable, List, Mapping, TypeVar

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .errors import DeserializationError, ValidationError

MS_PER_DAY = 1000 * 60 * 60 * 24

RecordT = TypeVar("RecordT", bound="EngineRecord")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: datetime | None = None) -> datetime:
    """``now`` normalised to UTC, or the current time when omitted."""
    return utcnow() if now is None else ensure_utc(now)


def age_in_days(timestamp: datetime, now: datetime | None = None) -> float:
    """Fractional days elapsed since ``timestamp`` (negative for future stamps)."""
    return (resolve_now(now) - ensure_utc(timestamp)).total_seconds() * 1000 / MS_PER_DAY


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like ``Math.round``: halves go towards positive infinity."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    if math.isnan(value):
        raise ValueError("must not be NaN")
    return value


def _require_integer(value: Any) -> Any:
    value = _require_number(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("must be an integer")
        return int(value)
    return value


Number = Annotated[float, BeforeValidator(_require_number)]
Integer = Annotated[int, BeforeValidator(_require_integer)]
Timestamp = Annotated[datetime, AfterValidator(ensure_utc)]


def unique_strings(values: Iterable[str], field_name: str) -> List[str]:
    """Validate that a list of strings holds no duplicates and return it as a list."""
    seen: set[str] = set()
    duplicates = []
    for item in values:
        if item in seen:
            duplicates.append(item)
        seen.add(item)
    if duplicates:
        raise ValueError(f"{field_name} contains duplicates: {sorted(set(duplicates))}")
    return list(values)


class EngineComponent(BaseModel):
    """Nested part of a record; attribute assignment is validated like construction.

    Rules spanning several fields of the owning record (a context not parenting
    itself) are only enforced by the record's mutator methods and on validation
    of the whole record.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    record_label: ClassVar[str] = "record"

    def __setattr__(self, name: str, value: Any) -> None:
        try:
            super().__setattr__(name, value)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(self.record_label, exc) from exc


class EngineRecord(EngineComponent):
    """Base for every serializable engine entity.

    Subclasses declare ``id``, ``created`` and ``updated`` fields and set
    ``record_label`` for error messages.
    """

    def __init__(self, /, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(self.record_label, exc) from exc

    # ------------------ serialization ------------------
    def to_object(self) -> dict[str, Any]:
        """Plain JSON-compatible mapping of every field."""
        return self.model_dump(mode="json")

    def serialize(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_object(cls: type[RecordT], data: Mapping[str, Any]) -> RecordT:
        """Validated construction from a mapping; raises ``ValidationError``."""
        if not isinstance(data, Mapping):
            raise ValidationError(f"Invalid {cls.record_label} data", ["expected a mapping"])
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(cls.record_label, exc) from exc

    @classmethod
    def deserialize(cls: type[RecordT], payload: str | bytes) -> RecordT:
        try:
            return cls.model_validate_json(payload)
        except (PydanticValidationError, ValueError, TypeError) as exc:
            raise DeserializationError(f"Failed to deserialize {cls.record_label}: {exc}") from exc

    def clone(self: RecordT, **overrides: Any) -> RecordT:
        """Copy with a fresh id and timestamps, then apply ``overrides``."""
        now = utcnow()
        data = self.model_dump()
        data.update({"id": generate_id(), "created": now, "updated": now})
        data.update(overrides)
        return type(self)(**data)

    def touch(self, now: datetime | None = None) -> None:
        self.updated = resolve_now(now)  # type: ignore[attr-defined]


__all__ = [
    "EngineComponent",
    "EngineRecord",
    "Integer",
    "MS_PER_DAY",
    "Number",
    "Timestamp",
    "age_in_days",
    "ensure_utc",
    "generate_id",
    "resolve_now",
    "round_half_up",
    "unique_strings",
    "utcnow",
]
