"""Record and level-set models.

Records are designed to be:
- Flat and free-form: anything beyond `level`/`message` rides along as extra fields.
- Mutable while they travel the pipeline (the splat extractor and formats edit them).
- Cheap to build from loose input without ever raising.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


NPM_LEVELS: dict[str, int] = {
    "error": 0,
    "warn": 1,
    "info": 2,
    "http": 3,
    "verbose": 4,
    "debug": 5,
    "silly": 6,
}

CLI_LEVELS: dict[str, int] = {
    "error": 0,
    "warn": 1,
    "help": 2,
    "data": 3,
    "info": 4,
    "debug": 5,
    "prompt": 6,
    "verbose": 7,
    "input": 8,
    "silly": 9,
}

SYSLOG_LEVELS: dict[str, int] = {
    "emerg": 0,
    "alert": 1,
    "crit": 2,
    "error": 3,
    "warning": 4,
    "notice": 5,
    "info": 6,
    "debug": 7,
}

BUILTIN_LEVELS: dict[str, dict[str, int]] = {
    "npm": NPM_LEVELS,
    "cli": CLI_LEVELS,
    "syslog": SYSLOG_LEVELS,
}

# Fields owned by the pipeline rather than the producer.
_INTERNAL_FIELDS = frozenset({"severity", "rendered"})


class Record(BaseModel):
    """A single canonical log entry flowing through the dispatcher."""

    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    level: str = ""
    message: Any = ""

    # Positional interpolation arguments matched to message tokens.
    splat: list[Any] | None = None

    # Internal severity tag. Mirrors `level` unless a format overrides it.
    severity: str | None = None

    # Serialized output written by formats such as JsonFormat.
    rendered: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Record:
        """Build a record from a mapping without validating it.

        Malformed input (a non-string level, odd message types) is carried
        through as-is so that logging never raises.
        """
        return cls.model_construct(**{str(key): value for key, value in data.items()})

    def get(self, key: str, default: Any = None) -> Any:
        """Return a declared or extra field by name."""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key, default)

    def payload(self) -> dict[str, Any]:
        """Return the producer-visible fields (internal fields excluded)."""
        data: dict[str, Any] = {"level": self.level, "message": self.message}
        if self.splat is not None:
            data["splat"] = self.splat
        for key, value in (self.model_extra or {}).items():
            if key not in _INTERNAL_FIELDS:
                data[key] = value
        return data


class LevelSet(BaseModel):
    """Mapping of level name to numeric severity (lower is more severe)."""

    model_config = ConfigDict(frozen=True)

    levels: dict[str, int]

    # Right-padding per level so every level name prints at equal width.
    paddings: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive_paddings(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and isinstance(data.get("levels"), Mapping):
            levels = data["levels"]
            width = max((len(str(name)) for name in levels), default=0)
            data = {**data, "paddings": {name: " " * (width - len(str(name))) for name in levels}}
        return data

    @field_validator("levels")
    @classmethod
    def validate_levels(cls, v: dict[str, int]) -> dict[str, int]:
        """Reject an empty level set."""
        if not v:
            raise ValueError("levels must define at least one level")
        return v

    @classmethod
    def from_mapping(cls, levels: Mapping[str, int]) -> LevelSet:
        return cls(levels=dict(levels))

    def __contains__(self, name: object) -> bool:
        return name in self.levels

    def value(self, name: str) -> int | None:
        """Return the numeric severity of `name`, or None when unknown."""
        return self.levels.get(name)
