"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating dispatcher options, including rejecting removed legacy options,
  before any of them is applied.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Literal, TypeVar

import dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import RemovedOptionError
from .models import BUILTIN_LEVELS

_T = TypeVar("_T", int, float)

# Options that existed in older releases; accepted spellings map to one display name.
REMOVED_OPTIONS: dict[str, str] = {
    "colors": "colors",
    "emit_errs": "emit_errs",
    "emitErrs": "emit_errs",
    "formatters": "formatters",
    "pad_levels": "pad_levels",
    "padLevels": "pad_levels",
    "rewriters": "rewriters",
    "strip_colors": "strip_colors",
    "stripColors": "strip_colors",
}


def _get_env_str(name: str, default: str) -> str:
    """Read a string env var with a default."""
    value = os.getenv(name, "").strip()
    return value or default


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def check_removed_options(options: Mapping[str, Any]) -> None:
    """Raise `RemovedOptionError` if any removed legacy option is present."""
    found = sorted({display for key, display in REMOVED_OPTIONS.items() if key in options})
    if found:
        raise RemovedOptionError(found)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class LoggerOptions(BaseModel):
    """Options accepted by `Dispatcher(...)` / `Dispatcher.configure(...)`.

    `levels` and `format` left unset keep the dispatcher's current values.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    levels: dict[str, int] | None = Field(default=None, description="Level name -> severity")
    level: str = Field(default="info", description="Default threshold for sinks without their own level")
    format: Any = Field(default=None, description="Format adapter applied to every record")
    sinks: list[Any] = Field(default_factory=list, description="Sinks to attach, in order")
    exit_on_error: bool | Callable[[BaseException], bool] = Field(
        default=True, description="Chain to the previous excepthook after logging an uncaught exception"
    )
    exception_handlers: list[Any] = Field(default_factory=list, description="Extra sinks for uncaught exceptions")

    @model_validator(mode="before")
    @classmethod
    def reject_removed(cls, data: Any) -> Any:
        # Runs before field validation so the error is not wrapped in a ValidationError.
        if isinstance(data, Mapping):
            check_removed_options(data)
        return data

    @field_validator("sinks", "exception_handlers", mode="before")
    @classmethod
    def listify(cls, v: Any) -> list[Any]:
        """Accept a single sink as well as a sequence of sinks."""
        return _as_list(v)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: Any) -> Any:
        if v is not None and not callable(getattr(v, "transform", None)):
            raise ValueError("format must expose transform(record, options)")
        return v


class Settings(BaseModel):
    """Environment-backed defaults for building a dispatcher."""

    level: str = Field(default="info", description="Default level threshold")
    levels: Literal["npm", "cli", "syslog"] = Field(default="npm", description="Built-in level set")
    exit_on_error: bool = Field(default=True, description="Exit after logging an uncaught exception")
    duckdb_path: Path | None = Field(default=None, description="Optional DuckDB file for a persistent sink")
    queue_size: int = Field(default=10000, description="Max records buffered by background sinks")

    @field_validator("queue_size")
    def validate_queue_size(cls, v: int) -> int:
        """Reject non-positive queue sizes."""
        if v <= 0:
            raise ValueError(f"RELAYLOG_QUEUE_SIZE must be > 0. Got: {v}")
        return v

    @model_validator(mode="after")
    def validate_level(self) -> Settings:
        """The threshold must be a level of the selected set."""
        if self.level not in BUILTIN_LEVELS[self.levels]:
            raise ValueError(
                f"RELAYLOG_LEVEL={self.level!r} is not a {self.levels} level. "
                f"Expected one of: {', '.join(BUILTIN_LEVELS[self.levels])}"
            )
        return self

    def to_options(self) -> dict[str, Any]:
        """Return the dispatcher options these settings describe (without sinks)."""
        return {
            "levels": dict(BUILTIN_LEVELS[self.levels]),
            "level": self.level,
            "exit_on_error": self.exit_on_error,
        }


def load_config() -> Settings:
    """Load relaylog settings from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages for malformed values.
    """
    dotenv.load_dotenv()

    duckdb_path = os.getenv("RELAYLOG_DUCKDB_PATH", "").strip()
    return Settings(
        level=_get_env_str("RELAYLOG_LEVEL", "info"),
        levels=_get_env_str("RELAYLOG_LEVELS", "npm"),
        exit_on_error=_get_env_bool("RELAYLOG_EXIT_ON_ERROR", True),
        duckdb_path=Path(duckdb_path) if duckdb_path else None,
        queue_size=_get_env_number("RELAYLOG_QUEUE_SIZE", 10000, int),
    )
