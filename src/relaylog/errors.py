"""Error taxonomy and non-fatal diagnostic conditions.

Only configuration problems and rejected sinks are raised. Everything that can
go wrong while a record is in flight is reported instead: conditions go to the
dispatcher's diagnostic handlers, sink failures to its error handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import Record


class RelaylogError(Exception):
    """Base class for errors raised by relaylog."""


class ConfigurationError(RelaylogError):
    """Dispatcher options were rejected; no part of them was applied."""


class RemovedOptionError(ConfigurationError):
    """A recognized but removed legacy option was supplied."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(
            "\n".join(
                [
                    f"{{ {', '.join(names)} }} were removed and are no longer supported.",
                    "Use a custom format (relaylog.formats.FunctionFormat) instead.",
                ]
            )
        )


class InvalidSinkError(RelaylogError):
    """A sink cannot accept records, even after legacy adaptation."""


class SinkDeliveryError(RelaylogError):
    """A single sink failed; raised by nobody, delivered to error handlers."""

    def __init__(self, sink_name: str, sink: Any, cause: BaseException) -> None:
        self.sink_name = sink_name
        self.sink = sink
        super().__init__(f"sink {sink_name!r} failed: {cause}")
        self.__cause__ = cause


class FormatError(RelaylogError):
    """The format adapter raised while transforming a record."""

    def __init__(self, record: Record, cause: BaseException) -> None:
        self.record = record
        super().__init__(f"format failed for record at level {record.level!r}: {cause}")
        self.__cause__ = cause


@dataclass(frozen=True)
class Condition:
    """A non-fatal diagnostic about one record's journey."""

    record: Record

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class UnknownLevelCondition(Condition):
    level: Any = None

    def describe(self) -> str:
        return f"Unknown logger level: {self.level}"


@dataclass(frozen=True)
class NoSinksCondition(Condition):
    def describe(self) -> str:
        return f"Attempt to write logs with no sinks {self.record.payload()!r}"
