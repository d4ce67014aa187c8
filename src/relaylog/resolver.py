"""Call-shape resolution and splat extraction.

A log call arrives in one of four shapes:

- ``log(record)``                      -> RecordCall
- ``log(level, record)``               -> LevelRecordCall
- ``log(level, message)``              -> LevelMessageCall
- ``log(level, message, *args)``       -> FormatCall

`classify()` picks the shape once at the boundary; `resolve()` turns it into the
canonical `Record`. Nothing downstream looks at call arity again.
"""

from __future__ import annotations

import re
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from .models import Record

# printf-style tokens understood by SplatFormat, including the `%%` escape.
FORMAT_TOKEN_RE = re.compile(r"%[scdjifoO%]")
ESCAPED_PERCENT_RE = re.compile(r"%%")


@dataclass(frozen=True)
class RecordCall:
    record: Record | Mapping[str, Any]


@dataclass(frozen=True)
class LevelRecordCall:
    level: str
    record: Record | Mapping[str, Any]


@dataclass(frozen=True)
class LevelMessageCall:
    level: str
    message: Any


@dataclass(frozen=True)
class FormatCall:
    level: str
    message: Any
    args: tuple[Any, ...]


CallShape: TypeAlias = RecordCall | LevelRecordCall | LevelMessageCall | FormatCall


def is_structured(value: Any) -> bool:
    """Return True for values that can serve as a whole record."""
    return isinstance(value, (Record, Mapping))


def classify(first: Any, *rest: Any) -> CallShape:
    """Classify a producer call by arity and argument types."""
    if not rest:
        if is_structured(first):
            return RecordCall(record=first)
        # A bare message with no level; the transform stage flags the empty level.
        return LevelMessageCall(level="", message=first)
    if len(rest) == 1:
        if is_structured(rest[0]):
            return LevelRecordCall(level=first, record=rest[0])
        return LevelMessageCall(level=first, message=rest[0])
    return FormatCall(level=first, message=rest[0], args=tuple(rest[1:]))


def _as_record(value: Record | Mapping[str, Any]) -> Record:
    if isinstance(value, Record):
        return value
    return Record.from_mapping(value)


def format_exception(exc: BaseException) -> str:
    """Render an exception with its traceback, as stored under `err`."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def resolve(shape: CallShape) -> Record:
    """Convert a classified call into the canonical record."""
    if isinstance(shape, RecordCall):
        record = _as_record(shape.record)
        record.severity = record.level
        return record

    if isinstance(shape, LevelRecordCall):
        record = _as_record(shape.record)
        record.level = shape.level
        record.severity = shape.level
        return record

    if isinstance(shape, LevelMessageCall):
        return Record.model_construct(level=shape.level, severity=shape.level, message=shape.message)

    record = Record.model_construct(level=shape.level, severity=shape.level, message=shape.message)
    tokens = FORMAT_TOKEN_RE.findall(shape.message) if isinstance(shape.message, str) else []
    if tokens:
        return extract_splat(record, tokens, list(shape.args))

    # No interpolation tokens: only the first trailing argument survives, as metadata.
    meta = shape.args[0]
    if isinstance(meta, BaseException):
        record.err = format_exception(meta)
    else:
        record.meta = meta
    return record


def extract_splat(record: Record, tokens: list[str], args: list[Any]) -> Record:
    """Split trailing arguments into interpolation `splat` and overflow `meta`.

    The number of slots expecting an argument is the token count minus the
    `%%` escapes. Arguments beyond that are overflow, taken from the tail, and
    only the first overflow element is kept as `meta`. e.g.

        "%d%% %s %j" with (100, "wow", {"a": 1}, {"meta": True})
        expected = 4 tokens - 1 escape = 3, extra = 3 - 4 = -1
        splat = [100, "wow", {"a": 1}], meta = {"meta": True}
    """
    message = record.message if isinstance(record.message, str) else ""
    escapes = len(ESCAPED_PERCENT_RE.findall(message))
    expected = len(tokens) - escapes
    extra = expected - len(args)

    metas: list[Any] = []
    if extra < 0:
        metas = args[extra:]
        del args[extra:]

    record.splat = args
    if metas:
        record.meta = metas[0]
    return record
