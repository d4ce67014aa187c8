"""Format adapters applied to every record before delivery.

The dispatcher depends only on the `FormatAdapter` protocol. The formats in this
module are the stock implementations; callers can pass anything with the same
shape (or wrap a plain function in `FunctionFormat`).
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Protocol

from .models import Record, utc_now
from .resolver import FORMAT_TOKEN_RE


class FormatAdapter(Protocol):
    """Pure `record -> record | None` transform; None drops the record."""

    options: Mapping[str, Any]

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        """Return the formatted record, or None to filter it out."""


def _dumps(value: Any, options: Mapping[str, Any]) -> str:
    # Stable output so formatting the same record twice renders identically.
    return json.dumps(
        value,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
        indent=options.get("indent"),
    )


class JsonFormat:
    """Serialize the record payload into `record.rendered` (the default format)."""

    def __init__(self, **options: Any) -> None:
        self.options: Mapping[str, Any] = options

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        record.rendered = _dumps(record.payload(), options)
        return record


class TimestampFormat:
    """Stamp `record.timestamp` with the current UTC time (ISO-8601)."""

    def __init__(self, **options: Any) -> None:
        self.options: Mapping[str, Any] = options

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        if record.get("timestamp") is None:
            record.timestamp = utc_now().isoformat()
        return record


def _interpolate(token: str, arg: Any) -> str:
    if token == "%s":
        return str(arg)
    if token in ("%d", "%i"):
        try:
            return str(int(arg))
        except (TypeError, ValueError):
            return "NaN"
    if token == "%f":
        try:
            return str(float(arg))
        except (TypeError, ValueError):
            return "NaN"
    if token == "%j":
        try:
            return json.dumps(arg, default=str)
        except ValueError:
            return "[Circular]"
    return repr(arg)


class SplatFormat:
    """Interpolate `record.splat` into printf-style tokens of the message.

    Tokens without a matching argument are left untouched; `%%` renders as `%`.
    """

    def __init__(self, **options: Any) -> None:
        self.options: Mapping[str, Any] = options

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        if not isinstance(record.message, str) or not record.splat:
            return record

        args: Iterator[Any] = iter(record.splat)

        def substitute(match: Any) -> str:
            token = match.group(0)
            if token == "%%":
                return "%"
            try:
                return _interpolate(token, next(args))
            except StopIteration:
                return token

        record.message = FORMAT_TOKEN_RE.sub(substitute, record.message)
        return record


class FunctionFormat:
    """Wrap `fn(record, options)`; a falsy return value drops the record."""

    def __init__(self, fn: Callable[[Record, Mapping[str, Any]], Record | None | bool], **options: Any) -> None:
        self._fn = fn
        self.options: Mapping[str, Any] = options

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        result = self._fn(record, options)
        if not result:
            return None
        return result  # type: ignore[return-value]


class CombinedFormat:
    """Run formats in sequence, each with its own options, stopping at None."""

    def __init__(self, formats: list[FormatAdapter]) -> None:
        self.formats = formats
        self.options: Mapping[str, Any] = {}

    def transform(self, record: Record, options: Mapping[str, Any]) -> Record | None:
        current: Record | None = record
        for fmt in self.formats:
            current = fmt.transform(current, fmt.options)
            if current is None:
                return None
        return current


def combine(*formats: FormatAdapter) -> CombinedFormat:
    """Chain formats left to right."""
    return CombinedFormat(list(formats))
