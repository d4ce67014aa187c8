"""Duration profiling on top of the dispatcher."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .models import Record

if TYPE_CHECKING:
    from .dispatcher import Dispatcher


def _elapsed_ms(start: float, end: float) -> int:
    return int(round((end - start) * 1000))


def _build(info: Record | Mapping[str, Any] | None, fields: Mapping[str, Any]) -> Record:
    if isinstance(info, Record):
        record = info
    else:
        record = Record.from_mapping(dict(info or {}))
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class Timer:
    """One-shot timer bound to a dispatcher; `done()` writes the elapsed time."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher
        self.start = time.monotonic()

    def done(self, info: Record | Mapping[str, Any] | None = None, **fields: Any) -> Record:
        record = _build(info, fields)
        record.level = record.level or "info"
        record.duration_ms = _elapsed_ms(self.start, time.monotonic())
        self.dispatcher.write(record)
        return record


class Profiler:
    """Pairs `profile(id)` calls: the first starts a timer, the second logs it.

    Start times come from `time.monotonic()`; at most one timer is pending per id.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher
        self.timers: dict[str, float] = {}

    def profile(self, id: str, info: Record | Mapping[str, Any] | None = None, **fields: Any) -> Record | None:
        """Start the timer for `id`, or finish it and return the written record."""
        now = time.monotonic()
        start = self.timers.pop(id, None)
        if start is None:
            self.timers[id] = now
            return None

        record = _build(info, fields)
        record.level = record.level or "info"
        record.duration_ms = _elapsed_ms(start, now)
        if not record.message:
            record.message = id
        self.dispatcher.write(record)
        return record
