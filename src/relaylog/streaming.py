"""Live-tail streams.

`LogStream` is the minimal event source a sink returns from `stream()`: handlers
subscribe to `"log"` and `"error"` events and the owner emits into it.
`open_combined_stream()` merges the streams of many sinks into one, tagging every
forwarded payload with the names of the sinks it passed through.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .models import Record

_log = logging.getLogger(__name__)

StreamEvent = str
Handler = Callable[[Any], None]

_EVENTS: frozenset[str] = frozenset({"log", "error"})


class LogStream:
    """Event source for `"log"` and `"error"` notifications."""

    def __init__(self) -> None:
        self._handlers: dict[StreamEvent, list[Handler]] = {event: [] for event in _EVENTS}
        self._on_destroy: list[Callable[[], None]] = []
        self.destroyed = False

    def on(self, event: StreamEvent, handler: Handler) -> LogStream:
        """Subscribe `handler` to `event`."""
        if event not in self._handlers:
            raise ValueError(f"unknown stream event {event!r}; expected one of {sorted(_EVENTS)}")
        self._handlers[event].append(handler)
        return self

    def emit(self, event: StreamEvent, payload: Any) -> None:
        """Deliver `payload` to every handler of `event` (no-op once destroyed)."""
        if self.destroyed:
            return
        for handler in list(self._handlers.get(event, ())):
            handler(payload)

    def add_destroy_callback(self, callback: Callable[[], None]) -> None:
        self._on_destroy.append(callback)

    def destroy(self) -> None:
        """Stop emitting and release whatever the owner attached to this stream."""
        if self.destroyed:
            return
        self.destroyed = True
        for callback in self._on_destroy:
            callback()


class CombinedStream(LogStream):
    """A stream fed by several per-sink streams; destroying it destroys them all."""

    def __init__(self) -> None:
        super().__init__()
        self.streams: list[LogStream] = []

    def destroy(self) -> None:
        # Best effort: one stream failing to tear down must not keep the others alive.
        for stream in reversed(self.streams):
            try:
                stream.destroy()
            except Exception:  # noqa: BLE001 - destroy is fire-and-forget
                _log.exception("failed to destroy sink stream %r", stream)
        super().destroy()


def _tag(payload: Any, sink_name: str) -> Any:
    """Return the payload tagged with `sink_name` appended to its `sinks` list.

    Records and dicts are copied: the sink still hands the original to its
    storage and to the other sinks of the fan-out.
    """
    if isinstance(payload, Record):
        tagged = payload.model_copy()
        tagged.sinks = [*(payload.get("sinks") or []), sink_name]
        return tagged
    if isinstance(payload, dict):
        return {**payload, "sinks": [*(payload.get("sinks") or []), sink_name]}
    if isinstance(payload, BaseException):
        payload.sinks = [*(getattr(payload, "sinks", None) or []), sink_name]  # type: ignore[attr-defined]
    return payload


def open_combined_stream(sources: Iterable[tuple[str, Any]], options: dict[str, Any]) -> CombinedStream:
    """Open `sink.stream(options)` for every `(name, sink)` and merge the results.

    Sinks returning a falsy stream are skipped.
    """
    out = CombinedStream()
    for name, sink in sources:
        stream = sink.stream(options)
        if not stream:
            continue
        out.streams.append(stream)
        stream.on("log", lambda payload, _name=name: out.emit("log", _tag(payload, _name)))
        stream.on("error", lambda err, _name=name: out.emit("error", _tag(err, _name)))
    return out
