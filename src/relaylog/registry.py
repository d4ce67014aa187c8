"""Sink registry: attachment, conformance and isolated fan-out.

Each sink is checked once when it is added:

- native:   it exposes `write(record)` and declares `object_mode = True`
- adapted:  it only has a legacy `log(level, message, meta)` method and is
            wrapped in `LegacySinkAdapter`
- rejected: anything else (`InvalidSinkError`)

Capabilities (query, stream, exception handling) are probed at the same time
and stored on the registration, never re-probed per record.
"""

from __future__ import annotations

import itertools
import logging
import weakref
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal

from .errors import InvalidSinkError, SinkDeliveryError
from .models import LevelSet, Record
from .sinks import ErrorListener, SinkBase

_log = logging.getLogger(__name__)

ConformanceMode = Literal["native", "adapted"]

_sink_ids = itertools.count(1)


@dataclass(frozen=True, eq=False)
class SinkRegistration:
    """One attached sink and the capabilities detected when it was added."""

    sink: Any
    # The value passed to `add()`; differs from `sink` when adapted.
    source: Any
    mode: ConformanceMode
    name: str
    supports_query: bool
    supports_stream: bool
    handles_exceptions: bool


class LegacySinkAdapter(SinkBase):
    """Expose a legacy `log(level, message, meta)` sink as a record sink."""

    def __init__(self, transport: Any) -> None:
        super().__init__(
            name=getattr(transport, "name", None),
            level=getattr(transport, "level", None),
            handles_exceptions=bool(
                getattr(transport, "handles_exceptions", False) or getattr(transport, "handleExceptions", False)
            ),
        )
        self.transport = transport

    def emit(self, record: Record) -> None:
        meta = {key: value for key, value in record.payload().items() if key not in ("level", "message")}
        self.transport.log(record.level, record.message, meta)

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()


def conform(sink: Any) -> SinkRegistration:
    """Check `sink` against the capability contract, adapting legacy sinks.

    Raises:
    - `InvalidSinkError` when the sink cannot accept records in object mode.
    """
    target = sink
    mode: ConformanceMode = "native"
    if not callable(getattr(sink, "write", None)):
        if not callable(getattr(sink, "log", None)):
            raise InvalidSinkError(
                f"Invalid sink {sink!r}: must expose write(record) or a legacy log(level, message, meta) method."
            )
        target = LegacySinkAdapter(sink)
        mode = "adapted"

    if not getattr(target, "object_mode", False):
        raise InvalidSinkError(f"Sinks must accept records in object mode. Set `object_mode = True` on {sink!r}.")

    return SinkRegistration(
        sink=target,
        source=sink,
        mode=mode,
        name=getattr(target, "name", None) or f"{type(target).__name__}-{next(_sink_ids)}",
        supports_query=callable(getattr(target, "query", None)),
        supports_stream=callable(getattr(target, "stream", None)),
        handles_exceptions=bool(getattr(target, "handles_exceptions", False)),
    )


class SinkRegistry:
    """Ordered set of attached sinks; the single source of truth for fan-out.

    Failures are never raised out of `deliver()`: they are wrapped in
    `SinkDeliveryError` (naming the sink) and handed to `on_error`.
    """

    def __init__(
        self,
        *,
        on_error: Callable[[SinkDeliveryError], None],
        on_close: Callable[[], None] | None = None,
        on_exception_sink: Callable[[], None] | None = None,
    ) -> None:
        self._registrations: list[SinkRegistration] = []
        self._on_error = on_error
        self._on_close = on_close
        self._on_exception_sink = on_exception_sink

        # Error hooks survive remove() so re-adding a sink never double-subscribes.
        self._hooked: weakref.WeakKeyDictionary[Any, ErrorListener] = weakref.WeakKeyDictionary()
        self._hooked_by_id: dict[int, tuple[Any, ErrorListener]] = {}

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def registrations(self) -> list[SinkRegistration]:
        return list(self._registrations)

    def list(self) -> list[Any]:
        """Return the attached sinks in attachment order."""
        return [reg.sink for reg in self._registrations]

    def find(self, sink: Any) -> SinkRegistration | None:
        """Resolve a sink, or the raw value it was adapted from, to its registration."""
        for reg in self._registrations:
            if reg.sink is sink or reg.source is sink:
                return reg
        return None

    def add(self, sink: Any) -> SinkRegistration:
        """Conform and attach `sink` (no-op if it is already attached)."""
        existing = self.find(sink)
        if existing is not None:
            return existing
        return self.attach(conform(sink))

    def attach(self, reg: SinkRegistration) -> SinkRegistration:
        """Attach an already conformed registration."""
        self._hook_errors(reg)
        self._registrations.append(reg)
        if reg.handles_exceptions and self._on_exception_sink is not None:
            self._on_exception_sink()
        return reg

    def remove(self, sink: Any) -> None:
        """Detach `sink` by identity or by its pre-adaptation value."""
        reg = self.find(sink)
        if reg is not None:
            self._detach(reg)

    def clear(self) -> None:
        """Detach every sink."""
        for reg in list(self._registrations):
            self._detach(reg)

    def replace(self, regs: Iterable[SinkRegistration]) -> None:
        """Swap the attached set for `regs`, closing only sinks that are dropped."""
        incoming = list(regs)
        keep = {id(reg.source) for reg in incoming}
        for reg in list(self._registrations):
            self._detach(reg, close=id(reg.source) not in keep)
        for reg in incoming:
            current = self.find(reg.source)
            if current is None:
                self.attach(reg)

    def close(self) -> None:
        """Detach every sink, then fire the lifecycle "closed" notification."""
        self.clear()
        if self._on_close is not None:
            self._on_close()

    def deliver(self, record: Record, levels: LevelSet, default_level: str) -> None:
        """Push `record` to every accepting sink, in attachment order."""
        for reg in list(self._registrations):
            try:
                if not _accepts(reg, record, levels, default_level):
                    continue
                reg.sink.write(record)
            except Exception as exc:  # noqa: BLE001 - one sink must not break fan-out
                self._forward(reg, exc)

    def _detach(self, reg: SinkRegistration, *, close: bool = True) -> None:
        if reg in self._registrations:
            self._registrations.remove(reg)
        if not close:
            return
        closer = getattr(reg.sink, "close", None)
        if callable(closer):
            try:
                closer()
            except Exception as exc:  # noqa: BLE001 - reported, detaching still succeeds
                self._forward(reg, exc)

    def _forward(self, reg: SinkRegistration, exc: BaseException) -> None:
        self._on_error(SinkDeliveryError(reg.name, reg.sink, exc))

    def _hook_errors(self, reg: SinkRegistration) -> None:
        add_listener = getattr(reg.sink, "add_error_listener", None)
        if not callable(add_listener):
            return

        try:
            if reg.sink in self._hooked:
                return
        except TypeError:
            # Unhashable or not weak-referenceable: track by identity instead.
            if id(reg.sink) in self._hooked_by_id:
                return

        def listener(exc: BaseException) -> None:
            self._forward(reg, exc)

        add_listener(listener)
        try:
            self._hooked[reg.sink] = listener
        except TypeError:
            self._hooked_by_id[id(reg.sink)] = (reg.sink, listener)


def _accepts(reg: SinkRegistration, record: Record, levels: LevelSet, default_level: str) -> bool:
    """Apply exception routing and the sink's level threshold."""
    if record.get("exception") is True and not reg.handles_exceptions:
        return False

    threshold = getattr(reg.sink, "level", None) or default_level
    severity = levels.value(record.severity) if isinstance(record.severity, str) else None
    limit = levels.value(threshold) if isinstance(threshold, str) else None
    if severity is None or limit is None:
        # Unknown levels are delivered best-effort; the dispatcher already reported them.
        return True
    return severity <= limit
