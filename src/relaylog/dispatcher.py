"""The dispatcher: producer call surface, transform stage and sink fan-out.

Typical use:

    log = Dispatcher(sinks=[InMemorySink(name="memory")])
    log.info("hello %s", "world", {"request_id": "r1"})
    log.log({"level": "warn", "message": "disk almost full", "free_mb": 12})

Logging calls never raise: unknown levels and missing sinks are reported as
diagnostics, sink and format failures go to the error handlers. Only
`configure()` (and `add()` with a non-conforming sink) raise.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from .config import LoggerOptions, check_removed_options
from .errors import (
    Condition,
    ConfigurationError,
    FormatError,
    NoSinksCondition,
    RelaylogError,
    UnknownLevelCondition,
)
from .exceptions import ExceptionHandler
from .formats import FormatAdapter, JsonFormat
from .models import NPM_LEVELS, LevelSet, Record
from .profiler import Profiler, Timer
from .query import AggregateCallback, query_sinks
from .registry import SinkRegistry, conform
from .resolver import classify, resolve
from .streaming import CombinedStream, open_combined_stream

_log = logging.getLogger(__name__)

ErrorHandler = Callable[[RelaylogError], None]
DiagnosticHandler = Callable[[Condition], None]


class Dispatcher:
    """Normalizes log calls into records and fans them out to sinks.

    Members:
    - Active level set: `level_set` (replaced wholesale by `configure()`)
    - Default sink threshold: `level`
    - Format adapter: `format`
    - Uncaught-exception capture: `exceptions`
    - Profiler timer table: `profiler`
    """

    def __init__(self, **options: Any) -> None:
        """Create a dispatcher; see `configure()` for the accepted options."""
        self.level_set = LevelSet.from_mapping(NPM_LEVELS)
        self.level = "info"
        self.format: FormatAdapter = JsonFormat()
        self.exit_on_error: bool | Callable[[BaseException], bool] = True

        self._error_handlers: list[ErrorHandler] = []
        self._diagnostic_handlers: list[DiagnosticHandler] = []
        self._close_handlers: list[Callable[[], None]] = []

        self.exceptions = ExceptionHandler(self)
        self.profiler = Profiler(self)
        self._sinks = SinkRegistry(
            on_error=self._report_error,
            on_close=self._notify_closed,
            on_exception_sink=self.exceptions.handle,
        )
        self.configure(**options)

    def __getattr__(self, name: str) -> Callable[..., Dispatcher]:
        # Level shortcuts (`info(...)`, `warn(...)`, ...) for every key of the active set.
        level_set = self.__dict__.get("level_set")
        if level_set is None or name not in level_set:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return functools.partial(self._log_at, name)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def levels(self) -> dict[str, int]:
        return self.level_set.levels

    @property
    def paddings(self) -> dict[str, str]:
        return self.level_set.paddings

    def configure(self, **options: Any) -> Dispatcher:
        """Wholesale reconfigure this dispatcher.

        Options: `levels`, `level`, `format`, `sinks`, `exit_on_error`,
        `exception_handlers`. Everything is validated (and every sink conformed)
        before anything is applied, so a rejected configuration leaves the
        previous sinks, levels and format untouched.

        Raises:
        - `RemovedOptionError` for removed legacy options
        - `ConfigurationError` for invalid values
        - `InvalidSinkError` for sinks that cannot accept records
        """
        check_removed_options(options)
        try:
            opts = LoggerOptions.model_validate(options)
            level_set = LevelSet.from_mapping(opts.levels) if opts.levels is not None else self.level_set
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

        if opts.level not in level_set:
            raise ConfigurationError(
                f"level {opts.level!r} is not defined; expected one of: {', '.join(level_set.levels)}"
            )

        registrations = [conform(sink) for sink in opts.sinks]
        for handler in opts.exception_handlers:
            conform(handler)

        self.level_set = level_set
        self.level = opts.level
        self.format = opts.format or self.format
        self.exit_on_error = opts.exit_on_error
        self.profiler = Profiler(self)

        self._sinks.replace(registrations)
        if opts.exception_handlers:
            self.exceptions.handle(*opts.exception_handlers)
        return self

    # ------------------------------------------------------------------
    # Sinks
    # ------------------------------------------------------------------

    @property
    def sinks(self) -> list[Any]:
        """Attached sinks in attachment order."""
        return self._sinks.list()

    def add(self, sink: Any) -> Dispatcher:
        """Attach a sink, adapting legacy sinks (raises `InvalidSinkError`)."""
        self._sinks.add(sink)
        return self

    def remove(self, sink: Any) -> Dispatcher:
        """Detach a sink, given either the sink or the value it was adapted from."""
        self._sinks.remove(sink)
        return self

    def clear(self) -> Dispatcher:
        """Detach every sink."""
        self._sinks.clear()
        return self

    def close(self) -> Dispatcher:
        """Detach every sink, release the exception hook and notify close handlers."""
        self.exceptions.unhandle()
        self._sinks.close()
        return self

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Receive `SinkDeliveryError` / `FormatError` instead of the default log line."""
        self._error_handlers.append(handler)
        return handler

    def on_diagnostic(self, handler: DiagnosticHandler) -> DiagnosticHandler:
        """Receive `UnknownLevelCondition` / `NoSinksCondition` reports."""
        self._diagnostic_handlers.append(handler)
        return handler

    def on_close(self, handler: Callable[[], None]) -> Callable[[], None]:
        self._close_handlers.append(handler)
        return handler

    def _report_error(self, err: RelaylogError) -> None:
        if not self._error_handlers:
            _log.error("%s", err, exc_info=err.__cause__ or err)
            return
        for handler in list(self._error_handlers):
            try:
                handler(err)
            except Exception:  # noqa: BLE001 - logging must never crash the caller
                _log.exception("error handler %r failed", handler)

    def _diagnose(self, condition: Condition) -> None:
        if not self._diagnostic_handlers:
            _log.warning("%s", condition.describe())
            return
        for handler in list(self._diagnostic_handlers):
            try:
                handler(condition)
            except Exception:  # noqa: BLE001 - logging must never crash the caller
                _log.exception("diagnostic handler %r failed", handler)

    def _notify_closed(self) -> None:
        for handler in list(self._close_handlers):
            handler()

    # ------------------------------------------------------------------
    # Producer surface
    # ------------------------------------------------------------------

    def log(self, level_or_record: Any, *args: Any) -> Dispatcher:
        """Log in any of the supported call shapes.

            log(record)
            log(level, record)
            log(level, message)
            log(level, "%s %d%%", "A string", 50, {"meta": True})
        """
        self.write(resolve(classify(level_or_record, *args)))
        return self

    def _log_at(self, level: str, message: Any, *args: Any) -> Dispatcher:
        return self.log(level, message, *args)

    def is_level_enabled(self, level: str) -> bool:
        """Return True if at least one sink (or the default threshold) accepts `level`."""
        value = self.level_set.value(level)
        if value is None:
            return False

        thresholds = [getattr(sink, "level", None) or self.level for sink in self._sinks.list()] or [self.level]
        for threshold in thresholds:
            limit = self.level_set.value(threshold)
            if limit is None or value <= limit:
                return True
        return False

    def write(self, record: Record | Mapping[str, Any]) -> None:
        """Run one record through the transform stage and fan it out."""
        if not isinstance(record, Record):
            record = Record.from_mapping(record)

        # Configuration swaps these by reference; keep the ones active at entry.
        level_set = self.level_set
        fmt = self.format
        default_level = self.level

        if not record.severity:
            record.severity = record.level

        if not isinstance(record.severity, str) or record.severity not in level_set:
            self._diagnose(UnknownLevelCondition(record=record, level=record.severity))

        if not len(self._sinks):
            self._diagnose(NoSinksCondition(record=record))

        try:
            formatted = fmt.transform(record, fmt.options)
        except Exception as exc:  # noqa: BLE001 - reported, the record is dropped
            self._report_error(FormatError(record, exc))
            return

        # Formats may filter records out.
        if not formatted:
            return
        if isinstance(formatted, Mapping):
            formatted = Record.from_mapping(formatted)
        elif not isinstance(formatted, Record):
            self._report_error(
                FormatError(record, TypeError(f"format returned {type(formatted).__name__}, expected a Record"))
            )
            return
        if not formatted.severity:
            formatted.severity = record.severity
        self._sinks.deliver(formatted, level_set, default_level)

    # ------------------------------------------------------------------
    # Query, stream, profiling
    # ------------------------------------------------------------------

    def query(
        self,
        options: Mapping[str, Any] | AggregateCallback | None = None,
        callback: AggregateCallback | None = None,
    ) -> None:
        """Query every sink that supports it; `callback(None, {sink name: result})`."""
        if callable(options) and callback is None:
            options, callback = None, options
        if callback is None:
            raise TypeError("query() requires a callback")
        query_sinks(self._sinks.registrations, dict(options or {}), callback)

    def stream(self, options: Mapping[str, Any] | None = None) -> CombinedStream:
        """Merge the live streams of every sink that supports streaming."""
        sources = [(reg.name, reg.sink) for reg in self._sinks.registrations if reg.supports_stream]
        return open_combined_stream(sources, dict(options or {}))

    def start_timer(self) -> Timer:
        """Return a one-shot timer; `timer.done(...)` logs the elapsed `duration_ms`."""
        return Timer(self)

    def profile(self, id: str, info: Record | Mapping[str, Any] | None = None, **fields: Any) -> Dispatcher:
        """Start, or finish and log, the timer named `id`."""
        self.profiler.profile(id, info, **fields)
        return self
