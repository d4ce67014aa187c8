"""Uncaught-exception capture.

`ExceptionHandler.handle()` installs a `sys.excepthook` that turns an uncaught
exception into an `exception=True` error record. The record goes through the
dispatcher (where only sinks with `handles_exceptions` accept it) and to any
extra handler sinks passed to `handle()`.
"""

from __future__ import annotations

import logging
import os
import platform
import sys
import traceback
from types import TracebackType
from typing import TYPE_CHECKING, Any

from .models import Record, utc_now
from .registry import SinkRegistration, conform

if TYPE_CHECKING:
    from .dispatcher import Dispatcher

_log = logging.getLogger(__name__)


class ExceptionHandler:
    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher
        self.handlers: dict[str, SinkRegistration] = {}
        self.catching = False
        self._previous_hook: Any = None

    def handle(self, *sinks: Any) -> None:
        """Register extra handler sinks and install the hook (once)."""
        for sink in sinks:
            reg = conform(sink)
            self.handlers.setdefault(reg.name, reg)

        if not self.catching:
            self._previous_hook = sys.excepthook
            sys.excepthook = self._hook
            self.catching = True

    def unhandle(self) -> None:
        """Restore the hook that was active before `handle()`."""
        if not self.catching:
            return
        sys.excepthook = self._previous_hook or sys.__excepthook__
        self._previous_hook = None
        self.catching = False

    def get_all_info(self, exc: BaseException) -> Record:
        """Build the error record for `exc`, with traceback and process details."""
        tb = exc.__traceback__
        return Record.model_construct(
            level="error",
            severity="error",
            message=f"uncaughtException: {exc}",
            exception=True,
            err="".join(traceback.format_exception(type(exc), exc, tb)),
            date=utc_now().isoformat(),
            process={
                "pid": os.getpid(),
                "cwd": os.getcwd(),
                "argv": list(sys.argv),
                "executable": sys.executable,
                "python": platform.python_version(),
            },
            trace=[
                {"file": frame.filename, "line": frame.lineno, "function": frame.name, "text": frame.line}
                for frame in traceback.extract_tb(tb)
            ],
        )

    def _should_exit(self, exc: BaseException) -> bool:
        exit_on_error = self.dispatcher.exit_on_error
        if callable(exit_on_error):
            return bool(exit_on_error(exc))
        return bool(exit_on_error)

    def _hook(self, exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None) -> None:
        if exc.__traceback__ is None and tb is not None:
            exc = exc.with_traceback(tb)
        record = self.get_all_info(exc)

        try:
            self.dispatcher.write(record)
            fmt = self.dispatcher.format
            for reg in self.handlers.values():
                formatted = fmt.transform(record.model_copy(), fmt.options)
                if formatted is not None:
                    reg.sink.write(formatted)
        except Exception:  # noqa: BLE001 - never mask the original exception
            _log.exception("failed to log uncaught exception")

        # Chaining to the previous hook prints the traceback and lets the process die as usual.
        if self._should_exit(exc) and self._previous_hook is not None:
            self._previous_hook(exc_type, exc, tb)
