"""Historical query across every sink that supports it."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .registry import SinkRegistration

AggregateCallback = Callable[[BaseException | None, dict[str, Any]], None]


class _Aggregation:
    """Collects one report per sink and fires the callback exactly once."""

    def __init__(self, size: int, callback: AggregateCallback) -> None:
        self._lock = threading.Lock()
        self._pending = set(range(size))
        self._callback = callback
        self.results: dict[str, Any] = {}

    def report(self, index: int, name: str, outcome: Any) -> None:
        with self._lock:
            # Sinks can be unpredictable and report twice; the first report wins.
            if index not in self._pending:
                return
            self._pending.discard(index)
            if outcome is not None:
                self.results[name] = outcome
            done = not self._pending
        if done:
            self._callback(None, self.results)


def _sink_options(reg: SinkRegistration, options: Mapping[str, Any]) -> dict[str, Any]:
    sink_options = dict(options)
    if options.get("query") is not None:
        # Each sink gets its own copy so it cannot observe another's edits.
        criteria = copy.deepcopy(options["query"])
        format_query = getattr(reg.sink, "format_query", None)
        sink_options["query"] = format_query(criteria) if callable(format_query) else criteria
    return sink_options


def query_sinks(
    registrations: Iterable[SinkRegistration],
    options: Mapping[str, Any],
    callback: AggregateCallback,
) -> None:
    """Query every capable sink and report `{sink name: result or error}` once.

    A sink that reports an error (or raises) contributes the exception under its
    name instead of aborting the aggregation.
    """
    targets = [reg for reg in registrations if reg.supports_query]
    if not targets:
        callback(None, {})
        return

    aggregation = _Aggregation(len(targets), callback)
    for index, reg in enumerate(targets):

        def done(
            err: BaseException | None, results: Any, _index: int = index, _reg: SinkRegistration = reg
        ) -> None:
            if err is not None:
                aggregation.report(_index, _reg.name, err)
                return
            format_results = getattr(_reg.sink, "format_results", None)
            try:
                formatted = format_results(results, options.get("format")) if callable(format_results) else results
            except Exception as exc:  # noqa: BLE001 - a bad formatter only affects its own sink
                formatted = exc
            aggregation.report(_index, _reg.name, formatted)

        try:
            reg.sink.query(_sink_options(reg, options), done)
        except Exception as exc:  # noqa: BLE001 - a failing sink contributes its error
            aggregation.report(index, reg.name, exc)
