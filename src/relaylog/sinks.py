"""Sinks: the endpoints formatted records are fanned out to.

The registry only relies on the `Sink` protocol. `SinkBase` supplies the
optional parts (per-sink format, level threshold, error channel) so concrete
sinks only implement `emit()`.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import duckdb

from .formats import FormatAdapter
from .models import Record, utc_now
from .streaming import LogStream

_log = logging.getLogger(__name__)

QueryCallback = Callable[[BaseException | None, Any], None]
ErrorListener = Callable[[BaseException], None]


@runtime_checkable
class Sink(Protocol):
    """A record-accepting endpoint.

    `object_mode` must be true: the sink receives `Record` objects, in delivery
    order, not serialized text.
    """

    object_mode: bool

    def write(self, record: Record) -> None:
        """Accept a single formatted record."""

    def close(self) -> None:
        """Close any underlying resources."""


class SinkBase:
    """Convenience base for sinks.

    Args:
        name: Identity used as the aggregation key for queries and streams.
        level: Least severe level this sink accepts; defaults to the dispatcher's.
        format: Optional per-sink format applied to a copy of each record.
        handles_exceptions: Receive records produced by uncaught-exception capture.
        silent: Drop everything (useful to mute a sink without detaching it).
    """

    object_mode = True

    def __init__(
        self,
        *,
        name: str | None = None,
        level: str | None = None,
        format: FormatAdapter | None = None,
        handles_exceptions: bool = False,
        silent: bool = False,
    ) -> None:
        self.name = name
        self.level = level
        self.format = format
        self.handles_exceptions = handles_exceptions
        self.silent = silent
        self._error_listeners: list[ErrorListener] = []

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Subscribe to failures this sink detects outside of `write()`."""
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    def report_error(self, exc: BaseException) -> None:
        """Publish an asynchronous failure to every error listener."""
        if not self._error_listeners:
            _log.error("unhandled error in sink %r", self.name or type(self).__name__, exc_info=exc)
            return
        for listener in list(self._error_listeners):
            listener(exc)

    def write(self, record: Record) -> None:
        """Apply the per-sink format (if any) and emit the record."""
        if self.silent:
            return
        if self.format is not None:
            formatted = self.format.transform(record.model_copy(), self.format.options)
            if formatted is None:
                return
            record = formatted
        self.emit(record)

    def emit(self, record: Record) -> None:
        raise NotImplementedError

    def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def select_rows(rows: Sequence[tuple[datetime, dict[str, Any]]], options: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Apply the common query options to `(logged_at, payload)` rows.

    Supported options: `query` (field equality), `from`/`until` (logged-at
    bounds), `order` (`"asc"` or `"desc"`, default `"desc"`), `start` (offset),
    `limit` (or `rows`) and `fields` (projection).
    """
    criteria: Mapping[str, Any] = options.get("query") or {}
    since = _as_datetime(options.get("from"))
    until = _as_datetime(options.get("until"))

    selected = [
        payload
        for logged_at, payload in rows
        if (since is None or logged_at >= since)
        and (until is None or logged_at <= until)
        and all(payload.get(key) == value for key, value in criteria.items())
    ]
    if options.get("order", "desc") == "desc":
        selected.reverse()

    selected = selected[int(options.get("start") or 0) :]
    limit = options.get("limit", options.get("rows"))
    if limit is not None:
        selected = selected[: int(limit)]

    fields = options.get("fields")
    if fields:
        selected = [{key: row[key] for key in fields if key in row} for row in selected]
    return selected


class InMemorySink(SinkBase):
    """In-memory sink for tests and local debugging; supports query and live tail."""

    def __init__(self, **kwargs: Any) -> None:
        """Create an empty in-memory sink."""
        super().__init__(**kwargs)
        self._lock = threading.Lock()
        self._records: list[tuple[datetime, Record]] = []
        self._tails: list[LogStream] = []

    def emit(self, record: Record) -> None:
        """Append a record (thread-safe) and push it to live tails."""
        with self._lock:
            self._records.append((utc_now(), record))
            tails = list(self._tails)
        for tail in tails:
            tail.emit("log", record)

    def snapshot(self) -> Sequence[Record]:
        """Return a point-in-time copy of all recorded entries."""
        with self._lock:
            return [record for _, record in self._records]

    def query(self, options: Mapping[str, Any], callback: QueryCallback) -> None:
        """Report the stored payloads matching `options`."""
        with self._lock:
            rows = [(logged_at, record.payload()) for logged_at, record in self._records]
        callback(None, select_rows(rows, options))

    def stream(self, options: Mapping[str, Any]) -> LogStream:
        """Return a stream of records emitted from now on."""
        tail = LogStream()
        with self._lock:
            self._tails.append(tail)
        tail.add_destroy_callback(lambda: self._drop_tail(tail))
        return tail

    def _drop_tail(self, tail: LogStream) -> None:
        with self._lock:
            if tail in self._tails:
                self._tails.remove(tail)

    def close(self) -> None:
        """Destroy any open live tails."""
        with self._lock:
            tails = list(self._tails)
        for tail in tails:
            tail.destroy()


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "log_records"


class DuckDBSink(SinkBase):
    """DuckDB sink for durable local persistence with historical query.

    This is intended as a lightweight, embedded store; records are kept as stable
    JSON next to a few indexed columns.
    """

    def __init__(self, *, path: str | Path, table: str = "log_records", **kwargs: Any) -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        super().__init__(**kwargs)
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._closed = False
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          logged_at timestamp not null,
          level varchar not null,
          message varchar,
          payload_json varchar not null
        )
        """
        with self._lock:
            self._conn.execute(create_sql)

    def emit(self, record: Record) -> None:
        """Insert a single record into DuckDB."""
        payload_json = json.dumps(record.payload(), separators=(",", ":"), sort_keys=True, default=str)
        insert_sql = f"""
        insert into {self._opts.table} (logged_at, level, message, payload_json)
        values (?, ?, ?, ?)
        """
        with self._lock:
            # Stored as naive UTC; reads re-attach the timezone.
            self._conn.execute(
                insert_sql,
                [utc_now().replace(tzinfo=None), str(record.level), str(record.message), payload_json],
            )

    def format_query(self, query: Mapping[str, Any]) -> dict[str, Any]:
        """Drop unset criteria so they do not filter anything out."""
        return {key: value for key, value in query.items() if value is not None}

    def format_results(self, results: list[dict[str, Any]], fmt: str | None) -> Any:
        if fmt == "json":
            return json.dumps(results, separators=(",", ":"), sort_keys=True, default=str)
        return results

    def query(self, options: Mapping[str, Any], callback: QueryCallback) -> None:
        """Report stored payloads matching `options`.

        A `level` criterion is pushed down to SQL; the rest is applied in Python.
        """
        criteria: Mapping[str, Any] = options.get("query") or {}
        sql = f"select logged_at, payload_json from {self._opts.table}"
        params: list[Any] = []
        if "level" in criteria:
            sql += " where level = ?"
            params.append(str(criteria["level"]))
        sql += " order by logged_at asc, rowid asc"

        try:
            with self._lock:
                fetched = self._conn.execute(sql, params).fetchall()
            rows = [
                (logged_at.replace(tzinfo=timezone.utc), json.loads(payload_json)) for logged_at, payload_json in fetched
            ]
            selected = select_rows(rows, options)
        except Exception as exc:  # noqa: BLE001 - reported through the query callback
            callback(exc, None)
            return
        callback(None, selected)

    def close(self) -> None:
        """Close the underlying DuckDB connection (safe to call multiple times)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
