"""Background sink writer that keeps blocking I/O off the producer's path."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import Any

from .models import Record, utc_now
from .sinks import Sink, SinkBase


class QueuedSink(SinkBase):
    """Queues records and writes them to a synchronous sink in a background task.

    `write()` never blocks: records are dropped when the queue is full, and write
    failures of the inner sink are published through the error channel (the
    registry tags them with this sink's name).
    """

    def __init__(self, *, sink: Sink, max_queue_size: int = 10000, **kwargs: Any) -> None:
        """Create a queued wrapper around a synchronous sink.

        Args:
            sink: Storage backend used by the background writer.
            max_queue_size: Bound for in-memory buffering; records may be dropped
                when full to avoid blocking producers.
        """
        kwargs.setdefault("name", getattr(sink, "name", None))
        super().__init__(**kwargs)
        self.inner = sink
        self._queue: asyncio.Queue[Record | None] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self._close_on_drain = False
        self._inner_closed = False

        # Degradation tracking: counts and time window.
        self._dropped = 0
        self._write_failures = 0
        self._first_failure_at: datetime | None = None
        self._last_failure_at: datetime | None = None

    def _ensure_started(self) -> None:
        """Start the background writer task if it hasn't been started yet."""
        if self._worker is not None:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run_worker(), name="relaylog-queued-sink")

    def _mark_failure(self) -> None:
        now = utc_now()
        self._write_failures += 1
        self._first_failure_at = self._first_failure_at or now
        self._last_failure_at = now

    def emit(self, record: Record) -> None:
        """Enqueue a record for the background writer (non-blocking).

        Requires a running event loop; without one the registry reports the
        RuntimeError as a delivery failure of this sink.
        """
        if self._closed:
            return

        self._ensure_started()

        # In overload conditions we prefer dropping records over blocking producers.
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self._dropped += 1
            self._mark_failure()

    def _close_inner(self) -> None:
        if self._inner_closed:
            return
        self._inner_closed = True
        self.inner.close()

    async def aclose(self) -> None:
        """Flush and close the writer and the inner sink.

        Safe to call multiple times, including after `close()`.
        """
        if not self._closed:
            self._closed = True
            if self._worker is not None:
                await self._queue.put(None)
        if self._worker is not None:
            with suppress(asyncio.CancelledError):
                await self._worker
        await asyncio.to_thread(self._close_inner)

    def close(self) -> None:
        """Stop accepting records; the queue drains in the background.

        Use `aclose()` from async code to wait for the flush.
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is None:
            self._close_inner()
            return
        self._close_on_drain = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._worker.cancel()
            self._close_inner()

    async def _run_worker(self) -> None:
        """Background loop that drains the queue and writes to the inner sink."""
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    if self._close_on_drain:
                        await asyncio.to_thread(self._close_inner)
                    return
                await asyncio.to_thread(self.inner.write, item)
            except Exception as exc:  # noqa: BLE001 - producers must never see sink failures
                self._mark_failure()
                self.report_error(exc)
            finally:
                self._queue.task_done()

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        return {
            "dropped": self._dropped,
            "write_failures": self._write_failures,
            "first_failure_at": self._first_failure_at,
            "last_failure_at": self._last_failure_at,
        }
