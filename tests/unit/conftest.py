from __future__ import annotations

import sys

import pytest


@pytest.fixture(autouse=True)
def _no_threads_in_unit_tests(monkeypatch: pytest.MonkeyPatch):
    """Run `asyncio.to_thread` inline for unit tests.

    `QueuedSink` uses `asyncio.to_thread` to keep blocking sink I/O off the event
    loop. In unit tests, this can create threadpool workers that keep the Python
    process alive longer than expected under some runtimes.
    """

    async def _to_thread(func, /, *args, **kwargs):  # noqa: ANN001, D401
        return func(*args, **kwargs)

    monkeypatch.setattr("relaylog.recorder.asyncio.to_thread", _to_thread)
    yield


@pytest.fixture(autouse=True)
def _restore_excepthook(monkeypatch: pytest.MonkeyPatch):
    """Undo any `sys.excepthook` installed by sinks that handle exceptions."""
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield
