from __future__ import annotations

import sys
from typing import Any

import pytest

from relaylog import Dispatcher, InMemorySink


class _PreviousHook:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def __call__(self, *args: Any) -> None:
        self.calls.append(args)


@pytest.fixture
def previous_hook(monkeypatch: pytest.MonkeyPatch) -> _PreviousHook:
    hook = _PreviousHook()
    monkeypatch.setattr(sys, "excepthook", hook)
    return hook


def _raise_uncaught() -> None:
    try:
        raise ValueError("kaboom")
    except ValueError as exc:
        sys.excepthook(type(exc), exc, exc.__traceback__)


def test_exception_sink_installs_hook_and_receives_record(previous_hook: _PreviousHook) -> None:
    catcher = InMemorySink(name="catcher", handles_exceptions=True)
    plain = InMemorySink(name="plain")
    log = Dispatcher(sinks=[catcher, plain], exit_on_error=False)

    assert sys.excepthook is not previous_hook
    _raise_uncaught()

    (record,) = catcher.snapshot()
    assert record.level == "error"
    assert record.message == "uncaughtException: kaboom"
    assert record.exception is True
    assert "ValueError: kaboom" in record.err
    assert record.process["pid"] > 0
    assert record.trace[-1]["function"] == "_raise_uncaught"
    assert plain.snapshot() == []
    assert previous_hook.calls == []

    log.close()
    assert sys.excepthook is previous_hook


def test_exit_on_error_chains_to_previous_hook(previous_hook: _PreviousHook) -> None:
    Dispatcher(sinks=[InMemorySink(handles_exceptions=True)])

    _raise_uncaught()

    assert len(previous_hook.calls) == 1
    assert previous_hook.calls[0][0] is ValueError


def test_exit_on_error_predicate(previous_hook: _PreviousHook) -> None:
    seen: list[BaseException] = []

    def _exit_unless_value_error(exc: BaseException) -> bool:
        seen.append(exc)
        return not isinstance(exc, ValueError)

    Dispatcher(sinks=[InMemorySink(handles_exceptions=True)], exit_on_error=_exit_unless_value_error)

    _raise_uncaught()

    assert isinstance(seen[0], ValueError)
    assert previous_hook.calls == []


def test_exception_handlers_receive_formatted_copies(previous_hook: _PreviousHook) -> None:
    handler = InMemorySink(name="handler")
    log = Dispatcher(exception_handlers=[handler], exit_on_error=False)

    _raise_uncaught()

    (record,) = handler.snapshot()
    assert record.rendered is not None
    assert "uncaughtException" in record.rendered
    assert log.exceptions.catching is True


def test_hook_is_installed_once(previous_hook: _PreviousHook) -> None:
    log = Dispatcher(sinks=[InMemorySink(handles_exceptions=True)], exit_on_error=False)
    installed = sys.excepthook

    log.add(InMemorySink(name="second", handles_exceptions=True))

    assert sys.excepthook is installed
    log.close()
    assert sys.excepthook is previous_hook


def test_get_all_info_without_traceback() -> None:
    record = Dispatcher().exceptions.get_all_info(RuntimeError("never raised"))

    assert record.message == "uncaughtException: never raised"
    assert record.trace == []
    assert record.date
