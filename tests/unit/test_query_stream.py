from __future__ import annotations

from typing import Any

from relaylog import Dispatcher, InMemorySink, LogStream
from relaylog.models import Record
from relaylog.sinks import SinkBase


class _QuerySink(SinkBase):
    """Records the options it is queried with and answers from a script."""

    def __init__(self, name: str, outcome: Any = None, error: BaseException | None = None) -> None:
        super().__init__(name=name)
        self.outcome = outcome
        self.error = error
        self.seen_options: list[dict[str, Any]] = []
        self.pending: list[Any] = []

    def emit(self, record: Record) -> None:
        pass

    def query(self, options: dict[str, Any], callback: Any) -> None:
        self.seen_options.append(options)
        if self.error is not None:
            callback(self.error, None)
            return
        callback(None, self.outcome)


class _MutatingQuerySink(_QuerySink):
    def format_query(self, query: dict[str, Any]) -> dict[str, Any]:
        query["mutated_by"] = self.name
        return query


class _DoubleReportSink(_QuerySink):
    def query(self, options: dict[str, Any], callback: Any) -> None:
        callback(None, ["first"])
        callback(None, ["second"])


class _RaisingQuerySink(_QuerySink):
    def query(self, options: dict[str, Any], callback: Any) -> None:
        raise ConnectionError("backend unreachable")


class _DeferredQuerySink(_QuerySink):
    def query(self, options: dict[str, Any], callback: Any) -> None:
        self.pending.append(callback)


class _StreamSink(SinkBase):
    def __init__(self, name: str) -> None:
        super().__init__(name=name)
        self.streams: list[LogStream] = []

    def emit(self, record: Record) -> None:
        pass

    def stream(self, options: dict[str, Any]) -> LogStream:
        stream = LogStream()
        self.streams.append(stream)
        return stream


class _NoStreamSink(_StreamSink):
    def stream(self, options: dict[str, Any]) -> None:
        return None


def _run(log: Dispatcher, options: dict[str, Any] | None = None) -> list[tuple[Any, dict[str, Any]]]:
    calls: list[tuple[Any, dict[str, Any]]] = []
    log.query(options or {}, lambda err, results: calls.append((err, results)))
    return calls


def test_query_aggregates_results_and_errors_by_sink_name() -> None:
    failure = LookupError("index missing")
    log = Dispatcher(sinks=[_QuerySink("x", outcome=["row"]), _QuerySink("y", error=failure)])

    calls = _run(log)

    assert len(calls) == 1
    err, results = calls[0]
    assert err is None
    assert results == {"x": ["row"], "y": failure}


def test_query_with_no_capable_sinks_reports_empty_results() -> None:
    log = Dispatcher(sinks=[_StreamSink("no-query")])

    assert _run(log) == [(None, {})]


def test_each_sink_gets_its_own_copy_of_the_criteria() -> None:
    a, b = _MutatingQuerySink("a", outcome=[]), _MutatingQuerySink("b", outcome=[])
    criteria = {"level": "info"}
    log = Dispatcher(sinks=[a, b])

    _run(log, {"query": criteria})

    assert a.seen_options[0]["query"] == {"level": "info", "mutated_by": "a"}
    assert b.seen_options[0]["query"] == {"level": "info", "mutated_by": "b"}
    assert criteria == {"level": "info"}


def test_first_report_wins() -> None:
    log = Dispatcher(sinks=[_DoubleReportSink("twice")])

    assert _run(log) == [(None, {"twice": ["first"]})]


def test_raising_sink_contributes_its_error() -> None:
    log = Dispatcher(sinks=[_RaisingQuerySink("down"), _QuerySink("up", outcome=[1])])

    (err, results), = _run(log)

    assert err is None
    assert isinstance(results["down"], ConnectionError)
    assert results["up"] == [1]


def test_callback_fires_once_all_sinks_report() -> None:
    slow = _DeferredQuerySink("slow")
    log = Dispatcher(sinks=[_QuerySink("fast", outcome=["f"]), slow])

    calls = _run(log)
    assert calls == []

    slow.pending[0](None, ["s"])
    slow.pending[0](None, ["again"])

    assert calls == [(None, {"fast": ["f"], "slow": ["s"]})]


def test_missing_outcome_is_not_stored() -> None:
    log = Dispatcher(sinks=[_QuerySink("nothing", outcome=None), _QuerySink("empty", outcome=[])])

    assert _run(log) == [(None, {"empty": []})]


def test_in_memory_query_options() -> None:
    sink = InMemorySink(name="memory")
    log = Dispatcher(sinks=[sink], level="debug")
    for index in range(5):
        log.log("debug" if index % 2 else "info", f"m{index}", {"index": index})

    (_, results), = _run(log, {"query": {"level": "info"}, "order": "asc", "start": 1, "limit": 1, "fields": ["message"]})

    assert results == {"memory": [{"message": "m2"}]}


def test_stream_tags_payloads_with_sink_names() -> None:
    first, second = _StreamSink("first"), _StreamSink("second")
    log = Dispatcher(sinks=[first, second, _NoStreamSink("silent")])
    seen: list[Any] = []
    failures: list[Any] = []

    combined = log.stream({"level": "info"})
    combined.on("log", seen.append)
    combined.on("error", failures.append)

    first.streams[0].emit("log", {"message": "a"})
    second.streams[0].emit("log", {"message": "b", "sinks": ["upstream"]})
    second.streams[0].emit("error", OSError("tail broke"))

    assert len(combined.streams) == 2
    assert seen == [{"message": "a", "sinks": ["first"]}, {"message": "b", "sinks": ["upstream", "second"]}]
    assert failures[0].sinks == ["second"]


def test_destroying_combined_stream_destroys_sources() -> None:
    first, second = _StreamSink("first"), _StreamSink("second")
    log = Dispatcher(sinks=[first, second])
    seen: list[Any] = []

    combined = log.stream()
    combined.on("log", seen.append)
    combined.destroy()
    first.streams[0].emit("log", {"message": "late"})

    assert all(stream.destroyed for stream in first.streams + second.streams)
    assert combined.destroyed
    assert seen == []


def test_in_memory_live_tail() -> None:
    sink = InMemorySink(name="memory")
    log = Dispatcher(sinks=[sink])
    seen: list[Record] = []

    tail = log.stream()
    tail.on("log", seen.append)
    log.info("live")
    tail.destroy()
    log.info("after destroy")

    assert [r.message for r in seen] == ["live"]
    assert seen[0].sinks == ["memory"]


def test_live_tail_does_not_tag_records_other_sinks_store() -> None:
    live, other = InMemorySink(name="live"), InMemorySink(name="other")
    log = Dispatcher(sinks=[live, other])
    seen: list[Record] = []

    log.stream().on("log", seen.append)
    log.info("hello")

    assert [r.sinks for r in seen] == [["live"], ["other"]]
    assert "sinks" not in live.snapshot()[0].payload()
    assert "sinks" not in other.snapshot()[0].payload()
    (_, results), = _run(log)
    assert all("sinks" not in row for rows in results.values() for row in rows)


def test_each_forwarded_event_carries_only_its_own_sink_name() -> None:
    first, second = _StreamSink("first"), _StreamSink("second")
    log = Dispatcher(sinks=[first, second])
    seen: list[Any] = []
    shared = Record(level="info", message="same object")
    shared_dict = {"message": "same dict"}

    log.stream().on("log", seen.append)
    for stream in first.streams + second.streams:
        stream.emit("log", shared)
        stream.emit("log", shared_dict)

    assert [event.sinks if isinstance(event, Record) else event["sinks"] for event in seen] == [
        ["first"],
        ["first"],
        ["second"],
        ["second"],
    ]
    assert shared.get("sinks") is None
    assert "sinks" not in shared_dict
