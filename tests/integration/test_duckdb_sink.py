from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from relaylog import Dispatcher, DuckDBSink, JsonFormat, QueuedSink, SplatFormat, combine


def _query(log: Dispatcher, options: dict[str, Any]) -> dict[str, Any]:
    calls: list[tuple[Any, dict[str, Any]]] = []
    log.query(options, lambda err, results: calls.append((err, results)))
    assert len(calls) == 1
    assert calls[0][0] is None
    return calls[0][1]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "relaylog.duckdb"


def test_duckdb_sink_persists_and_queries_by_level(db_path: Path) -> None:
    sink = DuckDBSink(path=db_path, name="duckdb")
    log = Dispatcher(sinks=[sink], level="debug", format=combine(SplatFormat(), JsonFormat()))

    log.info("user %s logged in", "ada", {"request_id": "r1"})
    log.warn("cache miss")
    log.debug("noise")

    results = _query(log, {"query": {"level": "info"}, "order": "asc"})
    (row,) = results["duckdb"]
    assert row["message"] == "user ada logged in"
    assert row["meta"] == {"request_id": "r1"}
    assert row["splat"] == ["ada"]

    everything = _query(log, {"order": "asc"})["duckdb"]
    assert [r["message"] for r in everything] == ["user ada logged in", "cache miss", "noise"]
    log.close()


def test_duckdb_sink_orders_newest_first_by_default(db_path: Path) -> None:
    log = Dispatcher(sinks=[DuckDBSink(path=db_path, name="duckdb")])
    for index in range(3):
        log.info(f"m{index}")

    rows = _query(log, {"limit": 2, "fields": ["message"]})["duckdb"]

    assert rows == [{"message": "m2"}, {"message": "m1"}]
    log.close()


def test_duckdb_sink_json_results_and_time_bounds(db_path: Path) -> None:
    log = Dispatcher(sinks=[DuckDBSink(path=db_path, name="duckdb")])
    log.info("in range")

    now = datetime.now(tz=timezone.utc)
    as_json = _query(log, {"format": "json", "from": now - timedelta(minutes=5)})["duckdb"]
    assert [r["message"] for r in json.loads(as_json)] == ["in range"]

    future = _query(log, {"from": (now + timedelta(minutes=5)).isoformat()})["duckdb"]
    assert future == []
    log.close()


def test_duckdb_sink_survives_reopen(db_path: Path) -> None:
    first = DuckDBSink(path=db_path, name="duckdb")
    Dispatcher(sinks=[first]).error("before restart").close()

    log = Dispatcher(sinks=[DuckDBSink(path=db_path, name="duckdb")])
    rows = _query(log, {})["duckdb"]

    assert [(r["level"], r["message"]) for r in rows] == [("error", "before restart")]
    log.close()


def test_duckdb_sink_close_is_idempotent(db_path: Path) -> None:
    sink = DuckDBSink(path=db_path)
    sink.close()
    sink.close()


@pytest.mark.asyncio
async def test_queued_duckdb_sink_flushes_on_aclose(db_path: Path) -> None:
    queued = QueuedSink(sink=DuckDBSink(path=db_path, name="duckdb"), max_queue_size=100)
    log = Dispatcher(sinks=[queued])

    for index in range(10):
        log.info(f"batch {index}")
        await asyncio.sleep(0)
    await queued.aclose()
    log.remove(queued)

    log.add(DuckDBSink(path=db_path, name="duckdb"))
    rows = _query(log, {"order": "asc"})["duckdb"]

    assert [r["message"] for r in rows] == [f"batch {index}" for index in range(10)]
    log.close()
