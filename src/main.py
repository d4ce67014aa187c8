"""Demo entrypoint wiring a dispatcher to sinks.

This module intentionally contains a small, end-to-end "smoke test" that:

- Loads configuration from environment.
- Attaches an in-memory sink and, when `RELAYLOG_DUCKDB_PATH` is set, a DuckDB
  sink behind a background writer.
- Tails the live stream, logs in every call shape, profiles a step and queries
  the sinks back.

It is **not** intended to be production wiring; it is a convenient manual
harness while the library is still being shaped.
"""

from __future__ import annotations

import asyncio

from relaylog import (
    Dispatcher,
    DuckDBSink,
    InMemorySink,
    JsonFormat,
    QueuedSink,
    SplatFormat,
    TimestampFormat,
    combine,
    load_config,
)


def _print_results(err: BaseException | None, results: dict) -> None:
    """Print aggregated query results per sink."""
    for name, result in results.items():
        print(f"[query] {name}: {result}")


async def main() -> None:
    settings = load_config()

    memory = InMemorySink(name="memory")
    sinks: list = [memory]
    queued: QueuedSink | None = None
    if settings.duckdb_path is not None:
        queued = QueuedSink(
            sink=DuckDBSink(path=settings.duckdb_path, name="duckdb"),
            max_queue_size=settings.queue_size,
        )
        sinks.append(queued)

    log = Dispatcher(
        **settings.to_options(),
        format=combine(TimestampFormat(), SplatFormat(), JsonFormat()),
        sinks=sinks,
    )
    log.on_error(lambda err: print(f"[sink error] {err}"))

    tail = log.stream()
    tail.on("log", lambda record: print(f"[tail] {record.rendered} via {record.sinks}"))

    log.log({"level": "info", "message": "relaylog demo starting"})
    log.log("info", "plain message")
    log.log("warn", "metadata only", {"component": "demo"})
    log.info("%s is %d%% done", "setup", 50, {"step": 1})

    log.profile("sleep")
    await asyncio.sleep(0.1)
    log.profile("sleep", message="slept")

    timer = log.start_timer()
    await asyncio.sleep(0.05)
    timer.done(message="timer finished")

    tail.destroy()

    if queued is not None:
        await queued.aclose()
        # The DuckDB file was flushed and closed; reopen it read-side for the query.
        log.remove(queued)
        log.add(DuckDBSink(path=settings.duckdb_path, name="duckdb"))

    log.query({"limit": 10, "order": "asc"}, _print_results)
    log.close()


if __name__ == "__main__":
    asyncio.run(main())
