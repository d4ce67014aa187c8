"""Structured-logging dispatcher.

This package provides a small, modular pipeline for:
- Normalizing heterogeneous log calls (level/message/meta, printf-style format
  strings, whole records) into one canonical `Record`.
- Passing every record through a pluggable format adapter.
- Fanning records out to sinks with per-sink failure isolation, plus historical
  query, live tailing and duration profiling on top of the same sinks.
"""

from .config import LoggerOptions, Settings, load_config
from .dispatcher import Dispatcher
from .errors import (
    Condition,
    ConfigurationError,
    FormatError,
    InvalidSinkError,
    NoSinksCondition,
    RelaylogError,
    RemovedOptionError,
    SinkDeliveryError,
    UnknownLevelCondition,
)
from .formats import CombinedFormat, FormatAdapter, FunctionFormat, JsonFormat, SplatFormat, TimestampFormat, combine
from .models import CLI_LEVELS, NPM_LEVELS, SYSLOG_LEVELS, LevelSet, Record
from .recorder import QueuedSink
from .registry import LegacySinkAdapter, SinkRegistration, SinkRegistry
from .sinks import DuckDBSink, InMemorySink, Sink, SinkBase
from .streaming import CombinedStream, LogStream

__all__ = [
    "CLI_LEVELS",
    "CombinedFormat",
    "CombinedStream",
    "Condition",
    "ConfigurationError",
    "Dispatcher",
    "DuckDBSink",
    "FormatAdapter",
    "FormatError",
    "FunctionFormat",
    "InMemorySink",
    "InvalidSinkError",
    "JsonFormat",
    "LegacySinkAdapter",
    "LevelSet",
    "LogStream",
    "LoggerOptions",
    "NPM_LEVELS",
    "NoSinksCondition",
    "QueuedSink",
    "Record",
    "RelaylogError",
    "RemovedOptionError",
    "SYSLOG_LEVELS",
    "Settings",
    "Sink",
    "SinkBase",
    "SinkDeliveryError",
    "SinkRegistration",
    "SinkRegistry",
    "SplatFormat",
    "TimestampFormat",
    "UnknownLevelCondition",
    "combine",
    "load_config",
]
