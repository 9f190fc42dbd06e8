"""
prbatch — structured run logging

Purpose
- Emit one JSON object per line for every record under the ``prbatch`` logger,
  stamped with the run id and whatever change/phase is currently bound.

Normative behavior
- Records are handed to a bounded queue and written by a single listener
  thread; a full queue drops the record rather than blocking the run.
- The stream sink honours the configured level. The optional file sink at
  ``<log_dir>/<run_id>/prbatch.jsonl`` always records DEBUG and above.
- ``key=value`` pairs that look like credentials are masked in messages and
  string extras.
- Only one setup is active per process; a new setup shuts the old one down.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Final, TextIO

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

REDACTION_MARK: Final[str] = "***REDACTED***"
CORRELATION_FIELDS: Final[tuple[str, ...]] = ("run_id", "change_id", "phase")

_SECRET_PAIR: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(?P<key>api[_-]?key|token|password|secret|authorization)\b"
    r"\s*(?P<sep>[:=])\s*[^\s,;]+"
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_BUILTINS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
}

_bound: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "prbatch_log_correlation", default=MappingProxyType({})
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one run's logging setup."""

    run_id: str
    level: int | str = "WARNING"
    log_dir: Path | str | None = None
    logger_name: str = "prbatch"
    log_filename: str = "prbatch.jsonl"
    queue_size: int = 4096
    stream: TextIO | None = None


def mask_secrets(text: str) -> str:
    return _SECRET_PAIR.sub(lambda m: f"{m['key']}{m['sep']}{REDACTION_MARK}", text)


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return mask_secrets(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(k): _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return repr(value)


class JsonLinesFormatter(logging.Formatter):
    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_secrets(record.getMessage()),
            "run_id": self._run_id,
        }
        for name in CORRELATION_FIELDS:
            bound = getattr(record, name, None)
            if isinstance(bound, str) and bound.strip():
                payload[name] = bound.strip()

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_BUILTINS
            and key not in CORRELATION_FIELDS
            and not key.startswith("_")
        }
        if extras:
            payload["fields"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _StampingQueueHandler(logging.handlers.QueueHandler):
    """Copies the caller's bound correlation fields onto the record, then enqueues it."""

    dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        for name, value in _bound.get().items():
            if not isinstance(getattr(record, name, None), str):
                setattr(record, name, value)
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class StructuredLoggingHandle:
    """A running logging setup: the logger it feeds, its sinks, and its listener."""

    def __init__(
        self,
        logger: logging.Logger,
        run_id: str,
        log_path: Path | None,
        records: queue.Queue[logging.LogRecord],
        feeder: logging.Handler,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._records = records
        self._feeder = feeder
        self._sinks = sinks
        self._listener = logging.handlers.QueueListener(records, *sinks, respect_handler_level=True)
        self._lock = threading.Lock()
        self._closed = False

    def start(self) -> None:
        self._listener.start()
        self.logger.addHandler(self._feeder)

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    @property
    def dropped_records(self) -> int:
        """Records discarded because the queue was full."""

        return getattr(self._feeder, "dropped", 0)

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait (bounded) for queued records to reach the sinks."""

        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._records.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._feeder)
            self._feeder.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


class _ActiveSetup:
    """Process-wide slot for the current handle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: StructuredLoggingHandle | None = None
        self._hooked = False

    def get(self) -> StructuredLoggingHandle | None:
        with self._lock:
            return self._handle

    def swap(self, handle: StructuredLoggingHandle | None) -> StructuredLoggingHandle | None:
        with self._lock:
            previous, self._handle = self._handle, handle
            if handle is not None and not self._hooked:
                atexit.register(shutdown_logging)
                self._hooked = True
            return previous

    def clear_if(self, handle: StructuredLoggingHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None


_active = _ActiveSetup()


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} must be a non-empty string")
    return value.strip()


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level {level!r}")
    return resolved


def setup_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Route the configured logger through a JSON-lines queue for one run."""

    run_id = _require_text(config.run_id, "run_id")
    logger_name = _require_text(config.logger_name, "logger_name")
    level = _resolve_level(config.level)
    if config.queue_size < 1:
        raise ValueError("queue_size must be at least 1")
    filename = _require_text(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError(f"log_filename {filename!r} must be a bare file name")

    previous = _active.swap(None)
    if previous is not None:
        previous.shutdown()

    formatter = JsonLinesFormatter(run_id)
    console = logging.StreamHandler(config.stream or sys.stderr)
    console.setLevel(level)
    sinks: list[logging.Handler] = [console]

    log_path: Path | None = None
    if config.log_dir:
        log_path = Path(config.log_dir) / run_id / filename
        log_path.parent.mkdir(parents=True, exist_ok=True)
        to_file = logging.FileHandler(log_path, encoding="utf-8")
        to_file.setLevel(logging.DEBUG)
        sinks.append(to_file)
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(logging.DEBUG if log_path is not None else level)
    logger.propagate = False

    records: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    handle = StructuredLoggingHandle(
        logger, run_id, log_path, records, _StampingQueueHandler(records), tuple(sinks)
    )
    handle.start()
    _active.swap(handle)
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Drain and close ``handle``, or the active setup when none is given."""

    target = handle or _active.get()
    if target is None:
        return
    target.shutdown()
    _active.clear_if(target)


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    return _active.get()


def get_correlation_context() -> dict[str, str]:
    return dict(_bound.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block.

    A ``None`` value unbinds a field inherited from an outer scope.
    """

    merged = dict(_bound.get())
    for name, value in fields.items():
        if value is None:
            merged.pop(name, None)
        else:
            merged[name] = _require_text(value, f"correlation field {name!r}")
    token = _bound.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _bound.reset(token)


__all__ = [
    "CORRELATION_FIELDS",
    "JSONScalar",
    "JSONValue",
    "JsonLinesFormatter",
    "LoggingConfig",
    "REDACTION_MARK",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "mask_secrets",
    "setup_logging",
    "shutdown_logging",
]
