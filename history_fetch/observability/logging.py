"""
Structured Logging: JSON-Formatted with Correlation IDs

Modules log through plain `logging.getLogger(__name__)`. This module only
configures the root handler and its formatter:

- JSON lines carrying the current trace/span ids and every field bound with
  `log_context()` (the orchestrator binds `fetch_id` and `channel` for the
  lifetime of a fetch, so page-level lines can be grouped per fetch).
- A plain text format that appends the same bound fields as `key=value`.

Bound fields live in a ContextVar and therefore follow the asyncio task that
bound them across awaits.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Iterator, Optional, TextIO

from history_fetch.observability.tracing import Tracer


class LogLevel(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def from_name(cls, name: str) -> LogLevel:
        return cls[name.strip().upper()]


_log_context: ContextVar[dict[str, Any]] = ContextVar("history_fetch_log_context", default={})

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, correlated with the active span."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        span = Tracer.get_current_span()
        if span is not None:
            data["trace_id"] = span.context.trace_id
            data["span_id"] = span.context.span_id

        data.update(_log_context.get())
        data.update(_record_extras(record))

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines with bound context fields appended."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {**_log_context.get(), **_record_extras(record)}
        if not fields:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{line} | {suffix}"


@contextmanager
def log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Bind fields to every log line emitted inside the block.

    Usage:
        with log_context(fetch_id=fetch_id, channel="chat"):
            logger.info("Fetching page")
    """
    merged = {**_log_context.get(), **fields}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Install a single root handler.

    Args:
        level: Minimum log level
        json_output: JSON lines instead of the text format
        stream: Output stream (default: stderr, keeping stdout for results)
    """
    root = logging.getLogger()
    root.setLevel(level.value)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)
    handler.setFormatter(JsonFormatter() if json_output else ContextTextFormatter())
    root.addHandler(handler)

    # Connection-pool chatter drowns out page-level lines
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
