"""
Tracing: OpenTelemetry-Compatible Span Management

One `history.fetch` span covers a logical fetch; each page call opens a
child `history.page` span. The current span travels in a ContextVar, so
concurrent fetches on one loop never see each other's spans. Outgoing HTTP
requests carry the current span as a W3C `traceparent` header.

Sampling is decided once per trace, at the root span; children inherit it.
"""

from __future__ import annotations

import logging
import random
import secrets
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

MAX_RETAINED_SPANS: int = 10_000


class SpanStatus(Enum):
    UNSET = auto()
    OK = auto()
    ERROR = auto()


@dataclass(frozen=True)
class SpanContext:
    """Identifiers propagated from a span to its children and to the wire."""
    trace_id: str  # 32 hex chars
    span_id: str   # 16 hex chars
    parent_span_id: Optional[str] = None
    sampled: bool = True

    @classmethod
    def root(cls, sampled: bool) -> SpanContext:
        return cls(trace_id=secrets.token_hex(16), span_id=secrets.token_hex(8), sampled=sampled)

    def child(self) -> SpanContext:
        return SpanContext(
            trace_id=self.trace_id,
            span_id=secrets.token_hex(8),
            parent_span_id=self.span_id,
            sampled=self.sampled,
        )

    @property
    def traceparent(self) -> str:
        return f"00-{self.trace_id}-{self.span_id}-{'01' if self.sampled else '00'}"


@dataclass
class Span:
    """A timed unit of work (a logical fetch or a single page call)."""
    name: str
    context: SpanContext
    start_time_ns: int = field(default_factory=time.time_ns)
    end_time_ns: Optional[int] = None
    status: SpanStatus = SpanStatus.UNSET
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def ended(self) -> bool:
        return self.end_time_ns is not None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time_ns is None:
            return None
        return (self.end_time_ns - self.start_time_ns) / 1_000_000

    def set_attribute(self, key: str, value: Any) -> Span:
        self.attributes[key] = value
        return self

    def set_status(self, status: SpanStatus, message: Optional[str] = None) -> Span:
        self.status = status
        if message:
            self.attributes["status_message"] = message
        return self

    def end(self) -> None:
        if self.ended:
            return
        self.end_time_ns = time.time_ns()
        if self.status is SpanStatus.UNSET:
            self.status = SpanStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trace_id": self.context.trace_id,
            "span_id": self.context.span_id,
            "parent_span_id": self.context.parent_span_id,
            "duration_ms": self.duration_ms,
            "status": self.status.name,
            "attributes": dict(self.attributes),
        }


_current_span: ContextVar[Optional[Span]] = ContextVar("history_fetch_span", default=None)


class Tracer:
    """
    Span factory with bounded in-process retention and an optional exporter.

    Usage:
        tracer = Tracer("history-fetch", sample_rate=0.1)

        with tracer.start_span("history.fetch", {"channel": channel}) as span:
            ...
            span.set_attribute("pages", 3)
    """

    __slots__ = ("_service_name", "_sample_rate", "_enabled", "_exporter", "_spans", "_lock")

    _instance: Optional[Tracer] = None

    def __init__(
        self,
        service_name: str,
        sample_rate: float = 1.0,
        exporter: Optional[Callable[[Span], None]] = None,
        enabled: bool = True,
    ) -> None:
        self._service_name = service_name
        self._sample_rate = sample_rate
        self._enabled = enabled
        self._exporter = exporter
        self._spans: deque[Span] = deque(maxlen=MAX_RETAINED_SPANS)
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls, service_name: str = "history-fetch") -> Tracer:
        """Process-wide default tracer."""
        if cls._instance is None:
            cls._instance = cls(service_name)
        return cls._instance

    @contextmanager
    def start_span(
        self,
        name: str,
        attributes: Optional[dict[str, Any]] = None,
    ) -> Iterator[Span]:
        """Open a span as a child of the current one (or a new trace root)."""
        parent = _current_span.get()
        if parent is not None:
            context = parent.context.child()
        else:
            context = SpanContext.root(sampled=self._sample_root())

        span = Span(name=name, context=context, attributes=dict(attributes or {}))
        span.attributes["service.name"] = self._service_name
        token = _current_span.set(span)
        try:
            yield span
        except BaseException as e:
            # Cancellation ends the span without marking it failed.
            if isinstance(e, Exception):
                span.set_status(SpanStatus.ERROR, str(e))
            raise
        finally:
            span.end()
            _current_span.reset(token)
            if context.sampled and self._enabled:
                self._record(span)

    def _sample_root(self) -> bool:
        if not self._enabled:
            return False
        return self._sample_rate >= 1.0 or random.random() < self._sample_rate

    def _record(self, span: Span) -> None:
        with self._lock:
            self._spans.append(span)
        if self._exporter is None:
            return
        try:
            self._exporter(span)
        except Exception as e:
            logger.warning("Span export failed for %s: %s", span.name, e)

    @staticmethod
    def get_current_span() -> Optional[Span]:
        return _current_span.get()

    def get_recent_spans(self, limit: int = 100) -> list[Span]:
        with self._lock:
            return list(self._spans)[-limit:]

    def inject_context(self, carrier: dict[str, str]) -> None:
        """Add the current span's `traceparent` to outgoing headers."""
        span = _current_span.get()
        if span is not None:
            carrier["traceparent"] = span.context.traceparent
