"""
Observability module: Metrics, tracing, and structured logging.
"""

from history_fetch.observability.metrics import MetricsCollector, Counter, Gauge, Histogram
from history_fetch.observability.tracing import Tracer, Span, SpanContext, SpanStatus
from history_fetch.observability.logging import LogLevel, log_context, setup_logging

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "Tracer",
    "Span",
    "SpanContext",
    "SpanStatus",
    "LogLevel",
    "log_context",
    "setup_logging",
]
