"""
Metrics Collector: Prometheus-Compatible Observability

Tracks page calls, delivered events, fetch outcomes, in-flight fetches and
page latency. Each metric renders its own exposition lines; the collector
concatenates them in registration order.

Export with MetricsCollector.export_prometheus().
"""

from __future__ import annotations

import threading
import time
from typing import Any, Iterator, Optional, Sequence

LabelKey = tuple[tuple[str, str], ...]

_INF = float("inf")


def _render_labels(key: LabelKey, extra: str = "") -> str:
    pairs = [f'{k}="{v}"' for k, v in key]
    if extra:
        pairs.insert(0, extra)
    return "{" + ",".join(pairs) + "}" if pairs else ""


class _Metric:
    """Name, help text and label schema shared by every metric kind."""

    __slots__ = ("_name", "_help", "_label_names", "_lock")

    kind = "untyped"

    def __init__(self, name: str, label_names: Sequence[str], help_text: str) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(sorted(label_names))
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def help_text(self) -> str:
        return self._help

    def _key(self, labels: dict[str, str]) -> LabelKey:
        # Unknown labels are ignored; missing ones render as empty strings.
        return tuple((name, str(labels.get(name, ""))) for name in self._label_names)

    def header(self) -> list[str]:
        lines = [f"# HELP {self._name} {self._help}"] if self._help else []
        lines.append(f"# TYPE {self._name} {self.kind}")
        return lines

    def samples(self) -> list[str]:
        raise NotImplementedError


class _ScalarMetric(_Metric):
    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = {}

    def _add(self, value: float, labels: dict[str, str]) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def get(self, **labels: str) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield dict(key), value

    def samples(self) -> list[str]:
        with self._lock:
            items = list(self._values.items())
        return [f"{self._name}{_render_labels(key)} {value}" for key, value in items]


class Counter(_ScalarMetric):
    """
    Monotonically increasing counter.

    Usage:
        fetches = Counter("history_fetches_total", ["outcome"])
        fetches.inc(outcome="ok")
    """

    __slots__ = ()

    kind = "counter"

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError(f"Counter {self._name} can only increase")
        self._add(value, labels)


class Gauge(_ScalarMetric):
    """Value that can go up and down (e.g. fetches in flight)."""

    __slots__ = ()

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        self._add(value, labels)

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self._add(-value, labels)


class _Series:
    __slots__ = ("buckets", "total", "count")

    def __init__(self, width: int) -> None:
        self.buckets = [0] * width
        self.total = 0.0
        self.count = 0


class Histogram(_Metric):
    """
    Cumulative-bucket histogram.

    Usage:
        latency = Histogram("history_page_latency_seconds")

        with latency.time():
            await fetcher.fetch_page(request)
    """

    __slots__ = ("_bounds", "_series")

    kind = "histogram"

    # Page calls are network round trips: 5 ms .. 10 s.
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        bounds = sorted(set(buckets or self.DEFAULT_BUCKETS) - {_INF})
        self._bounds = tuple(bounds) + (_INF,)
        self._series: dict[LabelKey, _Series] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = _Series(len(self._bounds))
            for i, bound in enumerate(self._bounds):
                if value <= bound:
                    series.buckets[i] += 1
            series.total += value
            series.count += 1

    def time(self, **labels: str) -> HistogramTimer:
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._key(labels)
        with self._lock:
            series = self._series.get(key)
            return series.count if series else 0

    def total(self, **labels: str) -> float:
        key = self._key(labels)
        with self._lock:
            series = self._series.get(key)
            return series.total if series else 0.0

    def samples(self) -> list[str]:
        lines: list[str] = []
        with self._lock:
            snapshot = [
                (key, list(series.buckets), series.total, series.count)
                for key, series in self._series.items()
            ]
        for key, buckets, total, count in snapshot:
            for bound, hits in zip(self._bounds, buckets):
                le = 'le="+Inf"' if bound == _INF else f'le="{bound}"'
                lines.append(f"{self._name}_bucket{_render_labels(key, le)} {hits}")
            lines.append(f"{self._name}_sum{_render_labels(key)} {total}")
            lines.append(f"{self._name}_count{_render_labels(key)} {count}")
        return lines


class HistogramTimer:
    """Context manager observing elapsed wall time into a histogram."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._start, **self._labels)


class MetricsCollector:
    """
    Registry of named metrics.

    Asking for an existing name returns the registered instance, so every
    orchestrator sharing a collector shares its series.

    Usage:
        collector = MetricsCollector()
        pages = collector.counter("history_pages_total", ["direction"])
        output = collector.export_prometheus()
    """

    __slots__ = ("_metrics", "_lock")

    _instance: Optional[MetricsCollector] = None

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        """Process-wide default collector."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _register(self, name: str, kind: type[_Metric], factory: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = factory()
            elif not isinstance(metric, kind):
                raise ValueError(f"Metric {name!r} is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        return self._register(name, Counter, lambda: Counter(name, label_names, help_text))

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        return self._register(name, Gauge, lambda: Gauge(name, label_names, help_text))

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        return self._register(
            name, Histogram, lambda: Histogram(name, label_names, help_text, buckets),
        )

    def export_prometheus(self) -> str:
        """Render every registered metric in Prometheus text format."""
        with self._lock:
            metrics = list(self._metrics.values())
        lines: list[str] = []
        for metric in metrics:
            lines.extend(metric.header())
            lines.extend(metric.samples())
        return "\n".join(lines)
