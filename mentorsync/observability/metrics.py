"""
Metrics Collector: Prometheus-Compatible Observability

Provides labelled counters, gauges and latency histograms for the session
layer, plus `SessionMetrics`, the fixed set of instruments MentorSync
records.

Instruments are process-local; `MetricsCollector.export_prometheus()`
renders them in Prometheus text format.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


LabelKey = tuple[tuple[str, str], ...]


def _label_key(label_names: tuple[str, ...], labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(labels.get(k, ""))) for k in label_names))


class _Metric:
    """Shared naming/label plumbing."""

    __slots__ = ("_name", "_help", "_label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str], help_text: str) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def help_text(self) -> str:
        return self._help


class Counter(_Metric):
    """
    Monotonically increasing counter metric.

    Usage:
        commands = Counter("mentorsync_commands_total", ["command", "outcome"])
        commands.inc(command="getUser", outcome="ok")
    """

    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        key = _label_key(self._label_names, labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = _label_key(self._label_names, labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (dict(key), value)


class Gauge(_Metric):
    """
    Gauge metric that can go up and down.

    Usage:
        live = Gauge("mentorsync_live_sessions")
        live.inc()
        live.dec()
    """

    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = _label_key(self._label_names, labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = _label_key(self._label_names, labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self.inc(-value, **labels)

    def get(self, **labels: str) -> float:
        key = _label_key(self._label_names, labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (dict(key), value)


class Histogram(_Metric):
    """
    Histogram with cumulative buckets.

    Usage:
        latency = Histogram("mentorsync_command_seconds", ["command"])
        with latency.time(command="updateProfile"):
            ...
    """

    __slots__ = ("_buckets", "_bucket_counts", "_sums", "_counts")

    DEFAULT_BUCKETS = (
        0.001, 0.005, 0.01, 0.025, 0.05, 0.1,
        0.25, 0.5, 1.0, 2.5, 5.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        bounds = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if bounds[-1] != float("inf"):
            bounds = bounds + (float("inf"),)
        self._buckets = bounds
        self._bucket_counts: dict[LabelKey, list[int]] = {}
        self._sums: dict[LabelKey, float] = defaultdict(float)
        self._counts: dict[LabelKey, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = _label_key(self._label_names, labels)
        with self._lock:
            counts = self._bucket_counts.setdefault(key, [0] * len(self._buckets))
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    def time(self, **labels: str) -> HistogramTimer:
        """Context manager for timing operations."""
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = _label_key(self._label_names, labels)
        with self._lock:
            return self._counts.get(key, 0)

    def collect(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            snapshot = [
                (key, list(counts), self._sums[key], self._counts[key])
                for key, counts in self._bucket_counts.items()
            ]
        for key, counts, total, n in snapshot:
            yield {
                "labels": dict(key),
                "buckets": list(zip(self._buckets, counts)),
                "sum": total,
                "count": n,
            }


class HistogramTimer:
    """Context manager for histogram timing."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._start, **self._labels)


class MetricsCollector:
    """
    Central registry for all metrics.

    Usage:
        collector = MetricsCollector.get_instance()
        requests = collector.counter("requests_total")
        output = collector.export_prometheus()
    """

    __slots__ = ("_counters", "_gauges", "_histograms", "_lock")

    _instance: Optional[MetricsCollector] = None

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests start from zeroed metrics)."""
        cls._instance = None

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, label_names, help_text)
            return self._gauges[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, help_text, buckets)
            return self._histograms[name]

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines: list[str] = []

        for name, counter in self._counters.items():
            if counter.help_text:
                lines.append(f"# HELP {name} {counter.help_text}")
            lines.append(f"# TYPE {name} counter")
            for labels, value in counter.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, gauge in self._gauges.items():
            if gauge.help_text:
                lines.append(f"# HELP {name} {gauge.help_text}")
            lines.append(f"# TYPE {name} gauge")
            for labels, value in gauge.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, histogram in self._histograms.items():
            lines.append(f"# TYPE {name} histogram")
            for data in histogram.collect():
                labels = data["labels"]
                for bound, count in data["buckets"]:
                    bound_str = "+Inf" if bound == float("inf") else str(bound)
                    bucket_labels = {**labels, "le": bound_str}
                    lines.append(f"{name}_bucket{self._format_labels(bucket_labels)} {count}")
                label_str = self._format_labels(labels)
                lines.append(f'{name}_sum{label_str} {data["sum"]}')
                lines.append(f'{name}_count{label_str} {data["count"]}')

        return "\n".join(lines)

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# =============================================================================
# MENTORSYNC INSTRUMENTS
# =============================================================================
@dataclass(frozen=True)
class SessionMetrics:
    """Instruments recorded by sessions, the registry and the engine."""

    commands: Counter
    command_seconds: Histogram
    live_sessions: Gauge
    broadcasts: Counter
    self_heal: Counter

    @classmethod
    def from_collector(cls, collector: Optional[MetricsCollector] = None) -> SessionMetrics:
        c = collector or MetricsCollector.get_instance()
        return cls(
            commands=c.counter(
                "mentorsync_commands_total",
                ["command", "outcome"],
                "Inbound commands by outcome (ok, failed, refused, error)",
            ),
            command_seconds=c.histogram(
                "mentorsync_command_seconds",
                ["command"],
                "Command handling latency",
            ),
            live_sessions=c.gauge(
                "mentorsync_live_sessions",
                help_text="Sessions registered in the connection registry",
            ),
            broadcasts=c.counter(
                "mentorsync_broadcasts_total",
                ["type"],
                "Data events fanned out to live sessions",
            ),
            self_heal=c.counter(
                "mentorsync_self_heal_total",
                ["kind"],
                "Self-healing repairs by kind",
            ),
        )
