"""
Metrics: In-Process Counters, Histograms and Latency Trends

Provides:
- Labelled monotonically increasing counters
- Labelled histograms for request latency
- A rolling performance monitor that warns when recent requests slow down

Everything runs on the event loop thread; the locks only guard against
callers reading metrics from another thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

from memorymesh.core import constants as C

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricLabels:
    """Immutable label set for metric dimensions."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class Counter:
    """
    Monotonically increasing counter metric.

    Usage:
        retries = Counter("backend_retries_total", ["backend"])
        retries.inc(backend="openai")
    """

    __slots__ = ("_name", "_label_names", "_values", "_lock")

    def __init__(self, name: str, label_names: Sequence[str] = ()) -> None:
        self._name = name
        self._label_names = tuple(label_names)
        self._values: dict[MetricLabels, float] = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: labels.get(k, "") for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            for key, value in self._values.items():
                yield (key.to_dict(), value)

    @property
    def name(self) -> str:
        return self._name


class Histogram:
    """
    Histogram with cumulative buckets (seconds).

    Usage:
        latency = Histogram("chat_latency_seconds", ["backend"])
        with latency.time(backend="openai"):
            await adapter.chat(messages)
    """

    __slots__ = (
        "_name", "_label_names", "_buckets",
        "_bucket_counts", "_sums", "_counts", "_lock",
    )

    DEFAULT_BUCKETS = (
        0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        self._name = name
        self._label_names = tuple(label_names)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)

        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)
        self._lock = threading.Lock()

    def observe(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)

        with self._lock:
            if key not in self._bucket_counts:
                self._bucket_counts[key] = [0] * len(self._buckets)
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    self._bucket_counts[key][i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    def time(self, **labels: str) -> HistogramTimer:
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def mean(self, **labels: str) -> Optional[float]:
        key = self._make_key(labels)
        with self._lock:
            n = self._counts.get(key, 0)
            return self._sums[key] / n if n else None

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: labels.get(k, "") for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    def collect(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            for key in self._bucket_counts:
                yield {
                    "labels": key.to_dict(),
                    "buckets": list(zip(self._buckets, self._bucket_counts[key])),
                    "sum": self._sums.get(key, 0.0),
                    "count": self._counts.get(key, 0),
                }

    @property
    def name(self) -> str:
        return self._name


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
    Registry for the metrics of one client.

    Each client owns its collector; there is no process-wide instance.
    """

    __slots__ = ("_counters", "_histograms", "_lock")

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Sequence[str] = ()) -> Counter:
        """Get or create counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names)
            return self._counters[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        """Get or create histogram."""
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, buckets)
            return self._histograms[name]

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view of every metric, for logs and tests."""
        return {
            "counters": {
                name: list(counter.collect()) for name, counter in self._counters.items()
            },
            "histograms": {
                name: list(hist.collect()) for name, hist in self._histograms.items()
            },
        }


@dataclass(slots=True)
class PerformanceSample:
    duration_ms: float
    message_count: int
    success: bool
    timestamp: float


class PerformanceMonitor:
    """
    Rolling record of chat durations.

    Keeps the most recent samples and warns when the mean duration of the
    last few requests crosses the slow threshold.
    """

    __slots__ = ("_samples", "_trend_window", "_slow_threshold_ms")

    def __init__(
        self,
        history_size: int = C.PERF_HISTORY_SIZE,
        trend_window: int = C.PERF_TREND_WINDOW,
        slow_threshold_ms: float = C.PERF_SLOW_THRESHOLD_MS,
    ) -> None:
        self._samples: deque[PerformanceSample] = deque(maxlen=history_size)
        self._trend_window = trend_window
        self._slow_threshold_ms = slow_threshold_ms

    def record(self, duration_ms: float, message_count: int, success: bool) -> bool:
        """
        Record one request.

        Returns:
            True if the recent trend is over the slow threshold
        """
        self._samples.append(PerformanceSample(
            duration_ms=duration_ms,
            message_count=message_count,
            success=success,
            timestamp=time.time(),
        ))
        return self._analyze_trend()

    def _analyze_trend(self) -> bool:
        if len(self._samples) < self._trend_window:
            return False
        recent = list(self._samples)[-self._trend_window:]
        avg = sum(s.duration_ms for s in recent) / len(recent)
        if avg > self._slow_threshold_ms:
            logger.warning(
                "Performance degradation detected",
                extra={"average_duration_ms": round(avg, 1), "window": len(recent)},
            )
            return True
        return False

    @property
    def samples(self) -> list[PerformanceSample]:
        return list(self._samples)

    @property
    def success_rate(self) -> float:
        if not self._samples:
            return 1.0
        return sum(1 for s in self._samples if s.success) / len(self._samples)
