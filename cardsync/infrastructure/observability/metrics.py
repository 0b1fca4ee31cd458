"""Simple in-process metrics collection for cardsync.

Lightweight counters and histograms kept in memory. They are exported in
Prometheus text format by the ``/metrics`` endpoint and printed by
``cardsync sync --metrics`` after a run.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping

LabelKey = tuple[tuple[str, str | None], ...]


def _labels_to_key(labels: Mapping[str, str | None] | None) -> LabelKey:
    if labels is None:
        return ()
    return tuple(sorted(labels.items()))


def _label_str(key: LabelKey) -> str:
    return ",".join(f'{k}="{v}"' for k, v in key)


# ---------------------------------------------------------------------------
# Metric storage
# ---------------------------------------------------------------------------


@dataclass
class Counter:
    """A monotonically increasing counter."""

    name: str
    help_text: str = ""
    _values: dict[LabelKey, float] = field(default_factory=lambda: defaultdict(float))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, value: float = 1.0, labels: Mapping[str, str | None] | None = None) -> None:
        key = _labels_to_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Mapping[str, str | None] | None = None) -> float:
        key = _labels_to_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def items(self) -> list[tuple[LabelKey, float]]:
        with self._lock:
            return list(self._values.items())


@dataclass
class Histogram:
    """A histogram keeping count and sum per label set.

    Bucket counts are cumulative, as Prometheus expects.
    """

    name: str
    help_text: str = ""
    buckets: tuple[float, ...] = (0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60)
    _counts: dict[LabelKey, list[int]] = field(default_factory=dict)
    _sums: dict[LabelKey, float] = field(default_factory=lambda: defaultdict(float))
    _totals: dict[LabelKey, int] = field(default_factory=lambda: defaultdict(int))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def observe(self, value: float, labels: Mapping[str, str | None] | None = None) -> None:
        key = _labels_to_key(labels)
        with self._lock:
            counts = self._counts.setdefault(key, [0] * len(self.buckets))
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._totals[key] += 1

    def get_stats(self, labels: Mapping[str, str | None] | None = None) -> dict[str, float]:
        key = _labels_to_key(labels)
        with self._lock:
            count = self._totals.get(key, 0)
            total = self._sums.get(key, 0.0)
        return {
            "count": count,
            "sum": total,
            "avg": total / count if count else 0.0,
        }

    def keys(self) -> list[LabelKey]:
        with self._lock:
            return list(self._totals)

    def bucket_counts(self, key: LabelKey) -> list[int]:
        with self._lock:
            return list(self._counts.get(key, [0] * len(self.buckets)))


# ---------------------------------------------------------------------------
# Global metric registry
# ---------------------------------------------------------------------------


class MetricRegistry:
    """Registry holding every counter and histogram by name."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str = "") -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name, help_text=help_text)
            return self._counters[name]

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name=name, help_text=help_text)
            return self._histograms[name]

    def all_counters(self) -> dict[str, Counter]:
        with self._lock:
            return dict(self._counters)

    def all_histograms(self) -> dict[str, Histogram]:
        with self._lock:
            return dict(self._histograms)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


_registry = MetricRegistry()


def get_registry() -> MetricRegistry:
    return _registry


# ---------------------------------------------------------------------------
# Convenience functions
# ---------------------------------------------------------------------------


def increment_counter(
    name: str,
    value: float = 1.0,
    labels: Mapping[str, str | None] | None = None,
    help_text: str = "",
) -> None:
    """Increment a counter by name, creating it on first use."""
    _registry.counter(name, help_text).inc(value, labels)


def observe_histogram(
    name: str,
    value: float,
    labels: Mapping[str, str | None] | None = None,
    help_text: str = "",
) -> None:
    """Record an observation in a histogram, creating it on first use."""
    _registry.histogram(name, help_text).observe(value, labels)


class Timer:
    """Context manager timing a block into a histogram."""

    def __init__(
        self,
        histogram_name: str,
        labels: Mapping[str, str | None] | None = None,
        help_text: str = "",
    ) -> None:
        self.histogram_name = histogram_name
        self.labels = labels
        self.help_text = help_text
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed = time.perf_counter() - self._start
        observe_histogram(self.histogram_name, self.elapsed, self.labels, self.help_text)


# ---------------------------------------------------------------------------
# Predefined metrics for cardsync
# ---------------------------------------------------------------------------

SYNC_TARGETS = "sync_targets_total"
SYNC_TARGET_DURATION = "sync_target_duration_seconds"
SYNC_RECORDS_UPSERTED = "sync_records_upserted_total"
CHUNK_WRITE_DURATION = "sync_chunk_write_duration_seconds"
FETCH_ATTEMPTS = "fetch_attempts_total"
FETCH_DURATION = "fetch_duration_seconds"
API_REQUESTS = "api_requests_total"


def record_fetch_attempt(outcome: str, duration: float) -> None:
    """Record one HTTP attempt; ``outcome`` is ok, retryable or fatal."""
    increment_counter(
        FETCH_ATTEMPTS, labels={"outcome": outcome}, help_text="Total HTTP fetch attempts"
    )
    observe_histogram(
        FETCH_DURATION,
        duration,
        labels={"outcome": outcome},
        help_text="HTTP fetch attempt duration in seconds",
    )


def record_target_result(source: str, state: str, duration: float, upserted: int) -> None:
    """Record a finished target with its terminal state."""
    increment_counter(
        SYNC_TARGETS,
        labels={"source": source, "state": state},
        help_text="Total sync targets processed",
    )
    observe_histogram(
        SYNC_TARGET_DURATION,
        duration,
        labels={"source": source},
        help_text="Per-target sync duration in seconds",
    )
    if upserted > 0:
        increment_counter(
            SYNC_RECORDS_UPSERTED,
            value=float(upserted),
            labels={"source": source},
            help_text="Total records upserted",
        )


def record_api_request(endpoint: str, method: str, status_code: int) -> None:
    increment_counter(
        API_REQUESTS,
        labels={"endpoint": endpoint, "method": method, "status": str(status_code)},
        help_text="Total API requests",
    )


# ---------------------------------------------------------------------------
# Export utilities
# ---------------------------------------------------------------------------


def get_metrics_summary() -> dict[str, object]:
    """Return a summary of all metrics for logging or an API response."""
    counters: dict[str, dict[str, float]] = {}
    histograms: dict[str, dict[str, dict[str, float]]] = {}

    for name, counter in _registry.all_counters().items():
        counters[name] = {
            (",".join(f"{k}={v}" for k, v in key) if key else "default"): value
            for key, value in counter.items()
        }

    for name, histogram in _registry.all_histograms().items():
        histograms[name] = {
            (",".join(f"{k}={v}" for k, v in key) if key else "default"): histogram.get_stats(
                dict(key) if key else None
            )
            for key in histogram.keys()
        }

    return {"counters": counters, "histograms": histograms}


def format_prometheus() -> str:
    """Format metrics in Prometheus text exposition format."""
    lines: list[str] = []

    for name, counter in _registry.all_counters().items():
        if counter.help_text:
            lines.append(f"# HELP {name} {counter.help_text}")
        lines.append(f"# TYPE {name} counter")
        for key, value in counter.items():
            if key:
                lines.append(f"{name}{{{_label_str(key)}}} {value}")
            else:
                lines.append(f"{name} {value}")

    for name, histogram in _registry.all_histograms().items():
        if histogram.help_text:
            lines.append(f"# HELP {name} {histogram.help_text}")
        lines.append(f"# TYPE {name} histogram")
        for key in histogram.keys():
            stats = histogram.get_stats(dict(key) if key else None)
            base = _label_str(key)
            for bound, count in zip(histogram.buckets, histogram.bucket_counts(key)):
                le = f'le="{bound}"'
                labels = f"{base},{le}" if base else le
                lines.append(f"{name}_bucket{{{labels}}} {count}")
            inf_labels = f'{base},le="+Inf"' if base else 'le="+Inf"'
            lines.append(f"{name}_bucket{{{inf_labels}}} {stats['count']}")
            suffix = f"{{{base}}}" if base else ""
            lines.append(f"{name}_count{suffix} {stats['count']}")
            lines.append(f"{name}_sum{suffix} {stats['sum']}")

    return "\n".join(lines) + ("\n" if lines else "")
