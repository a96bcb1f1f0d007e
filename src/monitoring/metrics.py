"""
Metrics collection for DocVerify.

One MetricsCollector is owned by each DocVerifyService and fed by:
- verification outcomes by disclosure level
- rate-limit rejections by action
- cache fallbacks and unknown ledger statuses
- the request middleware (request counts, latency, in-flight requests)

Exposed as JSON at /metrics/json and in Prometheus text format at /metrics.
"""

import threading
import time
from bisect import bisect_left
from collections import defaultdict
from typing import Any

# Latency buckets in milliseconds; a +Inf bucket is implied
LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

LabelSet = tuple[tuple[str, str], ...]


def _label_set(labels: dict[str, str] | None) -> LabelSet:
    return tuple(sorted((labels or {}).items()))


def _render_labels(label_set: LabelSet, extra: str = "") -> str:
    parts = [f'{k}="{v}"' for k, v in label_set]
    if extra:
        parts.append(extra)
    return "{" + ",".join(parts) + "}" if parts else ""


class _Latency:
    """Bucket counts plus sum and count for one label set."""

    def __init__(self):
        self.bucket_counts = [0] * (len(LATENCY_BUCKETS_MS) + 1)
        self.total = 0.0
        self.count = 0

    def observe(self, value_ms: float) -> None:
        self.total += value_ms
        self.count += 1
        # Counts are stored per bucket and accumulated on export
        self.bucket_counts[bisect_left(LATENCY_BUCKETS_MS, value_ms)] += 1

    def cumulative(self) -> list[tuple[str, int]]:
        bounds = [str(b) for b in LATENCY_BUCKETS_MS] + ["+Inf"]
        running = 0
        rows = []
        for bound, count in zip(bounds, self.bucket_counts):
            running += count
            rows.append((bound, running))
        return rows


class MetricsCollector:
    """Thread-safe counters, gauges and latency histograms with optional labels."""

    def __init__(self, prefix: str = "docverify"):
        self.prefix = prefix
        self._lock = threading.Lock()
        self._counters: dict[str, dict[LabelSet, int]] = defaultdict(dict)
        self._gauges: dict[str, dict[LabelSet, float]] = defaultdict(dict)
        self._latencies: dict[str, dict[LabelSet, _Latency]] = defaultdict(dict)
        self._started = time.time()

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        key = _label_set(labels)
        with self._lock:
            series = self._counters[name]
            series[key] = series.get(key, 0) + value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(_label_set(labels), 0)

    def increment_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        key = _label_set(labels)
        with self._lock:
            series = self._gauges[name]
            series[key] = series.get(key, 0.0) + value

    def decrement_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        self.increment_gauge(name, -value, labels)

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record one latency observation in milliseconds."""
        key = _label_set(labels)
        with self._lock:
            self._latencies[name].setdefault(key, _Latency()).observe(value_ms)

    def get_all(self) -> dict[str, Any]:
        """
        JSON view. Unlabelled series collapse to a bare number; labelled
        ones map their rendered label set to the value.
        """

        def flatten(series: dict[LabelSet, Any]) -> Any:
            if list(series) == [()]:
                return series[()]
            return {_render_labels(k)[1:-1]: v for k, v in series.items()}

        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started, 2),
                "counters": {name: flatten(s) for name, s in self._counters.items()},
                "gauges": {name: flatten(s) for name, s in self._gauges.items()},
                "latency_ms": {
                    name: {
                        _render_labels(k)[1:-1] or "all": {
                            "count": h.count,
                            "avg": round(h.total / h.count, 2) if h.count else 0.0,
                        }
                        for k, h in series.items()
                    }
                    for name, series in self._latencies.items()
                },
            }

    def to_prometheus(self) -> str:
        """Prometheus text exposition format."""
        uptime = f"{self.prefix}_uptime_seconds"
        lines = [
            f"# HELP {uptime} Time since application start",
            f"# TYPE {uptime} gauge",
            f"{uptime} {time.time() - self._started:.2f}",
        ]

        with self._lock:
            for kind, metrics in (("counter", self._counters), ("gauge", self._gauges)):
                for name, series in metrics.items():
                    metric = f"{self.prefix}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(f"{metric}{_render_labels(k)} {v}" for k, v in series.items())

            for name, series in self._latencies.items():
                metric = f"{self.prefix}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in series.items():
                    for bound, count in hist.cumulative():
                        le = f'le="{bound}"'
                        lines.append(f"{metric}_bucket{_render_labels(key, le)} {count}")
                    lines.append(f"{metric}_sum{_render_labels(key)} {hist.total:.2f}")
                    lines.append(f"{metric}_count{_render_labels(key)} {hist.count}")

        return "\n".join(lines) + "\n"
