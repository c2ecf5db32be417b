"""
Metrics Collection for Dispatch

Tracks counters, gauges and histograms for rate limiting, quota enforcement,
provider calls and ledger commits. In-memory implementation with
thread-safe updates.
"""

import logging
import threading
from typing import Dict, Any, Optional
from collections import defaultdict, deque
from datetime import datetime

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 1000


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Tracks:
    - Dispatch outcomes by request class
    - Rate limit and quota rejections
    - Provider calls, retries and latency
    - Ledger commit failures
    """

    def __init__(self):
        self.lock = threading.Lock()

        self.counters = defaultdict(int)
        self.gauges = {}
        self.histograms = defaultdict(lambda: deque(maxlen=HISTOGRAM_WINDOW))

        self.start_time = datetime.utcnow()

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        """
        Increment a counter metric.

        Args:
            name: Metric name
            labels: Optional labels dict
            value: Increment value (default: 1)
        """
        key = self._make_key(name, labels)

        with self.lock:
            self.counters[key] += value

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        key = self._make_key(name, labels)

        with self.lock:
            self.gauges[key] = value

    def observe_histogram(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Add an observation; only the last HISTOGRAM_WINDOW values are kept."""
        key = self._make_key(name, labels)

        with self.lock:
            self.histograms[key].append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        with self.lock:
            return self.counters.get(self._make_key(name, labels), 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        with self.lock:
            return self.gauges.get(self._make_key(name, labels))

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics (min, max, avg, p50, p95, p99)."""
        key = self._make_key(name, labels)

        with self.lock:
            return self._stats(self.histograms.get(key, ()))

    @staticmethod
    def _stats(values) -> Dict[str, float]:
        if not values:
            return {}

        sorted_values = sorted(values)
        count = len(sorted_values)

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p50": sorted_values[int(count * 0.5)],
            "p95": sorted_values[min(int(count * 0.95), count - 1)],
            "p99": sorted_values[min(int(count * 0.99), count - 1)],
        }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Snapshot of every metric as a plain dict."""
        with self.lock:
            return {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "histograms": {
                    key: self._stats(values)
                    for key, values in self.histograms.items()
                },
                "metadata": {
                    "start_time": self.start_time.isoformat(),
                    "uptime_seconds": (datetime.utcnow() - self.start_time).total_seconds(),
                },
            }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self.lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.start_time = datetime.utcnow()

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name

        return name + ":" + ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _metrics_collector

    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()

    return _metrics_collector


# Convenience functions for common metrics

def record_dispatch(request_class: str, outcome: str, collector: Optional[MetricsCollector] = None):
    """Record a finished dispatch (completed, rate_limited, quota_rejected, ...)."""
    collector = collector or get_metrics_collector()
    collector.increment_counter("dispatch_requests_total", {
        "request_class": request_class,
        "outcome": outcome,
    })


def record_rate_limited(route_class: str, collector: Optional[MetricsCollector] = None):
    collector = collector or get_metrics_collector()
    collector.increment_counter("dispatch_rate_limited_total", {"route_class": route_class})


def update_rate_limit_remaining(route_class: str, remaining: int, collector: Optional[MetricsCollector] = None):
    collector = collector or get_metrics_collector()
    collector.set_gauge("rate_limit_remaining_last", {"route_class": route_class}, remaining)


def record_quota_exceeded(dimension: str, collector: Optional[MetricsCollector] = None):
    collector = collector or get_metrics_collector()
    collector.increment_counter("dispatch_quota_exceeded_total", {"dimension": dimension})


def record_provider_call(provider: str, outcome: str, collector: Optional[MetricsCollector] = None):
    """Record one provider attempt (success, transient, permanent)."""
    collector = collector or get_metrics_collector()
    collector.increment_counter("provider_calls_total", {"provider": provider, "outcome": outcome})


def record_provider_latency(provider: str, latency_ms: float, collector: Optional[MetricsCollector] = None):
    collector = collector or get_metrics_collector()
    collector.observe_histogram("provider_latency_ms", {"provider": provider}, latency_ms)


def record_tokens_used(provider: str, tokens: int, collector: Optional[MetricsCollector] = None):
    collector = collector or get_metrics_collector()
    collector.increment_counter("provider_tokens_total", {"provider": provider}, tokens)


def record_commit_failed(collector: Optional[MetricsCollector] = None):
    """Record a ledger commit failure awaiting out-of-band reconciliation."""
    collector = collector or get_metrics_collector()
    collector.increment_counter("ledger_commit_failures_total")


def record_rate_limiter_unavailable(backend: str, collector: Optional[MetricsCollector] = None):
    """Record a limiter store failure that let a request through unchecked."""
    collector = collector or get_metrics_collector()
    collector.increment_counter("rate_limiter_unavailable_total", {"backend": backend})
