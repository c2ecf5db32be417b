import threading

from promptopt.metering.metrics import MetricsCollector, record_dispatch, record_provider_latency


def test_counters_are_labelled():
    collector = MetricsCollector()
    record_dispatch("quick", "completed", collector)
    record_dispatch("quick", "completed", collector)
    record_dispatch("deep", "quota_rejected", collector)

    assert collector.get_counter("dispatch_requests_total", {"request_class": "quick", "outcome": "completed"}) == 2
    assert collector.get_counter("dispatch_requests_total", {"outcome": "quota_rejected", "request_class": "deep"}) == 1


def test_histogram_stats():
    collector = MetricsCollector()
    for value in range(1, 101):
        record_provider_latency("openai", float(value), collector)

    stats = collector.get_histogram_stats("provider_latency_ms", {"provider": "openai"})
    assert stats["count"] == 100
    assert stats["min"] == 1.0
    assert stats["max"] == 100.0
    assert stats["p50"] == 51.0

    snapshot = collector.get_all_metrics()
    assert snapshot["histograms"]["provider_latency_ms:provider=openai"]["count"] == 100


def test_histogram_keeps_recent_window():
    collector = MetricsCollector()
    for value in range(1500):
        collector.observe_histogram("h", value=value)

    assert collector.get_histogram_stats("h")["count"] == 1000
    assert collector.get_histogram_stats("h")["min"] == 500


def test_thread_safe_increments():
    collector = MetricsCollector()

    def worker():
        for _ in range(1000):
            collector.increment_counter("c")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert collector.get_counter("c") == 4000


def test_reset_metrics():
    collector = MetricsCollector()
    collector.increment_counter("c")
    collector.set_gauge("g", value=3)
    collector.reset_metrics()

    assert collector.get_counter("c") == 0
    assert collector.get_gauge("g") is None
