"""Self-monitoring metrics for the exporter."""
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, GCCollector, PlatformCollector, ProcessCollector
)


class SelfMetrics:
    """Self-monitoring metrics for the sampler."""

    def __init__(self, registry=None, prefix="hostmetrics_"):
        if registry is None:
            registry = CollectorRegistry()

        self.ticks_total = Counter(
            f"{prefix}ticks_total",
            "Total number of sampling ticks",
            registry=registry
        )

        self.sample_errors_total = Counter(
            f"{prefix}sample_errors_total",
            "Total number of failed metric category reads",
            ["category"],
            registry=registry
        )

        self.tick_duration_seconds = Histogram(
            f"{prefix}tick_duration_seconds",
            "Duration of each sampling tick in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry
        )

        self.last_tick_timestamp = Gauge(
            f"{prefix}last_tick_timestamp_seconds",
            "Unix time the last sampling tick finished",
            registry=registry
        )

    def record_tick(self, duration: float):
        """Record a completed tick."""
        self.ticks_total.inc()
        self.tick_duration_seconds.observe(duration)
        self.last_tick_timestamp.set_to_current_time()

    def record_sample_error(self, category: str):
        """Record a failed category read."""
        self.sample_errors_total.labels(category=category).inc()


def register_process_collectors(registry: CollectorRegistry):
    """Expose process, platform and GC metrics of the exporter itself."""
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
