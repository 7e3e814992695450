"""Periodic sampler that writes host metrics into the registry."""
import logging
import threading
import time
from typing import Optional

from hostmetrics.errors import TransientSampleError
from hostmetrics.registry import MetricsRegistry
from hostmetrics.self_metrics import SelfMetrics
from hostmetrics.source import SystemMetricsSource

logger = logging.getLogger(__name__)


def core_label(index: int) -> str:
    """
    Label value for a CPU core.

    Cores are labelled with the decimal string of their zero-based index
    in the order the source reports them: ``0 -> "0"``, ``11 -> "11"``.
    """
    return str(int(index))


class HostMetrics:
    """Host resource series registered in a metrics registry."""

    def __init__(self, registry: MetricsRegistry):
        self.cpu_usage = registry.register(
            "system_cpu_usage_percent",
            "gauge",
            (),
            "Current CPU usage percentage (all cores)"
        )
        self.cpu_usage_per_core = registry.register(
            "system_cpu_core_usage_percent",
            "gauge",
            ("core",),
            "Current CPU usage percentage per core"
        )
        self.mem_usage = registry.register(
            "system_memory_usage_percent",
            "gauge",
            (),
            "Current memory usage percentage"
        )
        self.mem_available = registry.register(
            "system_memory_available_bytes",
            "gauge",
            (),
            "Available memory in bytes"
        )
        self.mem_total = registry.register(
            "system_memory_total_bytes",
            "gauge",
            (),
            "Total memory in bytes"
        )
        self.disk_usage = registry.register(
            "system_disk_usage_percent",
            "gauge",
            ("mount", "device"),
            "Current disk usage percentage"
        )
        self.disk_total = registry.register(
            "system_disk_total_bytes",
            "gauge",
            ("mount", "device"),
            "Total disk space in bytes"
        )


class Sampler:
    """Samples CPU, memory and disk on a fixed interval."""

    def __init__(
        self,
        registry: MetricsRegistry,
        source: SystemMetricsSource,
        interval: float,
        shutdown_event: threading.Event,
        self_metrics: Optional[SelfMetrics] = None,
        host_metrics: Optional[HostMetrics] = None
    ):
        if interval <= 0:
            raise ValueError(f"Scrape interval must be positive, got {interval}")

        self.registry = registry
        self.source = source
        self.interval = interval
        self.self_metrics = self_metrics
        self.metrics = host_metrics or HostMetrics(registry)
        self.tick_count = 0

        self._shutdown = shutdown_event
        self._thread: Optional[threading.Thread] = None

    def tick(self):
        """
        Execute one sampling tick.

        Categories are sampled in order and fail independently. If shutdown
        is requested between two categories the tick ends there.
        """
        tick_start = time.time()

        steps = (
            ("cpu", self._collect_cpu),
            ("memory", self._collect_memory),
            ("disk", self._collect_disk),
        )
        for category, step in steps:
            if self._shutdown.is_set():
                logger.debug(f"Shutdown requested, abandoning tick before {category}")
                return

            try:
                step()
            except TransientSampleError as e:
                logger.warning(f"Failed to sample {category} metrics: {e}")
                self._record_error(category)
            except Exception as e:
                logger.error(f"Unexpected error sampling {category} metrics: {e}", exc_info=True)
                self._record_error(category)

        self.tick_count += 1
        tick_duration = time.time() - tick_start
        if self.self_metrics:
            self.self_metrics.record_tick(tick_duration)

        logger.debug(f"Tick {self.tick_count} completed in {tick_duration:.3f}s")

    def _record_error(self, category: str):
        if self.self_metrics:
            self.self_metrics.record_sample_error(category)

    def _collect_cpu(self):
        sample = self.source.sample_cpu()
        self.registry.set(self.metrics.cpu_usage, [], sample.overall)
        for index, percent in enumerate(sample.per_core):
            self.registry.set(self.metrics.cpu_usage_per_core, [core_label(index)], percent)

    def _collect_memory(self):
        sample = self.source.sample_memory()
        self.registry.set(self.metrics.mem_usage, [], sample.used_percent)
        self.registry.set(self.metrics.mem_available, [], sample.available_bytes)
        self.registry.set(self.metrics.mem_total, [], sample.total_bytes)

    def _collect_disk(self):
        for partition in self.source.sample_disk():
            if not partition.ok:
                logger.warning(
                    f"Failed to get disk usage for {partition.mountpoint} "
                    f"({partition.device}): {partition.error}"
                )
                self._record_error("disk_partition")
                continue

            labels = partition.label_values()
            self.registry.set(self.metrics.disk_usage, labels, partition.used_percent)
            self.registry.set(self.metrics.disk_total, labels, partition.total_bytes)

    def run(self):
        """
        Run the sampling loop until shutdown is requested.

        The first tick runs immediately. Later ticks follow a fixed-rate
        schedule; when a tick overruns, the firings it missed collapse into
        a single pending tick that runs right away.
        """
        logger.info(f"Starting metrics collection, interval {self.interval}s")

        next_fire = time.monotonic()
        while not self._shutdown.is_set():
            now = time.monotonic()
            if now < next_fire and self._shutdown.wait(next_fire - now):
                break

            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in tick: {e}", exc_info=True)

            next_fire += self.interval
            now = time.monotonic()
            if next_fire < now:
                missed = int((now - next_fire) // self.interval)
                if missed:
                    logger.warning(
                        f"Tick overran interval {self.interval}s, skipping {missed} firing(s)"
                    )
                next_fire += missed * self.interval

        logger.info("Stopping metrics collection")

    def _run_thread(self):
        try:
            self.run()
        except Exception as e:
            logger.error(f"Sampler thread error: {e}", exc_info=True)

    def start(self):
        """Run the sampling loop on a background thread."""
        if self._thread is not None:
            raise RuntimeError("Sampler already started")
        self._thread = threading.Thread(
            target=self._run_thread,
            name="hostmetrics-sampler",
            daemon=True
        )
        self._thread.start()

    def stop(self):
        """Request the loop to stop; a tick in progress ends at its next category."""
        self._shutdown.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the sampling thread. Returns True once it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
