"""System metrics sources queried by the sampler."""
from abc import ABC, abstractmethod
from typing import List
import logging

import psutil

from hostmetrics.errors import TransientSampleError
from hostmetrics.snapshot import CPUSample, DiskSample, MemorySample

logger = logging.getLogger(__name__)


class SystemMetricsSource(ABC):
    """
    Capability that reads instantaneous host statistics.

    Each call is independent and may fail; implementations raise
    ``TransientSampleError`` for a failed category. A disk partition whose
    usage cannot be read is returned as a ``DiskSample`` with ``error`` set
    so the other partitions still get recorded.
    """

    @abstractmethod
    def sample_cpu(self) -> CPUSample:
        """Overall and per-core CPU usage in percent."""

    @abstractmethod
    def sample_memory(self) -> MemorySample:
        """Virtual memory usage."""

    @abstractmethod
    def sample_disk(self) -> List[DiskSample]:
        """One entry per mounted, non-virtual partition."""


class PsutilSource(SystemMetricsSource):
    """System metrics source backed by psutil."""

    def __init__(self):
        # cpu_percent(interval=None) compares against the previous call;
        # prime it so the first tick reports usage since construction.
        try:
            psutil.cpu_percent(interval=None)
            psutil.cpu_percent(interval=None, percpu=True)
        except Exception as e:
            logger.warning(f"Could not prime CPU counters: {e}")
        logger.debug("PsutilSource initialized")

    def sample_cpu(self) -> CPUSample:
        try:
            overall = psutil.cpu_percent(interval=None)
            per_core = psutil.cpu_percent(interval=None, percpu=True)
        except Exception as e:
            raise TransientSampleError("cpu", str(e)) from e
        return CPUSample(overall=float(overall), per_core=[float(p) for p in per_core])

    def sample_memory(self) -> MemorySample:
        try:
            vm = psutil.virtual_memory()
        except Exception as e:
            raise TransientSampleError("memory", str(e)) from e
        return MemorySample(
            used_percent=float(vm.percent),
            available_bytes=float(vm.available),
            total_bytes=float(vm.total)
        )

    def sample_disk(self) -> List[DiskSample]:
        try:
            partitions = psutil.disk_partitions(all=False)
        except Exception as e:
            raise TransientSampleError("disk", str(e)) from e

        samples = []
        for partition in partitions:
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except OSError as e:
                samples.append(DiskSample(partition.mountpoint, partition.device, error=e))
                continue

            samples.append(DiskSample(
                mountpoint=partition.mountpoint,
                device=partition.device,
                used_percent=float(usage.percent),
                total_bytes=float(usage.total)
            ))
        return samples
