"""Shared fixtures for the exporter tests."""
import signal
import socket
import threading
import time

import pytest

from hostmetrics.errors import TransientSampleError
from hostmetrics.registry import MetricsRegistry
from hostmetrics.snapshot import CPUSample, DiskSample, MemorySample
from hostmetrics.source import SystemMetricsSource


class FakeSource(SystemMetricsSource):
    """Deterministic source with per-category fault injection."""

    def __init__(self, fail=(), disk=None, delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.calls = {"cpu": 0, "memory": 0, "disk": 0}
        self.disk = disk if disk is not None else [
            DiskSample("/", "/dev/sda1", 42.0, 100e9),
            DiskSample("/home", "/dev/sda2", 10.0, 500e9),
        ]

    def _enter(self, category):
        self.calls[category] += 1
        if self.delay:
            time.sleep(self.delay)
        if category in self.fail:
            raise TransientSampleError(category, "injected failure")

    def sample_cpu(self):
        self._enter("cpu")
        return CPUSample(overall=12.5, per_core=[10.0, 15.0])

    def sample_memory(self):
        self._enter("memory")
        return MemorySample(used_percent=61.0, available_bytes=4e9, total_bytes=16e9)

    def sample_disk(self):
        self._enter("disk")
        return list(self.disk)


def data_lines(rendered: bytes):
    """Non-comment lines of a rendered exposition."""
    return [
        line for line in rendered.decode("utf-8").splitlines()
        if line and not line.startswith("#")
    ]


def wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def shutdown_event():
    return threading.Event()


@pytest.fixture
def busy_port():
    """A localhost port that already has a listener on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def restore_signals():
    """Put back SIGINT/SIGTERM handlers replaced during a test."""
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)
