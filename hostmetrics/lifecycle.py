"""Startup and coordinated shutdown of the sampler and the HTTP server."""
import enum
import logging
import signal
import threading
import time
from typing import Optional

from hostmetrics.config import Config
from hostmetrics.errors import ShutdownDrainError
from hostmetrics.registry import MetricsRegistry
from hostmetrics.sampler import HostMetrics, Sampler
from hostmetrics.self_metrics import SelfMetrics, register_process_collectors
from hostmetrics.server import ExpositionAPI, ExpositionServer
from hostmetrics.source import PsutilSource, SystemMetricsSource

logger = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class LifecycleCoordinator:
    """
    Ties the sampler and the exposition server to one shutdown event.

    The event is the cancellation token: once set it stays set, the
    sampler wakes from its wait and the server leaves its main loop.
    ``shutdown`` then joins both before the process exits. There is no
    way back to ``RUNNING`` after shutdown has started.
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[MetricsRegistry] = None,
        source: Optional[SystemMetricsSource] = None,
        app=None
    ):
        self.config = config
        self.state: Optional[LifecycleState] = None
        self.shutdown_event = threading.Event()
        self._shutdown_lock = threading.Lock()

        # Registration errors propagate; never serve a misconfigured registry
        self.registry = registry or MetricsRegistry()
        self.host_metrics = HostMetrics(self.registry)

        self.self_metrics = None
        if config.sampler.self_metrics:
            self.self_metrics = SelfMetrics(registry=self.registry.collector_registry)
        if config.sampler.process_metrics:
            register_process_collectors(self.registry.collector_registry)

        self.source = source or PsutilSource()
        self.sampler = Sampler(
            self.registry,
            self.source,
            config.sampler.scrape_interval,
            self.shutdown_event,
            self_metrics=self.self_metrics,
            host_metrics=self.host_metrics
        )

        if app is None:
            app = ExpositionAPI(self.registry, config.server.metrics_path).app
        self.server = ExpositionServer(
            app,
            host=config.server.bind_address,
            port=config.server.port,
            grace_period=config.server.shutdown_grace_period,
            shutdown_event=self.shutdown_event
        )

        logger.info("Lifecycle coordinator initialized")

    def start(self):
        """Bind the listener, then start the sampler and the server."""
        if self.state is not None:
            raise RuntimeError(f"Cannot start from state {self.state.value}")

        self.server.bind()
        self.sampler.start()
        try:
            self.server.start()
        except Exception:
            self.sampler.stop()
            self.sampler.join(self.config.server.shutdown_grace_period)
            raise

        self.state = LifecycleState.RUNNING
        logger.info(
            f"Exporter running: http://{self.config.server.bind_address}:{self.server.port}"
            f"{self.config.server.metrics_path}"
        )

    def request_shutdown(self, reason: str = "requested"):
        """Set the shutdown event. Safe to call from signal handlers and more than once."""
        if not self.shutdown_event.is_set():
            logger.info(f"Shutdown {reason}")
        self.shutdown_event.set()

    def install_signal_handlers(self):
        """Request shutdown on SIGINT and SIGTERM."""
        def signal_handler(signum, frame):
            self.request_shutdown(f"on signal {signal.Signals(signum).name}")

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def wait(self):
        """Block until shutdown is requested, then shut down."""
        # Bounded waits keep the main thread responsive to signal handlers.
        # The server also sets the event if its listener dies.
        while not self.shutdown_event.wait(0.5):
            pass
        self.shutdown()

    def shutdown(self):
        """
        Stop the sampler and drain the server.

        Both waits share one deadline of ``shutdown_grace_period`` from the
        moment shutdown starts, so a hung tick and a slow request together
        cannot stretch the exit beyond it.

        Raises ``ShutdownDrainError`` if the server fails to stop cleanly;
        the sampler has been stopped by then.
        """
        with self._shutdown_lock:
            if self.state is LifecycleState.SHUTTING_DOWN:
                return
            self.state = LifecycleState.SHUTTING_DOWN

        deadline = time.monotonic() + self.config.server.shutdown_grace_period
        self.shutdown_event.set()
        self.sampler.stop()

        drain_error = None
        try:
            self.server.stop(timeout=deadline - time.monotonic() + ExpositionServer.stop_margin)
        except ShutdownDrainError as e:
            logger.error(f"Server shutdown error: {e}")
            drain_error = e

        if not self.sampler.join(max(0.0, deadline - time.monotonic())):
            logger.warning("Sampler still finishing its tick at shutdown")

        if drain_error is not None:
            raise drain_error
        logger.info("Shutdown complete")

    def run(self):
        """Run until SIGINT/SIGTERM."""
        self.install_signal_handlers()
        self.start()
        self.wait()
