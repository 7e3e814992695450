"""HTTP exposition endpoint using FastAPI and uvicorn."""
import asyncio
import logging
import socket
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response

from hostmetrics.errors import ListenerStartError, ShutdownDrainError
from hostmetrics.registry import CONTENT_TYPE, MetricsRegistry

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>System Metrics Exporter</title></head>
<body>
<h1>System Metrics Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


class ExpositionAPI:
    """FastAPI application serving the registry to scrapers."""

    def __init__(self, registry: MetricsRegistry, metrics_path: str = "/metrics"):
        self.registry = registry
        self.metrics_path = metrics_path
        self.app = FastAPI(
            title="System Metrics Exporter",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""
        landing_page = LANDING_PAGE.format(metrics_path=self.metrics_path)

        @self.app.get(self.metrics_path)
        async def metrics():
            """Render the current registry state."""
            return Response(content=self.registry.render(), media_type=CONTENT_TYPE)

        @self.app.get("/", response_class=HTMLResponse)
        async def index():
            """Landing page linking to the metrics path."""
            return HTMLResponse(content=landing_page)

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}


class _UvicornServer(uvicorn.Server):
    """uvicorn server that also exits when the shared shutdown event is set."""

    def __init__(self, config: uvicorn.Config, shutdown_event: threading.Event):
        super().__init__(config)
        self._shutdown_event = shutdown_event

    async def on_tick(self, counter: int) -> bool:
        if self._shutdown_event.is_set():
            return True
        return await super().on_tick(counter)


class ExpositionServer:
    """
    Runs the exposition app on a background thread.

    The listening socket is bound up front so a port conflict surfaces as
    ``ListenerStartError`` before anything else starts. On ``stop`` uvicorn
    stops accepting connections and drains in-flight requests for at most
    ``grace_period`` seconds, then cancels whatever is left.
    """

    # Slack for uvicorn's main loop tick and event loop teardown
    stop_margin = 1.0

    def __init__(
        self,
        app,
        host: str = "0.0.0.0",
        port: int = 8080,
        grace_period: float = 5.0,
        shutdown_event: Optional[threading.Event] = None
    ):
        self.app = app
        self.host = host
        self.port = port
        self.grace_period = grace_period
        self.shutdown_event = shutdown_event or threading.Event()

        self._socket: Optional[socket.socket] = None
        self._server: Optional[_UvicornServer] = None
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self._stopped = False

    def bind(self):
        """Create and bind the listening socket."""
        if self._socket is not None:
            return

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind metrics server to {self.host}:{self.port}: {e}")
            raise ListenerStartError(f"Failed to bind {self.host}:{self.port}: {e}") from e

        self._socket = sock
        self.port = sock.getsockname()[1]

    def _serve(self):
        try:
            asyncio.run(self._server.serve(sockets=[self._socket]))
        except (Exception, SystemExit) as e:
            # uvicorn calls sys.exit(1) when startup fails
            self._error = e
            logger.error(f"Metrics server error: {e!r}")
        finally:
            if not self._stopped and not self.shutdown_event.is_set():
                # Losing the listener is fatal; wake the coordinator
                if self._error is None:
                    self._error = RuntimeError("Metrics server exited unexpectedly")
                    logger.error("Metrics server exited unexpectedly")
                self.shutdown_event.set()

    def _close_socket(self):
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def start(self, timeout: float = 10.0):
        """Start serving and wait until uvicorn reports it is accepting connections."""
        if self._thread is not None:
            raise RuntimeError("Metrics server already started")
        self.bind()

        config = uvicorn.Config(
            self.app,
            log_level="info",
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=self.grace_period
        )
        self._server = _UvicornServer(config, self.shutdown_event)
        self._thread = threading.Thread(
            target=self._serve,
            name="hostmetrics-http",
            daemon=True
        )
        self._thread.start()

        deadline = time.monotonic() + timeout
        while not self._server.started:
            if not self._thread.is_alive():
                self._close_socket()
                raise ListenerStartError(f"Metrics server exited during startup: {self._error!r}")
            if time.monotonic() > deadline:
                self._server.should_exit = True
                self._thread.join(self.stop_margin)
                self._close_socket()
                raise ListenerStartError(f"Metrics server did not start within {timeout}s")
            time.sleep(0.01)

        logger.info(f"Metrics server listening on {self.host}:{self.port}")

    def stop(self, timeout: Optional[float] = None):
        """
        Stop accepting connections and drain in-flight requests.

        Waits at most ``timeout`` seconds for the server thread, by default
        ``grace_period + stop_margin``.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._thread is None:
            self._close_socket()
            return

        if timeout is None:
            timeout = self.grace_period + self.stop_margin
        logger.info(f"Shutting down metrics server (grace period {self.grace_period}s)")
        self._server.should_exit = True
        self._thread.join(timeout)

        if self._thread.is_alive():
            self._server.force_exit = True
            raise ShutdownDrainError(f"Metrics server did not stop within {timeout:.2f}s")
        if self._error is not None:
            raise ShutdownDrainError(f"Metrics server failed: {self._error!r}") from self._error

        logger.info("Metrics server gracefully stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
