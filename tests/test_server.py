#!/usr/bin/env python3
"""Tests for the HTTP exposition endpoint."""
import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import data_lines
from hostmetrics.errors import ListenerStartError, ShutdownDrainError
from hostmetrics.server import ExpositionAPI, ExpositionServer


@pytest.fixture
def client(registry):
    return TestClient(ExpositionAPI(registry, "/metrics").app)


def test_metrics_route(registry, client):
    x = registry.register("x", "gauge", [])
    registry.set(x, [], 1.0)

    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert data_lines(response.content) == ["x 1.0"]


def test_metrics_route_empty_registry(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.content == b""


def test_metrics_reflect_latest_values(registry, client):
    x = registry.register("x", "gauge", [])
    registry.set(x, [], 1.0)
    client.get("/metrics")
    registry.set(x, [], 2.0)
    assert data_lines(client.get("/metrics").content) == ["x 2.0"]


def test_landing_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert '<a href="/metrics">' in response.text


def test_custom_metrics_path(registry):
    client = TestClient(ExpositionAPI(registry, "/probe").app)
    assert client.get("/probe").status_code == 200
    assert '<a href="/probe">' in client.get("/").text
    assert client.get("/metrics").status_code == 404


@pytest.mark.parametrize("path", ["/nope", "/docs", "/openapi.json"])
def test_unknown_paths(client, path):
    assert client.get(path).status_code == 404


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_bind_conflict(registry, busy_port):
    app = ExpositionAPI(registry).app
    server = ExpositionServer(app, host="127.0.0.1", port=busy_port, grace_period=0.2)
    with pytest.raises(ListenerStartError):
        server.start()
    assert not server.running


def test_serve_and_stop(registry):
    x = registry.register("x", "gauge", [])
    registry.set(x, [], 3.0)
    server = ExpositionServer(
        ExpositionAPI(registry).app, host="127.0.0.1", port=0, grace_period=0.5
    )
    server.start()
    try:
        assert server.port != 0
        response = httpx.get(f"http://127.0.0.1:{server.port}/metrics")
        assert response.status_code == 200
        assert "x 3.0" in data_lines(response.content)
    finally:
        server.stop()

    assert not server.running
    with pytest.raises(httpx.TransportError):
        httpx.get(f"http://127.0.0.1:{server.port}/metrics", timeout=1.0)


def test_shutdown_event_stops_server(registry, shutdown_event):
    server = ExpositionServer(
        ExpositionAPI(registry).app,
        host="127.0.0.1",
        port=0,
        grace_period=0.5,
        shutdown_event=shutdown_event
    )
    server.start()
    shutdown_event.set()

    deadline = time.monotonic() + 2.0
    while server.running and time.monotonic() < deadline:
        time.sleep(0.01)
    assert not server.running
    server.stop()


def test_stop_is_idempotent(registry):
    server = ExpositionServer(
        ExpositionAPI(registry).app, host="127.0.0.1", port=0, grace_period=0.2
    )
    server.start()
    server.stop()
    server.stop()


def test_stop_before_start_releases_socket(registry):
    server = ExpositionServer(ExpositionAPI(registry).app, host="127.0.0.1", port=0)
    server.bind()
    server.stop()
    assert not server.running


def test_in_flight_request_bounded_by_grace_period(registry):
    api = ExpositionAPI(registry)
    release = threading.Event()

    @api.app.get("/slow")
    async def slow():
        import asyncio
        await asyncio.sleep(10)
        return {"done": True}

    grace_period = 0.3
    server = ExpositionServer(api.app, host="127.0.0.1", port=0, grace_period=grace_period)
    server.start()

    def request():
        try:
            httpx.get(f"http://127.0.0.1:{server.port}/slow", timeout=15.0)
        except httpx.HTTPError:
            pass
        release.set()

    thread = threading.Thread(target=request, daemon=True)
    thread.start()
    time.sleep(0.2)

    started = time.monotonic()
    server.stop()
    assert time.monotonic() - started < grace_period + ExpositionServer.stop_margin
    assert release.wait(2.0)


def test_startup_failure_closes_socket(registry):
    server = ExpositionServer("hostmetrics.nonexistent:app", host="127.0.0.1", port=0)
    server.bind()
    sock = server._socket
    with pytest.raises(ListenerStartError):
        server.start()

    assert sock.fileno() == -1
    assert not server.running


def test_unexpected_exit_sets_shutdown_event(registry, shutdown_event):
    server = ExpositionServer(
        ExpositionAPI(registry).app,
        host="127.0.0.1",
        port=0,
        grace_period=0.2,
        shutdown_event=shutdown_event
    )
    server.start()
    server._server.should_exit = True

    assert shutdown_event.wait(2.0)
    with pytest.raises(ShutdownDrainError):
        server.stop()
