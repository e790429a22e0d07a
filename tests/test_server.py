"""
Tests for the Server lifecycle.

This test suite verifies, against a live uvicorn server on an ephemeral port:
- Start: immediate bind, URL derivation, health flags
- Graceful shutdown: flags flip first, in-flight requests complete
- Shutdown timeout and error aggregation
- Signal handling: shutdown runs exactly once

Run with: pytest tests/test_server.py -v
"""

import asyncio
import os
import signal
import sys
import threading
import time
from unittest.mock import patch

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from authn.accounts import AccountStore
from authn.ceremony import CeremonyOrchestrator
from authn.challenges import ChallengeSession
from authn.config import DEFAULT_CONFIG, merge_config
from authn_api.server import Server, ShutdownError

from fake_engine import FakeEngine


def make_server(overrides=None):
    config = merge_config(DEFAULT_CONFIG, overrides or {})
    orchestrator = CeremonyOrchestrator(AccountStore(), FakeEngine(), ChallengeSession())
    return Server(config, orchestrator=orchestrator)


def add_slow_route(server):
    """Register /slow, which blocks until released."""
    entered = threading.Event()
    release = threading.Event()

    @server.app.get("/slow")
    async def slow():
        entered.set()
        while not release.is_set():
            await asyncio.sleep(0.01)
        return {"done": True}

    return entered, release


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def server():
    server = make_server()
    yield server
    try:
        server.shutdown(timeout=1.0)
    except ShutdownError:
        pass


class TestStart:
    """Tests for start()."""

    def test_not_started(self, server):
        assert server.url is None
        assert server.uptime() is None
        assert not server.is_healthy()
        assert not server.is_ready()

    def test_start_on_ephemeral_port(self, server):
        url = server.start("127.0.0.1:0")

        assert url.startswith("http://127.0.0.1:")
        assert not url.endswith(":0")
        assert server.url == url
        assert server.is_healthy() and server.is_ready()
        assert server.uptime() >= 0

        response = httpx.get(f"{url}/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_unspecified_host_maps_to_loopback(self, server):
        url = server.start("0.0.0.0:0")

        assert url.startswith("http://127.0.0.1:")
        assert httpx.get(f"{url}/readyz").status_code == 200

    def test_https_url_with_tls(self, server):
        # The files do not exist, so serving fails after the URL is derived.
        with pytest.raises(RuntimeError):
            server.start(
                "127.0.0.1:0",
                tls={"use_tls": True, "cert_file": "/nonexistent.crt", "key_file": "/nonexistent.key"},
            )

        assert server.url.startswith("https://127.0.0.1:")
        assert not server.is_healthy()

        with pytest.raises(ShutdownError) as exc_info:
            server.shutdown(timeout=1.0)
        assert exc_info.value.errors

    def test_start_twice(self, server):
        server.start("127.0.0.1:0")

        with pytest.raises(RuntimeError):
            server.start("127.0.0.1:0")

    def test_address_in_use(self, server):
        url = server.start("127.0.0.1:0")
        port = url.rsplit(":", 1)[1]

        other = make_server()
        with pytest.raises(OSError):
            other.start(f"127.0.0.1:{port}")
        assert not other.is_healthy()

    def test_status_reports_uptime(self, server):
        url = server.start("127.0.0.1:0")

        body = httpx.get(f"{url}/v1/status").json()
        assert body["status"] == "ok"
        assert body["uptime"].startswith("0:00:")


class TestShutdown:
    """Tests for shutdown()."""

    def test_shutdown_stops_serving(self, server):
        url = server.start("127.0.0.1:0")

        server.shutdown(timeout=5.0)

        assert not server.is_healthy()
        assert not server.is_ready()
        with pytest.raises(httpx.TransportError):
            httpx.get(f"{url}/healthz", timeout=1.0)

    def test_shutdown_is_idempotent(self, server):
        server.start("127.0.0.1:0")

        server.shutdown(timeout=5.0)
        assert server.shutdown(timeout=5.0) is None

    def test_shutdown_before_start(self, server):
        server.shutdown()
        assert not server.is_healthy()

    def test_in_flight_request_completes(self, server):
        entered, release = add_slow_route(server)
        url = server.start("127.0.0.1:0")
        result = {}

        def request():
            result["response"] = httpx.get(f"{url}/slow", timeout=10.0)

        requester = threading.Thread(target=request)
        requester.start()
        assert entered.wait(5.0)

        stopper = threading.Thread(target=server.shutdown, kwargs={"timeout": 10.0})
        stopper.start()

        assert wait_for(lambda: not server.is_healthy())
        assert not server.is_ready()
        assert stopper.is_alive()

        release.set()
        requester.join(10.0)
        stopper.join(10.0)

        assert result["response"].status_code == 200
        assert result["response"].json() == {"done": True}
        assert not stopper.is_alive()

    def test_shutdown_timeout(self, server):
        entered, release = add_slow_route(server)
        url = server.start("127.0.0.1:0")

        def request():
            try:
                httpx.get(f"{url}/slow", timeout=10.0)
            except httpx.HTTPError:
                pass

        requester = threading.Thread(target=request, daemon=True)
        requester.start()
        assert entered.wait(5.0)

        try:
            with pytest.raises(ShutdownError) as exc_info:
                server.shutdown(timeout=0.2)
        finally:
            release.set()

        assert any(isinstance(e, TimeoutError) for e in exc_info.value.errors)


class TestShutdownError:
    """Tests for error aggregation."""

    def test_single_error(self):
        error = ShutdownError([TimeoutError("slow")])
        assert "slow" in str(error)
        assert len(error.errors) == 1

    def test_many_errors(self):
        error = ShutdownError([TimeoutError("a"), RuntimeError("b")])
        assert str(error) == "2 errors occurred during shutdown"
        assert len(error.errors) == 2


class TestSignals:
    """Tests for signal driven shutdown."""

    def test_signal_triggers_shutdown_once(self, server):
        with patch.object(server, "shutdown") as mock_shutdown:
            server._handle_signal(signal.SIGTERM, None)
            server._handle_signal(signal.SIGINT, None)

            assert wait_for(lambda: mock_shutdown.called)
            time.sleep(0.1)
            assert mock_shutdown.call_count == 1

    def test_serve_until_sigterm(self, server):
        previous = signal.getsignal(signal.SIGTERM)

        def send_signal():
            if wait_for(lambda: server.url is not None and server.is_ready()):
                os.kill(os.getpid(), signal.SIGTERM)

        killer = threading.Thread(target=send_signal, daemon=True)
        killer.start()

        server.serve("127.0.0.1:0")

        assert not server.is_healthy()
        assert signal.getsignal(signal.SIGTERM) is previous


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
