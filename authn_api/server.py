"""
Server Lifecycle Module

This module owns the process side of the relying party: it wires the core
components together from configuration, binds the listening socket, runs the
FastAPI application under uvicorn in a background thread, exposes the
health/readiness flags the probes report, and performs an ordered graceful
shutdown.

Shutdown order:
1. healthy and ready flip to False, so probes and new ceremonies see 503
2. uvicorn stops accepting and closes idle keep-alive connections
3. in-flight requests get up to shutdown_timeout seconds to finish
4. anything still running is forced to exit

Usage:
    from authn_api.server import Server

    server = Server(get_config())
    server.serve()  # blocks until SIGINT/SIGTERM
"""

import logging
import signal
import socket
import threading
import time
from typing import Any, Dict, List, Optional

import uvicorn

from authn.accounts import AccountStore
from authn.ceremony import CeremonyOrchestrator
from authn.challenges import ChallengeSession
from authn.config import (
    get_config,
    get_server_config,
    get_session_config,
    get_webauthn_config,
    parse_bind_addr,
)
from authn.webauthn import create_engine
from authn_api.app import create_app

logger = logging.getLogger(__name__)

# How long start() waits for uvicorn to report it is serving.
STARTUP_TIMEOUT = 5.0

# Extra time given to a forced exit after the graceful timeout elapsed.
FORCE_EXIT_GRACE = 2.0

UNSPECIFIED_HOSTS = frozenset({"", "0.0.0.0", "::"})


class ShutdownError(Exception):
    """
    Raised by shutdown() when stopping the server did not go cleanly.

    Attributes:
        errors: Every error collected while serving and shutting down.
    """

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        if len(self.errors) == 1:
            message = f"error during shutdown: {self.errors[0]!r}"
        else:
            message = f"{len(self.errors)} errors occurred during shutdown"
        super().__init__(message)


class Server:
    """
    HTTP server lifecycle for the relying party.

    Attributes:
        config: Full configuration the server was built from.
        orchestrator: Ceremony orchestrator served by the application.
        app: FastAPI application.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        orchestrator: Optional[CeremonyOrchestrator] = None,
    ):
        """
        Build the core components and the application.

        Args:
            config: Full configuration. Defaults to the singleton.
            orchestrator: Pre-built orchestrator. When omitted, a fresh account
                          store, challenge session and fido2 engine are
                          created from config.

        Raises:
            ValueError: If the session secret key is not a valid key.
        """
        if config is None:
            config = get_config()
        self.config = config

        if orchestrator is None:
            session_config = get_session_config(config)
            orchestrator = CeremonyOrchestrator(
                accounts=AccountStore(),
                engine=create_engine(get_webauthn_config(config)),
                sessions=ChallengeSession(
                    key=session_config.get("secret_key"),
                    ttl=session_config.get("challenge_ttl"),
                ),
            )
        self.orchestrator = orchestrator

        self._lock = threading.RLock()
        self._healthy = False
        self._ready = False
        self._started: Optional[float] = None
        self._url: Optional[str] = None

        self._sock: Optional[socket.socket] = None
        self._uvicorn: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._errors: List[BaseException] = []

        self._stopping = False
        self._stopped = threading.Event()
        self._signal_received = threading.Event()
        self._shutdown_error: Optional[ShutdownError] = None

        self.app = create_app(self.orchestrator, self, config)

    # ============================================================
    # Status flags
    # ============================================================

    def set_status(self, healthy: bool, ready: bool) -> None:
        """Set the health and readiness flags reported by the probes."""
        with self._lock:
            self._healthy = healthy
            self._ready = ready
        logger.debug(f"Server status changed: healthy={healthy}, ready={ready}")

    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    def is_ready(self) -> bool:
        with self._lock:
            return self._ready

    @property
    def url(self) -> Optional[str]:
        """Base URL clients can reach the server on, once started."""
        with self._lock:
            return self._url

    def uptime(self) -> Optional[float]:
        """Seconds since start(), or None if the server never started."""
        with self._lock:
            if self._started is None:
                return None
            return time.monotonic() - self._started

    # ============================================================
    # Start
    # ============================================================

    def start(
        self,
        bind_addr: Optional[str] = None,
        tls: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Bind the listening socket and start serving in a background thread.

        Args:
            bind_addr: "host:port" to listen on; port 0 picks a free port.
                       Defaults to server.bind_addr.
            tls: Dictionary with use_tls, cert_file and key_file. Defaults to
                 server.tls.

        Returns:
            The server URL, e.g. "http://127.0.0.1:8000".

        Raises:
            RuntimeError: If the server was already started or uvicorn exited
                          during startup.
            OSError: If the address cannot be bound.
        """
        server_config = get_server_config(self.config)
        bind_addr = bind_addr or server_config["bind_addr"]
        tls = tls if tls is not None else server_config.get("tls", {})
        use_tls = bool(tls.get("use_tls", False))

        with self._lock:
            if self._thread is not None:
                raise RuntimeError("server already started")

            host, port = parse_bind_addr(bind_addr)
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((host, port))
                sock.listen(2048)
            except OSError:
                sock.close()
                raise
            self._sock = sock

            uvicorn_kwargs: Dict[str, Any] = {"log_config": None}
            if use_tls:
                uvicorn_kwargs["ssl_certfile"] = tls["cert_file"]
                uvicorn_kwargs["ssl_keyfile"] = tls["key_file"]

            self._uvicorn = uvicorn.Server(uvicorn.Config(self.app, **uvicorn_kwargs))
            self._thread = threading.Thread(
                target=self._run, name="authn-server", daemon=True
            )

            self.set_status(True, True)
            self._started = time.monotonic()

            if host in UNSPECIFIED_HOSTS:
                host = "127.0.0.1"
            elif ":" in host:
                host = f"[{host}]"
            scheme = "https" if use_tls else "http"
            self._url = f"{scheme}://{host}:{sock.getsockname()[1]}"

            self._thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not self._uvicorn.started and time.monotonic() < deadline:
            if not self._thread.is_alive():
                self.set_status(False, False)
                raise RuntimeError(f"server exited during startup: {self._errors!r}")
            time.sleep(0.01)

        if not self._uvicorn.started:
            logger.warning(f"Server did not report startup within {STARTUP_TIMEOUT}s")

        logger.info(f"Server listening on {self._url}")
        return self._url

    def _run(self) -> None:
        try:
            self._uvicorn.run(sockets=[self._sock])
        except (Exception, SystemExit) as e:
            logger.error(f"Server thread failed: {e!r}")
            with self._lock:
                self._errors.append(e)

    # ============================================================
    # Shutdown
    # ============================================================

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Gracefully stop the server.

        Calling shutdown more than once is a no-op after the first call.

        Args:
            timeout: Seconds to wait for in-flight requests. Defaults to
                     server.shutdown_timeout.

        Raises:
            ShutdownError: If the serve thread failed or requests were still
                           running when the timeout elapsed.
        """
        with self._lock:
            if self._stopping:
                return
            self._stopping = True

        if timeout is None:
            timeout = float(get_server_config(self.config).get("shutdown_timeout", 35.0))

        logger.info("Shutting down server...")
        self.set_status(False, False)

        try:
            if self._thread is not None:
                self._uvicorn.should_exit = True
                self._thread.join(timeout)

                if self._thread.is_alive():
                    logger.warning(f"In-flight requests still running after {timeout}s, forcing exit")
                    with self._lock:
                        self._errors.append(
                            TimeoutError(f"graceful shutdown timed out after {timeout}s")
                        )
                    self._uvicorn.force_exit = True
                    self._thread.join(FORCE_EXIT_GRACE)

            if self._sock is not None:
                self._sock.close()

            with self._lock:
                errors = list(self._errors)

            if errors:
                self._shutdown_error = ShutdownError(errors)
                logger.error(str(self._shutdown_error))
                raise self._shutdown_error

            logger.info("Server stopped")
        finally:
            self._stopped.set()

    # ============================================================
    # Blocking entry point
    # ============================================================

    def serve(
        self,
        bind_addr: Optional[str] = None,
        tls: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Start the server and block until it is shut down.

        SIGINT and SIGTERM trigger shutdown once; later signals are ignored.
        Must be called from the main thread.

        Raises:
            ShutdownError: If shutdown did not complete cleanly.
        """
        previous = {
            signum: signal.signal(signum, self._handle_signal)
            for signum in (signal.SIGINT, signal.SIGTERM)
        }

        try:
            self.start(bind_addr, tls)
            while not self._stopped.wait(0.5):
                if not self._thread.is_alive():
                    logger.warning("Server thread exited unexpectedly")
                    self.shutdown()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        if self._shutdown_error is not None:
            raise self._shutdown_error

    def _handle_signal(self, signum, frame) -> None:
        if self._signal_received.is_set():
            logger.info(f"Ignoring signal {signum}, shutdown already in progress")
            return
        self._signal_received.set()

        logger.info(f"Received signal {signum}, shutting down")
        threading.Thread(
            target=self._shutdown_quietly, name="authn-shutdown", daemon=True
        ).start()

    def _shutdown_quietly(self) -> None:
        # The error is kept on self._shutdown_error and re-raised by serve().
        try:
            self.shutdown()
        except ShutdownError:
            pass
