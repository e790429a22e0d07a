"""
FastAPI Application Factory

This module builds the FastAPI application that exposes the ceremony
orchestrator over HTTP.

The application provides:
- REST endpoints for the registration and login ceremonies
- Health, liveness and readiness probes plus a status endpoint
- Maintenance mode and request logging middleware
- A single exception handler translating core errors into JSON replies

The application holds no global state. Everything it needs (the orchestrator,
the lifecycle whose flags the probes report, the session cookie settings) is
attached to app.state by create_app().

Usage:
    from authn_api.server import Server

    server = Server(get_config())
    server.app  # the FastAPI application built by create_app()
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authn import __version__
from authn.ceremony import CeremonyOrchestrator
from authn.config import (
    get_config,
    get_logging_config,
    get_server_config,
    get_session_config,
)
from authn.errors import AuthnError
from authn_api.responses import error_response
from authn_api.routes import (
    PROBE_PATHS,
    health_router,
    login_router,
    registration_router,
)

logger = logging.getLogger(__name__)


def configure_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure the root logger from the "logging" config section.

    Args:
        config: Full configuration. Defaults to the singleton.
    """
    logging_config = get_logging_config(config)
    logging.basicConfig(
        level=getattr(logging, str(logging_config["level"]).upper(), logging.INFO),
        format=logging_config["format"],
    )


def create_app(
    orchestrator: CeremonyOrchestrator,
    server,
    config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        orchestrator: Ceremony orchestrator the routes delegate to.
        server: Lifecycle object exposing is_healthy(), is_ready() and uptime().
        config: Full configuration. Defaults to the singleton.

    Returns:
        Configured FastAPI application.
    """
    if config is None:
        config = get_config()

    server_config = get_server_config(config)
    session_config = get_session_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Starting relying party API v{__version__}")
        logger.info(f"Accounts loaded: {app.state.orchestrator.accounts.stats()['total_accounts']}")
        if server_config.get("maintenance"):
            logger.warning("Maintenance mode is on: ceremony routes will answer 503")
        logger.info("=" * 60)

        yield

        logger.info("API shutdown complete")

    app = FastAPI(
        title="WebAuthn Relying Party API",
        description="""
Passwordless registration and login with public-key credentials.

## Ceremonies
Each ceremony is two calls. `begin` returns options for the browser's
WebAuthn API and sets a short-lived `webauthn-session` cookie; `finish`
takes the authenticator's response and consumes that cookie.
        """,
        version=__version__,
        lifespan=lifespan,
    )

    app.state.orchestrator = orchestrator
    app.state.server = server
    app.state.maintenance = bool(server_config.get("maintenance", False))
    app.state.cookie_name = session_config.get("cookie_name") or "webauthn-session"
    app.state.cookie_max_age = int(orchestrator.sessions.ttl)
    app.state.secure_cookies = bool(server_config.get("tls", {}).get("use_tls", False))

    @app.middleware("http")
    async def availability(request: Request, call_next):
        """Answer 503 on non-probe routes in maintenance or when unhealthy."""
        if request.url.path not in PROBE_PATHS:
            if request.app.state.maintenance:
                return JSONResponse(status_code=503, content={"status": "maintenance"})
            if not request.app.state.server.is_healthy():
                return JSONResponse(status_code=503, content={"status": "unavailable"})
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({latency_ms:.1f} ms)"
        )
        return response

    @app.exception_handler(AuthnError)
    async def handle_authn_error(request: Request, exc: AuthnError):
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code}: {exc}")
        return error_response(exc)

    # Configure CORS for browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(server_config.get("allow_origins") or []),
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "POST"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(registration_router)
    app.include_router(login_router)

    return app
