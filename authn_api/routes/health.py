"""
Health and Status API Routes

Kubernetes style probes plus a status summary. The probes read the flags the
Server lifecycle flips on start and shutdown; they are never blocked by
maintenance mode.
"""

from datetime import timedelta

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from authn import __version__
from authn_api.schemas import ProbeResponse, StatusReply

router = APIRouter(tags=["health"])

# Paths the availability middleware always lets through.
PROBE_PATHS = frozenset({"/healthz", "/livez", "/readyz"})


def _probe(ok: bool, up: str, down: str) -> JSONResponse:
    body = ProbeResponse(status=up if ok else down)
    return JSONResponse(status_code=200 if ok else 503, content=body.model_dump())


@router.get("/healthz", response_model=ProbeResponse)
def healthz(request: Request):
    """Liveness: 200 while the server is healthy, 503 once shutdown begins."""
    return _probe(request.app.state.server.is_healthy(), "ok", "unhealthy")


@router.get("/livez", response_model=ProbeResponse)
def livez(request: Request):
    """Alias of /healthz."""
    return _probe(request.app.state.server.is_healthy(), "ok", "unhealthy")


@router.get("/readyz", response_model=ProbeResponse)
def readyz(request: Request):
    """Readiness: 200 while the server accepts ceremonies."""
    return _probe(request.app.state.server.is_ready(), "ready", "not ready")


@router.get("/v1/status", response_model=StatusReply)
def status(request: Request):
    """Report server status, uptime, version and account counts."""
    uptime = request.app.state.server.uptime()
    if uptime is not None:
        uptime = str(timedelta(seconds=int(uptime)))

    counts = request.app.state.orchestrator.accounts.stats()
    return StatusReply(
        status="ok",
        uptime=uptime,
        version=__version__,
        accounts=counts["total_accounts"],
        credentials=counts["total_credentials"],
    )
