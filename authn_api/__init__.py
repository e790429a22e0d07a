"""
API Layer for the WebAuthn Relying Party

This package provides the FastAPI-based HTTP transport for the ceremony
orchestrator and the uvicorn-backed server lifecycle:
- REST endpoints for registration and login ceremonies
- Health, liveness, readiness and status endpoints
- Server: socket binding, health flags, graceful shutdown
"""
