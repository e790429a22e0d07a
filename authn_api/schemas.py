"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used on the HTTP boundary of the
relying party. Ceremony options and authenticator responses are WebAuthn
JSON structures and pass through as plain dictionaries; only the fields the
server itself reads or writes are modelled here.
"""

from typing import Optional
from pydantic import BaseModel, Field


# ============================================================
# Ceremony Schemas
# ============================================================

class RegistrationBeginRequest(BaseModel):
    """Body of POST /v1/register/begin."""
    name: str = Field(..., min_length=1, description="Display name for a new account")
    email: str = Field(..., min_length=1, description="Contact address identifying the account")


class LoginBeginRequest(BaseModel):
    """Body of POST /v1/login/begin."""
    email: str = Field(..., min_length=1, description="Contact address of an existing account")


class Reply(BaseModel):
    """Result of a finish call."""
    success: bool = Field(..., description="True if the ceremony completed")
    error: Optional[str] = Field(None, description="Error message if the ceremony failed")


class ErrorReply(Reply):
    """Error body produced for every AuthnError."""
    success: bool = Field(False, description="Always False")
    code: str = Field(..., description="Machine readable error code, e.g. COUNTER_REGRESSION")


# ============================================================
# Health and Status Schemas
# ============================================================

class ProbeResponse(BaseModel):
    """Body of the /healthz, /livez and /readyz probes."""
    status: str = Field(..., description="ok / unhealthy / ready / not ready")


class StatusReply(BaseModel):
    """Body of GET /v1/status."""
    status: str = Field(..., description="ok, maintenance or unavailable")
    uptime: Optional[str] = Field(None, description="Time since the server started, e.g. '1:02:03'")
    version: str = Field(..., description="Server version")
    accounts: int = Field(0, description="Number of registered accounts")
    credentials: int = Field(0, description="Number of bound credentials")
