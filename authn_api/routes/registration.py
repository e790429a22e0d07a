"""
Registration API Routes

This module provides the two round trips of the registration ceremony:
- POST /v1/register/begin: create or resolve the account, return creation options
- POST /v1/register/finish: verify the attestation and bind the credential

The ceremony token travels in the session cookie set by begin. Finish always
clears that cookie, whether or not the ceremony succeeded.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from authn.errors import AuthnError
from authn_api.responses import (
    clear_session_cookie,
    error_response,
    read_session_cookie,
    set_session_cookie,
)
from authn_api.schemas import RegistrationBeginRequest, Reply

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/v1/register", tags=["registration"])


@router.post("/begin")
def begin_registration(request: Request, body: RegistrationBeginRequest):
    """
    Start registering a credential.

    Returns the PublicKeyCredentialCreationOptions to pass to
    navigator.credentials.create(). An address that already has an account
    registers an additional credential on it.
    """
    orchestrator = request.app.state.orchestrator
    start = orchestrator.begin_registration(body.name, body.email)

    response = JSONResponse(content=start.options)
    set_session_cookie(request, response, start.token)
    return response


@router.post("/finish", response_model=Reply)
def finish_registration(request: Request, credential: Dict[str, Any] = Body(...)):
    """
    Finish a registration ceremony.

    The body is the PublicKeyCredential returned by the authenticator,
    serialized to JSON.
    """
    orchestrator = request.app.state.orchestrator
    token = read_session_cookie(request)

    try:
        orchestrator.finish_registration(token, credential)
    except AuthnError as e:
        response = error_response(e)
    else:
        response = JSONResponse(content=Reply(success=True).model_dump())

    clear_session_cookie(request, response)
    return response
