"""
Login API Routes

- POST /v1/login/begin: return request options for an existing account
- POST /v1/login/finish: verify the assertion and advance the signature counter
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
from authn_api.schemas import LoginBeginRequest, Reply

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/login", tags=["login"])


@router.post("/begin")
def begin_login(request: Request, body: LoginBeginRequest):
    """
    Start a login.

    Returns the PublicKeyCredentialRequestOptions to pass to
    navigator.credentials.get(). Unknown addresses get a 404.
    """
    orchestrator = request.app.state.orchestrator
    start = orchestrator.begin_login(body.email)

    response = JSONResponse(content=start.options)
    set_session_cookie(request, response, start.token)
    return response


@router.post("/finish", response_model=Reply)
def finish_login(request: Request, credential: Dict[str, Any] = Body(...)):
    """Finish a login ceremony with the authenticator's assertion."""
    orchestrator = request.app.state.orchestrator
    token = read_session_cookie(request)

    try:
        result = orchestrator.finish_login(token, credential)
    except AuthnError as e:
        response = error_response(e)
    else:
        logger.debug(f"Account {result.account_id} logged in")
        response = JSONResponse(content=Reply(success=True).model_dump())

    clear_session_cookie(request, response)
    return response
