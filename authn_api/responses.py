"""
Response Helpers

Session cookie handling and the error body shared by the routes and the
application-wide AuthnError handler.
"""

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from authn.errors import AuthnError
from authn_api.schemas import ErrorReply


def error_response(error: AuthnError) -> JSONResponse:
    """Build the JSON error body for a core error."""
    body = ErrorReply(error=error.message, code=error.code)
    return JSONResponse(status_code=error.status_code, content=body.model_dump())


def read_session_cookie(request: Request):
    """Return the ceremony token sent by the client, or None."""
    return request.cookies.get(request.app.state.cookie_name)


def set_session_cookie(request: Request, response: Response, token: str) -> None:
    """Attach a ceremony token to a begin response."""
    state = request.app.state
    response.set_cookie(
        key=state.cookie_name,
        value=token,
        max_age=state.cookie_max_age,
        path="/",
        secure=state.secure_cookies,
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(request: Request, response: Response) -> None:
    """Expire the ceremony cookie on the client."""
    state = request.app.state
    response.delete_cookie(
        key=state.cookie_name,
        path="/",
        secure=state.secure_cookies,
        httponly=True,
        samesite="strict",
    )
