# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from mcpgate.api.oauth2.errors import ErrorKind, OAuthError
from mcpgate.api.oauth2.server import AuthorizationServer


class ApiError(Exception):
    """Carries an ``OAuthError`` out of a REST handler.

    Rendered as ``{"success": false, "message": ...}`` with the status of the
    error's kind.
    """

    def __init__(self, error: OAuthError):
        super().__init__(error.message)
        self.error = error

    @property
    def status_code(self) -> int:
        return self.error.status_code


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.error.message},
    )


def get_server(request: Request) -> AuthorizationServer:
    return request.app.state.oauth_server


async def require_host_user(request: Request) -> str:
    """FastAPI dependency returning the logged-in host user's id.

    Uses the app's auth context factory, so a custom host login applies here
    as well as to the authorization flow.
    """
    auth = request.app.state.auth_context_factory(request)
    user_id = auth.current_user_id() if auth.is_logged_in() else None
    if not user_id:
        raise ApiError(OAuthError(ErrorKind.ACCESS_DENIED, "Not authenticated"))
    return str(user_id)
