# Authorization flow controller.
# Created: 2026-10-19
#
# UNAUTHENTICATED -> LOGIN_REDIRECT -> AUTHENTICATED_PENDING -> CODE_ISSUED.
# The pending request survives the login round-trip in a signed cookie; the
# host's home path hands it back to /mcp_oauth/authorize once the user is in.

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit

from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from mcpgate.api.oauth2 import continuation, pkce
from mcpgate.api.oauth2.continuation import ContinuationState
from mcpgate.api.oauth2.errors import ErrorKind, OAuthError, error_response, invalid_request
from mcpgate.api.oauth2.server import DEFAULT_CLIENT_NAME, AuthorizationServer
from mcpgate.config import Settings

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/mcp_oauth/authorize"


@runtime_checkable
class AuthContext(Protocol):
    """Session state of the host application for the current request."""

    def is_logged_in(self) -> bool: ...

    def current_user_id(self) -> str | None: ...


def _authenticated_user(auth: AuthContext) -> str | None:
    # Anything short of a definite user id means "log in again"
    if not auth.is_logged_in():
        return None
    user_id = auth.current_user_id()
    return str(user_id) if user_id else None


def resolve_client_name(params: Mapping[str, str], request: Request) -> str:
    """client_name param, else the Referer's hostname, else a generic label."""
    name = (params.get("client_name") or "").strip()
    if name:
        return name

    referer = request.headers.get("referer", "")
    if referer:
        if "://" not in referer:
            referer = "http://" + referer
        try:
            host = urlsplit(referer).hostname
        except ValueError:
            host = None
        if host:
            return host

    return DEFAULT_CLIENT_NAME


def append_query(uri: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in uri else "?"
    return uri + separator + urlencode(params)


class AuthorizationFlowController:
    """Drives an authorization request from first hit to code redirect."""

    def __init__(self, server: AuthorizationServer, settings: Settings):
        self.server = server
        self.settings = settings

    # -- cookie helpers ----------------------------------------------------

    def _set_cookie(self, response: Response, request: Request, value: str) -> None:
        response.set_cookie(
            key=continuation.COOKIE_NAME,
            value=value,
            max_age=self.settings.continuation_cookie_ttl_seconds,
            path="/",
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
        )

    def _clear_cookie(self, response: Response, request: Request) -> None:
        response.delete_cookie(
            key=continuation.COOKIE_NAME,
            path="/",
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
        )

    # -- validation --------------------------------------------------------

    def _validate(self, params: Mapping[str, str], request: Request):
        """Return (ContinuationState, OAuthError) for the incoming parameters."""
        response_type = params.get("response_type")
        if response_type and response_type != "code":
            return None, OAuthError(
                ErrorKind.UNSUPPORTED_RESPONSE_TYPE, "Only response_type=code is supported"
            )

        client_id = params.get("client_id") or ""
        redirect_uri = params.get("redirect_uri") or ""
        if not client_id:
            return None, invalid_request("Missing required parameter: client_id")
        if not redirect_uri:
            return None, invalid_request("Missing required parameter: redirect_uri")

        _, error = self.server.validate_client_redirect(client_id, redirect_uri)
        if error:
            return None, error

        code_challenge = params.get("code_challenge") or ""
        method = params.get("code_challenge_method") or "S256"
        if method not in pkce.SUPPORTED_METHODS:
            return None, invalid_request("Unsupported code_challenge_method")
        if not pkce.is_valid_challenge(code_challenge, method):
            return None, invalid_request("Missing or malformed code_challenge")

        return (
            ContinuationState(
                client_id=client_id,
                client_name=resolve_client_name(params, request),
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                code_challenge_method=method,
                state=params.get("state") or "",
            ),
            None,
        )

    # -- transitions -------------------------------------------------------

    def authorize(
        self, request: Request, params: Mapping[str, str], auth: AuthContext
    ) -> Response:
        pending, error = self._validate(params, request)
        if error:
            return error_response(error)

        user_id = _authenticated_user(auth)
        if user_id is None:
            logger.info("Authorization for client %s needs login", pending.client_id)
            response = RedirectResponse(self.settings.login_url, status_code=302)
            self._set_cookie(
                response, request, continuation.encode(pending, self.settings.secret_key)
            )
            return response

        client = self.server.find_client(pending.client_id)
        code, error = self.server.issue_code(
            client,
            redirect_uri=pending.redirect_uri,
            code_challenge=pending.code_challenge,
            code_challenge_method=pending.code_challenge_method,
            user_id=user_id,
            client_name=pending.client_name,
        )
        if error:
            return error_response(error)

        location = {"code": code}
        if pending.state:
            location["state"] = pending.state
        response = RedirectResponse(append_query(pending.redirect_uri, location), status_code=302)
        self._clear_cookie(response, request)
        return response

    def continue_after_login(
        self, request: Request, auth: AuthContext
    ) -> tuple[Response | None, bool]:
        """Resume a pending authorization on the host home path.

        Returns ``(redirect, consumed)``. A None redirect means the host handles
        the request; *consumed* tells the caller to clear the cookie anyway.
        """
        raw = request.cookies.get(continuation.COOKIE_NAME)
        if not raw:
            return None, False

        pending = continuation.decode(raw, self.settings.secret_key)
        if pending is None:
            logger.warning("Ignoring undecodable continuation cookie")
            return None, False

        if _authenticated_user(auth) is None:
            return None, False

        _, error = self.server.validate_client_redirect(pending.client_id, pending.redirect_uri)
        if error:
            logger.warning(
                "Dropping continuation for client %s: %s", pending.client_id, error.message
            )
            return None, True

        response = RedirectResponse(
            f"{AUTHORIZE_PATH}?{urlencode(pending.to_params())}", status_code=302
        )
        self._clear_cookie(response, request)
        return response, True

    def clear_continuation(self, response: Response, request: Request) -> Response:
        self._clear_cookie(response, request)
        return response
