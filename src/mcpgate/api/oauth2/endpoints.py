# OAuth2 HTTP endpoints.
# Created: 2026-10-19
#
# Each endpoint declares the methods it answers and turns a request into a
# response; the dispatcher owns routing, preflight and method checks.

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from mcpgate.api.oauth2.errors import ErrorKind, OAuthError, error_response, invalid_request
from mcpgate.api.oauth2.flow import AuthContext, AuthorizationFlowController
from mcpgate.api.oauth2.metadata import (
    authorization_server_metadata,
    get_base_url,
    protected_resource_metadata,
)
from mcpgate.api.oauth2.server import AuthorizationServer
from mcpgate.api.v1.schemas.oauth2 import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    RevokeRequest,
    TokenRequest,
    TokenResponse,
)
from mcpgate.config import Settings

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
METADATA_CACHE = {"Cache-Control": "public, max-age=300", "Vary": "Origin"}

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass
class EndpointContext:
    """Per-request collaborators handed to every endpoint."""

    server: AuthorizationServer
    settings: Settings
    auth_factory: Callable[[], AuthContext]
    flow: AuthorizationFlowController
    call_next: Callable[[Request], Awaitable[Response]]
    mcp_handler: Callable[..., Awaitable[Response]]

    @cached_property
    def auth(self) -> AuthContext:
        """Host auth state, read on first use only."""
        return self.auth_factory()


def client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


async def read_params(request: Request) -> dict[str, Any]:
    """Parse a JSON or form body into a dict. Raises ValueError when malformed."""
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/json":
        body = await request.body()
        if not body:
            return {}
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data
    if content_type in _FORM_TYPES:
        form = await request.form()
        return {key: str(value) for key, value in form.items()}
    return {}


class Endpoint:
    """Base class: a handler for one path."""

    methods: tuple[str, ...] = ("GET",)
    # Hand disallowed methods and preflights to the host instead of answering
    passthrough = False
    cors = True

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        raise NotImplementedError


class AuthorizeEndpoint(Endpoint):
    methods = ("GET", "POST")
    cors = False

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        params: dict[str, Any] = dict(request.query_params)
        if request.method == "POST":
            try:
                body = await read_params(request)
            except ValueError:
                return error_response(invalid_request("Malformed request body"))
            params.update({k: str(v) for k, v in body.items() if v is not None})
        return ctx.flow.authorize(request, params, ctx.auth)


class TokenEndpoint(Endpoint):
    methods = ("POST",)

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        try:
            body = TokenRequest.model_validate(await read_params(request))
        except (ValueError, ValidationError):
            return error_response(invalid_request("Malformed request body"), headers=NO_STORE)

        result, error = ctx.server.exchange(
            grant_type=body.grant_type,
            code=body.code,
            code_verifier=body.code_verifier,
            client_id=body.client_id,
            redirect_uri=body.redirect_uri,
            client_ip=client_ip(request),
        )
        if error:
            return error_response(error, headers=NO_STORE)
        token = TokenResponse.model_validate(result)
        return JSONResponse(token.model_dump(exclude_none=True), headers=NO_STORE)


class RegisterEndpoint(Endpoint):
    methods = ("POST",)

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        try:
            data = await read_params(request)
        except ValueError:
            return error_response(invalid_request("Invalid JSON in request body"))
        try:
            body = ClientRegistrationRequest.model_validate(data)
        except ValidationError:
            return error_response(
                OAuthError(ErrorKind.INVALID_CLIENT_METADATA, "Malformed client metadata")
            )

        if body.response_types and body.response_types != ["code"]:
            return error_response(
                OAuthError(ErrorKind.INVALID_CLIENT_METADATA, "Only response_type code is supported")
            )

        client, error = ctx.server.register_client(
            client_name=body.client_name,
            redirect_uris=body.redirect_uris,
            grant_types=body.grant_types,
            scope=body.scope,
        )
        if error:
            return error_response(error)

        payload = ClientRegistrationResponse(
            client_id=client.client_id,
            client_name=client.client_name,
            redirect_uris=client.redirect_uris,
            grant_types=client.grant_types,
            scope=client.scope,
            client_id_issued_at=int(client.created_at.timestamp()),
        )
        return JSONResponse(payload.model_dump(), status_code=201, headers=NO_STORE)


class RevokeEndpoint(Endpoint):
    """RFC 7009: always 200, whether or not the token existed."""

    methods = ("POST",)

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        try:
            body = RevokeRequest.model_validate(await read_params(request))
        except (ValueError, ValidationError):
            return error_response(invalid_request("Malformed request body"))
        if not body.token:
            return error_response(invalid_request("Missing required parameter: token"))

        if ctx.server.revoke_token_value(body.token):
            logger.info("Token revoked via revocation endpoint")
        return JSONResponse({}, headers=NO_STORE)


class AuthServerMetadataEndpoint(Endpoint):
    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        base_url = get_base_url(request, ctx.settings)
        return JSONResponse(
            authorization_server_metadata(base_url, ctx.settings), headers=METADATA_CACHE
        )


class ResourceMetadataEndpoint(Endpoint):
    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        base_url = get_base_url(request, ctx.settings)
        return JSONResponse(protected_resource_metadata(base_url), headers=METADATA_CACHE)


def bearer_token(request: Request) -> str:
    """Token from ``Authorization: Bearer`` or, failing that, ``?token=``."""
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.query_params.get("token", "")


class McpEndpoint(Endpoint):
    methods = ("GET", "POST")

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        base_url = get_base_url(request, ctx.settings)
        challenge = {
            "WWW-Authenticate": (
                f'Bearer resource_metadata="{base_url}/.well-known/oauth-protected-resource"'
            )
        }

        token = bearer_token(request)
        if not token:
            return error_response(
                OAuthError(ErrorKind.INVALID_TOKEN, "Missing bearer token"), headers=challenge
            )

        record = ctx.server.verify_access_token(token, client_ip(request))
        if record is None:
            return error_response(
                OAuthError(ErrorKind.INVALID_TOKEN, "Invalid or expired access token"),
                headers=challenge,
            )
        return await ctx.mcp_handler(request, record)


class ContinuationEndpoint(Endpoint):
    """Host home path: resume a pending authorization after login."""

    methods = ("GET",)
    passthrough = True
    cors = False

    async def handle(self, request: Request, ctx: EndpointContext) -> Response:
        try:
            redirect, consumed = ctx.flow.continue_after_login(request, ctx.auth)
        except SQLAlchemyError:
            logger.exception("Could not resume pending authorization")
            redirect, consumed = None, False
        if redirect is not None:
            return redirect

        response = await ctx.call_next(request)
        if consumed:
            ctx.flow.clear_continuation(response, request)
        return response
