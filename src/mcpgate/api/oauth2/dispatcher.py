# OAuth2 route dispatcher.
# Created: 2026-10-19
#
# HTTP middleware that maps fixed paths to Endpoint objects. Anything not in
# the table falls through to the rest of the app unchanged.

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError

from mcpgate.api.oauth2.cors import apply_cors, preflight_response
from mcpgate.api.oauth2.endpoints import (
    AuthorizeEndpoint,
    AuthServerMetadataEndpoint,
    ContinuationEndpoint,
    Endpoint,
    EndpointContext,
    McpEndpoint,
    RegisterEndpoint,
    ResourceMetadataEndpoint,
    RevokeEndpoint,
    TokenEndpoint,
)
from mcpgate.api.oauth2.errors import ErrorKind, OAuthError, error_response, internal_error
from mcpgate.api.oauth2.flow import AuthContext, AuthorizationFlowController
from mcpgate.api.oauth2.server import AuthorizationServer
from mcpgate.config import Settings

logger = logging.getLogger(__name__)


def default_routes(settings: Settings) -> dict[str, Endpoint]:
    metadata = AuthServerMetadataEndpoint()
    resource = ResourceMetadataEndpoint()
    return {
        "/mcp_oauth/authorize": AuthorizeEndpoint(),
        "/mcp_oauth/token": TokenEndpoint(),
        "/mcp_oauth/register": RegisterEndpoint(),
        "/mcp_oauth/revoke": RevokeEndpoint(),
        "/mcp_oauth/metadata": metadata,
        "/.well-known/oauth-authorization-server": metadata,
        "/mcp_oauth/resource": resource,
        "/.well-known/oauth-protected-resource": resource,
        "/mcp": McpEndpoint(),
        settings.home_path: ContinuationEndpoint(),
    }


class RouteDispatcher:
    """Static path -> Endpoint table, mounted with ``app.middleware("http")``."""

    def __init__(
        self,
        server: AuthorizationServer,
        settings: Settings,
        auth_context_factory: Callable[[Request], AuthContext],
        mcp_handler: Callable,
        routes: dict[str, Endpoint] | None = None,
    ):
        self.server = server
        self.settings = settings
        self.auth_context_factory = auth_context_factory
        self.mcp_handler = mcp_handler
        self.flow = AuthorizationFlowController(server, settings)
        self.routes = routes if routes is not None else default_routes(settings)

    def register(self, path: str, endpoint: Endpoint) -> None:
        self.routes[path] = endpoint

    def match(self, path: str) -> Endpoint | None:
        return self.routes.get(path)

    async def __call__(self, request: Request, call_next) -> Response:
        endpoint = self.match(request.url.path)
        if endpoint is None:
            return await call_next(request)

        method = request.method
        if method not in endpoint.methods:
            if endpoint.passthrough:
                return await call_next(request)
            if method == "OPTIONS":
                return preflight_response(request, self.settings)
            response = error_response(
                OAuthError(ErrorKind.INVALID_REQUEST, f"Method {method} not allowed", status=405),
                headers={"Allow": ", ".join(endpoint.methods)},
            )
            return self._finish(response, request, endpoint)

        ctx = EndpointContext(
            server=self.server,
            settings=self.settings,
            auth_factory=lambda: self.auth_context_factory(request),
            flow=self.flow,
            call_next=call_next,
            mcp_handler=self.mcp_handler,
        )
        try:
            response = await endpoint.handle(request, ctx)
        except SQLAlchemyError:
            logger.exception("Storage failure on %s %s", method, request.url.path)
            response = error_response(internal_error())
        return self._finish(response, request, endpoint)

    def _finish(self, response: Response, request: Request, endpoint: Endpoint) -> Response:
        if endpoint.cors:
            apply_cors(response, request, self.settings)
        return response
