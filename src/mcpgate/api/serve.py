"""Application factory and server runner for ``mcpgate serve``.

``create_app()`` wires the OAuth2 dispatcher middleware, the built-in host
pages and the ``/api/v1/`` token management routers around one
``AuthorizationServer``. Every collaborator can be swapped by the caller:
the settings, the server, the auth context (host session) and the MCP
handler.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import FastAPI, Request

from mcpgate import __version__
from mcpgate.api.deps import ApiError, api_error_handler
from mcpgate.api.oauth2.dispatcher import RouteDispatcher
from mcpgate.api.oauth2.flow import AuthContext
from mcpgate.api.oauth2.server import AuthorizationServer, get_oauth_server
from mcpgate.config import Settings, get_settings
from mcpgate.mcp import McpHandler, default_mcp_handler

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    server: AuthorizationServer | None = None,
    auth_context_factory: Callable[[Request], AuthContext] | None = None,
    mcp_handler: McpHandler | None = None,
    include_host: bool = True,
) -> FastAPI:
    """Build the FastAPI application."""
    from mcpgate.api.v1 import mount_v1_routers
    from mcpgate.host.session import SessionAuthContext

    settings = settings or get_settings()
    server = server or get_oauth_server()
    if auth_context_factory is None:

        def auth_context_factory(request: Request) -> AuthContext:
            return SessionAuthContext(request, settings)

    app = FastAPI(
        title="mcpgate",
        description="OAuth 2.0 authorization server for MCP clients.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )
    app.state.settings = settings
    app.state.oauth_server = server
    app.state.auth_context_factory = auth_context_factory

    app.add_exception_handler(ApiError, api_error_handler)

    # --- OAuth2 dispatcher ----------------------------------------------
    dispatcher = RouteDispatcher(
        server=server,
        settings=settings,
        auth_context_factory=auth_context_factory,
        mcp_handler=mcp_handler or default_mcp_handler,
    )
    app.state.dispatcher = dispatcher
    app.middleware("http")(dispatcher)

    # --- Host pages -------------------------------------------------------
    if include_host:
        from mcpgate.host.routes import router as host_router

        app.include_router(host_router)

    # --- Mount all /api/v1/ routers -------------------------------------
    mount_v1_routers(app)

    return app


def public_url(settings: Settings, host: str, port: int) -> str:
    """Where clients reach the gateway: the configured base URL, else host:port."""
    if settings.base_url:
        return settings.base_url.rstrip("/")
    shown = "localhost" if host in ("127.0.0.1", "0.0.0.0") else host
    return f"http://{shown}:{port}"


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    dev: bool = False,
) -> None:
    """Start the gateway with uvicorn."""
    import uvicorn

    settings = get_settings()
    if not settings.host_users:
        logger.warning("No host users configured; set MCPGATE_HOST_USERS to enable login")

    print("\n" + "=" * 50)
    print("MCPGATE OAUTH SERVER")
    print("=" * 50)
    public = public_url(settings, host, port)
    print(f"\nMetadata: {public}/.well-known/oauth-authorization-server")
    print(f"MCP endpoint: {public}/mcp\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "mcpgate.api.serve:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        uvicorn.run(create_app(settings), host=host, port=port)
