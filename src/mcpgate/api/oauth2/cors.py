# CORS headers for the OAuth and MCP endpoints.
# Created: 2026-10-19
#
# Allow-listed origins are echoed back; any other origin gets the server's own
# base URL, which a browser will reject for a foreign page.

from __future__ import annotations

from fastapi import Request
from fastapi.responses import Response

from mcpgate.api.oauth2.metadata import get_base_url
from mcpgate.config import Settings

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With"
PREFLIGHT_MAX_AGE = "86400"


def allowed_origin(request: Request, settings: Settings) -> str:
    origin = request.headers.get("origin", "")
    if origin and origin in settings.cors_allowed_origins:
        return origin
    return get_base_url(request, settings)


def cors_headers(request: Request, settings: Settings) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allowed_origin(request, settings),
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
        "Vary": "Origin",
    }


def apply_cors(response: Response, request: Request, settings: Settings) -> Response:
    for name, value in cors_headers(request, settings).items():
        response.headers[name] = value
    return response


def preflight_response(request: Request, settings: Settings) -> Response:
    return Response(status_code=200, headers=cors_headers(request, settings))
