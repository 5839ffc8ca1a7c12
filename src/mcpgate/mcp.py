# Default MCP request handler.
# Created: 2026-10-19
#
# Answers the JSON-RPC lifecycle methods with an empty tool list. Deployments
# with real tools pass their own handler to create_app().

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from mcpgate import __version__
from mcpgate.api.oauth2.models import AccessToken

logger = logging.getLogger(__name__)

McpHandler = Callable[[Request, AccessToken], Awaitable[Response]]

PROTOCOL_VERSION = "2025-06-18"
SERVER_INFO = {"name": "mcpgate", "version": __version__}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601


def _error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _result(request_id: Any, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def dispatch_message(message: Any) -> dict | None:
    """Handle one JSON-RPC message. Notifications yield None."""
    if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
        return _error(None, INVALID_REQUEST, "Invalid Request")

    method = message.get("method")
    if "id" not in message:
        return None
    request_id = message["id"]

    if method == "initialize":
        params = message.get("params") or {}
        return _result(
            request_id,
            {
                "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": SERVER_INFO,
            },
        )
    if method == "ping":
        return _result(request_id, {})
    if method == "tools/list":
        return _result(request_id, {"tools": []})

    return _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")


async def default_mcp_handler(request: Request, token: AccessToken) -> Response:
    if request.method == "GET":
        return JSONResponse({"serverInfo": SERVER_INFO, "protocolVersion": PROTOCOL_VERSION})

    try:
        payload = json.loads(await request.body())
    except ValueError:
        return JSONResponse(_error(None, PARSE_ERROR, "Parse error"), status_code=400)

    logger.debug("MCP request from user %s via %s", token.user_id, token.client_name)

    if isinstance(payload, list):
        if not payload:
            return JSONResponse(_error(None, INVALID_REQUEST, "Invalid Request"), status_code=400)
        replies = [r for r in (dispatch_message(m) for m in payload) if r is not None]
        if not replies:
            return Response(status_code=202)
        return JSONResponse(replies)

    reply = dispatch_message(payload)
    if reply is None:
        return Response(status_code=202)
    return JSONResponse(reply)
