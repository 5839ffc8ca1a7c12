# OAuth2 discovery documents (RFC 8414 and protected-resource metadata).
# Created: 2026-10-19

from __future__ import annotations

from typing import Any

from fastapi import Request

from mcpgate.config import Settings

OAUTH_PREFIX = "/mcp_oauth"
MCP_PATH = "/mcp"


def get_base_url(request: Request, settings: Settings) -> str:
    """Configured public base URL, else scheme://host[:port] of the request."""
    if settings.base_url:
        return settings.base_url.rstrip("/")

    url = request.url
    host = url.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    base = f"{url.scheme}://{host}"
    if url.port and url.port not in (80, 443):
        base += f":{url.port}"
    return base


def authorization_server_metadata(base_url: str, settings: Settings) -> dict[str, Any]:
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}{OAUTH_PREFIX}/authorize",
        "token_endpoint": f"{base_url}{OAUTH_PREFIX}/token",
        "registration_endpoint": f"{base_url}{OAUTH_PREFIX}/register",
        "revocation_endpoint": f"{base_url}{OAUTH_PREFIX}/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "token_endpoint_auth_methods_supported": ["none"],
        "registration_endpoint_auth_methods_supported": ["none"],
        "revocation_endpoint_auth_methods_supported": ["none"],
        "scopes_supported": list(settings.scopes_supported),
    }


def protected_resource_metadata(base_url: str) -> dict[str, Any]:
    return {
        "resource": f"{base_url}{MCP_PATH}",
        "authorization_servers": [base_url],
        "bearer_methods_supported": ["header", "query"],
        "revocation_endpoint": f"{base_url}{OAUTH_PREFIX}/revoke",
        "revocation_endpoint_auth_methods_supported": ["none"],
    }
