# OAuth2 data models.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class OAuthClient:
    """Dynamically registered OAuth2 client."""

    client_id: str
    client_name: str
    redirect_uris: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=lambda: ["authorization_code"])
    scope: str = "mcp"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    client_name: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str  # "S256" or "plain"
    user_id: str
    scope: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    consumed: bool = False


@dataclass
class CodeGrant:
    """What a successfully redeemed code grants."""

    user_id: str
    client_id: str
    client_name: str
    scope: str


@dataclass
class AccessToken:
    """Issued access token record. The plaintext token is never stored."""

    id: str
    token_hash: str
    preview: str
    user_id: str
    client_name: str
    expires_at: datetime
    client_id: str | None = None
    direct: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_used_at: datetime | None = None
    created_ip: str = ""
    last_used_ip: str = ""
    revoked: bool = False
