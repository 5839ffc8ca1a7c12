# Access token management schemas.
# Created: 2026-10-19

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CreateTokenRequest(BaseModel):
    """Issue a direct token for a client that cannot run the browser flow."""

    client_type: str = ""


class TokenInfo(BaseModel):
    """Token info (preview only, never the secret)."""

    id: str
    client_name: str
    preview: str
    direct: bool = False
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None
    last_used_ip: str = ""


class TokenListResponse(BaseModel):
    success: bool = True
    tokens: list[TokenInfo]


class TokenCreatedResponse(BaseModel):
    """Response when a direct token is created; plaintext shown once."""

    success: bool = True
    token: str
    token_info: TokenInfo


class RevokeAllResponse(BaseModel):
    success: bool = True
    revoked: int
