# OAuth2 schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TokenRequest(BaseModel):
    """Token exchange request (form-encoded or JSON)."""

    grant_type: str = ""
    code: str = ""
    code_verifier: str = ""
    client_id: str = ""
    redirect_uri: str = ""


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str | None = None


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    client_name: str = ""
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    scope: str | None = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_name: str
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "none"
    scope: str
    client_id_issued_at: int


class RevokeRequest(BaseModel):
    """Token revocation request."""

    token: str = ""
    token_type_hint: str | None = None
