# Access tokens router: list, issue direct tokens, revoke.
# Created: 2026-10-19

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from mcpgate.api.deps import ApiError, get_server, require_host_user
from mcpgate.api.oauth2.errors import ErrorKind, OAuthError
from mcpgate.api.oauth2.models import AccessToken
from mcpgate.api.oauth2.server import AuthorizationServer
from mcpgate.api.v1.schemas.tokens import (
    CreateTokenRequest,
    RevokeAllResponse,
    TokenCreatedResponse,
    TokenInfo,
    TokenListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tokens"])


def _info(token: AccessToken) -> TokenInfo:
    return TokenInfo(
        id=token.id,
        client_name=token.client_name,
        preview=token.preview,
        direct=token.direct,
        created_at=token.created_at,
        expires_at=token.expires_at,
        last_used_at=token.last_used_at,
        last_used_ip=token.last_used_ip,
    )


@router.get("/tokens", response_model=TokenListResponse)
async def list_tokens(
    user_id: str = Depends(require_host_user),
    server: AuthorizationServer = Depends(get_server),
):
    """List the caller's active tokens (no secrets exposed)."""
    try:
        tokens = server.list_tokens(user_id)
    except SQLAlchemyError:
        logger.exception("Failed to list tokens for user %s", user_id)
        raise ApiError(OAuthError(ErrorKind.INTERNAL_ERROR, "Failed to load tokens"))
    return TokenListResponse(tokens=[_info(t) for t in tokens])


@router.post("/tokens", response_model=TokenCreatedResponse)
async def create_token(
    body: CreateTokenRequest,
    request: Request,
    user_id: str = Depends(require_host_user),
    server: AuthorizationServer = Depends(get_server),
):
    """Issue a direct token. The plaintext token is returned only once."""
    client_ip = request.client.host if request.client else ""
    try:
        result, error = server.issue_direct(user_id, body.client_type, client_ip=client_ip)
    except SQLAlchemyError:
        logger.exception("Failed to create %r for user %s", body.client_type, user_id)
        raise ApiError(OAuthError(ErrorKind.INTERNAL_ERROR, "Failed to create token"))

    if error:
        raise ApiError(error)

    record, plaintext = result
    return TokenCreatedResponse(token=plaintext, token_info=_info(record))


@router.delete("/tokens/{token_id}")
async def revoke_token(
    token_id: str,
    user_id: str = Depends(require_host_user),
    server: AuthorizationServer = Depends(get_server),
):
    """Revoke one of the caller's tokens."""
    try:
        revoked = server.revoke(token_id, user_id)
    except SQLAlchemyError:
        logger.exception("Failed to revoke token %s", token_id)
        raise ApiError(OAuthError(ErrorKind.INTERNAL_ERROR, "Failed to revoke token"))
    if not revoked:
        raise ApiError(OAuthError(ErrorKind.NOT_FOUND, "Token not found or already revoked"))
    return {"success": True}


@router.post("/tokens/revoke-all", response_model=RevokeAllResponse)
async def revoke_all_tokens(
    user_id: str = Depends(require_host_user),
    server: AuthorizationServer = Depends(get_server),
):
    """Revoke every active token of the caller. Zero revoked is still success."""
    try:
        count = server.revoke_all(user_id)
    except SQLAlchemyError:
        logger.exception("Failed to revoke tokens for user %s", user_id)
        raise ApiError(OAuthError(ErrorKind.INTERNAL_ERROR, "Failed to revoke tokens"))
    return RevokeAllResponse(revoked=count)
