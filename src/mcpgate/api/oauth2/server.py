# OAuth2 Authorization Server with PKCE support.
# Created: 2026-10-19
#
# Client registry, authorization codes (RFC 7636) and access tokens for MCP
# clients. Every operation returns ``(value, error)``; HTTP mapping happens in
# the endpoints.

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

from mcpgate.api.oauth2 import pkce
from mcpgate.api.oauth2.errors import (
    ErrorKind,
    OAuthError,
    invalid_client,
    invalid_grant,
    invalid_request,
)
from mcpgate.api.oauth2.models import AccessToken, AuthorizationCode, CodeGrant, OAuthClient
from mcpgate.api.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "mcp_at_"
CLIENT_ID_PREFIX = "mcp_client_"
DEFAULT_CLIENT_NAME = "MCP Client"
SUPPORTED_GRANT_TYPES = ("authorization_code",)

# Token lifetimes
CODE_TTL = timedelta(minutes=10)
ACCESS_TOKEN_TTL = timedelta(days=30)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _preview(token: str) -> str:
    return token[:16] + "..."


def is_valid_redirect_uri(uri: str) -> bool:
    """Absolute URI with a scheme, a host for http(s), and no fragment."""
    if not uri or any(c.isspace() for c in uri):
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if not parts.scheme or parts.fragment:
        return False
    if parts.scheme in ("http", "https"):
        return bool(parts.hostname)
    return bool(parts.netloc or parts.path)


class AuthorizationServer:
    """OAuth2 authorization server with PKCE."""

    def __init__(
        self,
        storage: OAuthStorage | None = None,
        code_ttl: timedelta = CODE_TTL,
        token_ttl: timedelta = ACCESS_TOKEN_TTL,
        direct_labels: list[str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage or OAuthStorage()
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        if direct_labels is None:
            from mcpgate.config import DEFAULT_DIRECT_TOKEN_LABELS

            direct_labels = DEFAULT_DIRECT_TOKEN_LABELS
        self.direct_labels = list(direct_labels)
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    # -- client registry -------------------------------------------------

    def register_client(
        self,
        client_name: str,
        redirect_uris: list[str],
        grant_types: list[str] | None = None,
        scope: str | None = None,
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        """Dynamic client registration (RFC 7591)."""
        if not redirect_uris:
            return None, OAuthError(
                ErrorKind.INVALID_CLIENT_METADATA, "At least one redirect_uri is required"
            )
        for uri in redirect_uris:
            if not isinstance(uri, str) or not is_valid_redirect_uri(uri):
                return None, OAuthError(
                    ErrorKind.INVALID_CLIENT_METADATA, f"Invalid redirect_uri: {uri}"
                )

        grant_types = grant_types or ["authorization_code"]
        unsupported = [g for g in grant_types if g not in SUPPORTED_GRANT_TYPES]
        if unsupported:
            return None, OAuthError(
                ErrorKind.INVALID_CLIENT_METADATA,
                f"Unsupported grant_types: {', '.join(map(str, unsupported))}",
            )

        client = OAuthClient(
            client_id=CLIENT_ID_PREFIX + secrets.token_hex(16),
            client_name=(client_name or "").strip() or DEFAULT_CLIENT_NAME,
            redirect_uris=list(dict.fromkeys(redirect_uris)),
            grant_types=grant_types,
            scope=scope or "mcp",
            created_at=self.now(),
        )
        self.storage.save_client(client)
        logger.info("Registered OAuth client %s (%s)", client.client_id, client.client_name)
        return client, None

    def find_client(self, client_id: str) -> OAuthClient | None:
        if not client_id:
            return None
        return self.storage.get_client(client_id)

    def validate_client_redirect(
        self, client_id: str, redirect_uri: str
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        """Check *client_id* is registered and *redirect_uri* is one of its URIs."""
        client = self.find_client(client_id)
        if client is None:
            return None, invalid_client()
        if redirect_uri not in client.redirect_uris:
            return None, invalid_request("redirect_uri is not registered for this client")
        return client, None

    # -- authorization codes ---------------------------------------------

    def issue_code(
        self,
        client: OAuthClient,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        user_id: str,
        scope: str = "",
        client_name: str = "",
    ) -> tuple[str | None, OAuthError | None]:
        """Create an authorization code for an authenticated user."""
        if redirect_uri not in client.redirect_uris:
            return None, invalid_request("redirect_uri is not registered for this client")

        if code_challenge_method not in pkce.SUPPORTED_METHODS:
            return None, invalid_request("Unsupported code_challenge_method")

        if not pkce.is_valid_challenge(code_challenge, code_challenge_method):
            return None, invalid_request("Missing or malformed code_challenge")

        now = self.now()
        code = pkce.generate_code()
        self.storage.store_code(
            AuthorizationCode(
                code=code,
                client_id=client.client_id,
                client_name=client_name or client.client_name,
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                user_id=str(user_id),
                scope=scope or client.scope,
                created_at=now,
                expires_at=now + self.code_ttl,
            )
        )
        logger.info("Issued authorization code for user %s, client %s", user_id, client.client_id)
        return code, None

    def redeem_code(
        self,
        code: str,
        code_verifier: str,
        client_id: str | None = None,
        redirect_uri: str | None = None,
    ) -> tuple[CodeGrant | None, OAuthError | None]:
        """Consume *code* and check it against the PKCE verifier.

        The first attempt always burns the code, whether or not it succeeds.
        """
        if not code:
            return None, invalid_grant()

        auth_code = self.storage.consume_code(code, self.now())
        if auth_code is None:
            return None, invalid_grant()

        if not pkce.verify(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method):
            logger.info("PKCE verification failed for client %s", auth_code.client_id)
            return None, invalid_grant()

        if client_id and auth_code.client_id != client_id:
            return None, invalid_grant()

        if redirect_uri and auth_code.redirect_uri != redirect_uri:
            return None, invalid_grant()

        return (
            CodeGrant(
                user_id=auth_code.user_id,
                client_id=auth_code.client_id,
                client_name=auth_code.client_name,
                scope=auth_code.scope,
            ),
            None,
        )

    # -- tokens ----------------------------------------------------------

    def _new_token(
        self,
        user_id: str,
        client_name: str,
        client_id: str | None = None,
        direct: bool = False,
        client_ip: str = "",
    ) -> tuple[AccessToken, str]:
        plaintext = f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
        now = self.now()
        record = AccessToken(
            id=secrets.token_hex(8),
            token_hash=hash_token(plaintext),
            preview=_preview(plaintext),
            user_id=str(user_id),
            client_id=client_id,
            client_name=client_name,
            direct=direct,
            created_at=now,
            expires_at=now + self.token_ttl,
            last_used_at=now,
            created_ip=client_ip,
            last_used_ip=client_ip,
        )
        return record, plaintext

    def exchange(
        self,
        grant_type: str,
        code: str,
        code_verifier: str,
        client_id: str,
        redirect_uri: str = "",
        client_ip: str = "",
    ) -> tuple[dict | None, OAuthError | None]:
        """Exchange an authorization code + verifier for an access token."""
        if grant_type != "authorization_code":
            return None, OAuthError(
                ErrorKind.UNSUPPORTED_GRANT_TYPE,
                "Only authorization_code grant type is supported",
            )
        if not code:
            return None, invalid_request("Missing required parameter: code")
        if not code_verifier:
            return None, invalid_request("Missing required parameter: code_verifier")
        if self.find_client(client_id) is None:
            return None, invalid_client("Invalid client_id", status=401)

        grant, error = self.redeem_code(code, code_verifier, client_id, redirect_uri or None)
        if error:
            return None, error

        record, plaintext = self._new_token(
            user_id=grant.user_id,
            client_name=grant.client_name,
            client_id=grant.client_id,
            client_ip=client_ip,
        )
        self.storage.store_token(record)
        logger.info("Issued access token %s for user %s", record.id, record.user_id)

        result = {
            "access_token": plaintext,
            "token_type": "bearer",
            "expires_in": int(self.token_ttl.total_seconds()),
        }
        if grant.scope:
            result["scope"] = grant.scope
        return result, None

    def issue_direct(
        self, user_id: str, label: str, client_ip: str = ""
    ) -> tuple[tuple[AccessToken, str] | None, OAuthError | None]:
        """Issue a token without the browser flow. Returns (record, plaintext) once."""
        if label not in self.direct_labels:
            return None, invalid_request("Invalid client type")

        record, plaintext = self._new_token(
            user_id=user_id, client_name=label, direct=True, client_ip=client_ip
        )
        if not self.storage.store_direct_token(record, self.now()):
            return None, OAuthError(
                ErrorKind.CONFLICT,
                f"You already have a {label}. Please revoke it first if you want "
                "to create a new one.",
            )
        logger.info("Issued direct token %s (%s) for user %s", record.id, label, user_id)
        return (record, plaintext), None

    def verify_access_token(self, token: str, client_ip: str = "") -> AccessToken | None:
        """Return the token record if *token* is live, recording its use."""
        if not token:
            return None
        record = self.storage.get_token_by_hash(hash_token(token))
        if record is None or record.revoked:
            return None
        now = self.now()
        if now >= record.expires_at:
            return None
        self.storage.touch_token(record.id, now, client_ip)
        record.last_used_at = now
        record.last_used_ip = client_ip
        return record

    def list_tokens(self, user_id: str) -> list[AccessToken]:
        return self.storage.list_tokens(str(user_id), self.now())

    def revoke(self, token_id: str, user_id: str) -> bool:
        """Revoke one token; False when absent, foreign or already revoked."""
        revoked = self.storage.revoke_token(token_id, str(user_id))
        if revoked:
            logger.info("Revoked token %s for user %s", token_id, user_id)
        return revoked

    def revoke_all(self, user_id: str) -> int:
        count = self.storage.revoke_all(str(user_id))
        logger.info("Revoked %d token(s) for user %s", count, user_id)
        return count

    def revoke_token_value(self, token: str) -> bool:
        """RFC 7009 revocation by token value."""
        if not token:
            return False
        return self.storage.revoke_by_hash(hash_token(token))

    def cleanup_expired(self) -> tuple[int, int]:
        codes, tokens = self.storage.cleanup_expired(self.now())
        logger.info("Cleanup removed %d code(s), expired %d token(s)", codes, tokens)
        return codes, tokens


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        from mcpgate.config import get_settings

        settings = get_settings()
        _server = AuthorizationServer(
            storage=OAuthStorage(settings.resolved_database_url()),
            code_ttl=timedelta(seconds=settings.code_ttl_seconds),
            token_ttl=timedelta(seconds=settings.token_ttl_seconds),
            direct_labels=settings.direct_token_labels,
        )
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
