# OAuth2 error taxonomy.
# Created: 2026-10-19
#
# Service methods return ``(value, error)`` pairs; ``error_response()`` is the
# single place where an error becomes an HTTP status and JSON body.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi.responses import JSONResponse


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_CLIENT_METADATA = "invalid_client_metadata"
    INVALID_TOKEN = "invalid_token"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL_ERROR = "server_error"


_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.INVALID_CLIENT: 400,
    ErrorKind.INVALID_GRANT: 400,
    ErrorKind.UNSUPPORTED_GRANT_TYPE: 400,
    ErrorKind.UNSUPPORTED_RESPONSE_TYPE: 400,
    ErrorKind.INVALID_CLIENT_METADATA: 400,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL_ERROR: 500,
}

GENERIC_GRANT_MESSAGE = "Invalid or expired authorization code"
GENERIC_INTERNAL_MESSAGE = "Internal server error"


@dataclass(frozen=True)
class OAuthError:
    """A failed outcome: what went wrong and what the client may be told."""

    kind: ErrorKind
    message: str = ""
    status: int | None = None  # overrides the default status for the kind

    @property
    def status_code(self) -> int:
        return self.status or _STATUS[self.kind]

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "error_description": self.message}


def invalid_request(message: str) -> OAuthError:
    return OAuthError(ErrorKind.INVALID_REQUEST, message)


def invalid_client(message: str = "Unknown client_id", status: int | None = None) -> OAuthError:
    return OAuthError(ErrorKind.INVALID_CLIENT, message, status)


def invalid_grant() -> OAuthError:
    # Same text for unknown, expired, consumed and PKCE mismatch
    return OAuthError(ErrorKind.INVALID_GRANT, GENERIC_GRANT_MESSAGE)


def internal_error() -> OAuthError:
    return OAuthError(ErrorKind.INTERNAL_ERROR, GENERIC_INTERNAL_MESSAGE)


def error_response(error: OAuthError, headers: dict[str, str] | None = None) -> JSONResponse:
    """Map an OAuth error to its JSON response."""
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers=headers,
    )
