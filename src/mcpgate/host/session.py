"""HMAC-signed host session cookie.

Cookie format: ``{user_id}:{expires_unix}:{hex_hmac}``

The signing key is ``settings.secret_key``; rotating it logs everybody out.
"""

from __future__ import annotations

import hashlib
import hmac
import time

from fastapi import Request

from mcpgate.config import Settings

__all__ = [
    "SESSION_COOKIE",
    "SessionAuthContext",
    "create_session_value",
    "read_session_value",
]

SESSION_COOKIE = "mcpgate_session"


def create_session_value(user_id: str, key: str, ttl_hours: int = 8) -> str:
    expires = int(time.time()) + ttl_hours * 3600
    message = f"{user_id}:{expires}"
    return f"{message}:{_sign(key, message)}"


def read_session_value(value: str, key: str) -> str | None:
    """Return the user id if the cookie is authentic and unexpired."""
    parts = value.rsplit(":", 2)
    if len(parts) != 3:
        return None

    user_id, expires_str, sig = parts
    if not user_id:
        return None
    try:
        expires = int(expires_str)
    except ValueError:
        return None

    if time.time() > expires:
        return None

    expected = _sign(key, f"{user_id}:{expires_str}")
    if not hmac.compare_digest(sig.encode("utf-8", "replace"), expected.encode("ascii")):
        return None
    return user_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


class SessionAuthContext:
    """AuthContext backed by the session cookie on *request*."""

    def __init__(self, request: Request, settings: Settings):
        raw = request.cookies.get(SESSION_COOKIE, "")
        self._user_id = read_session_value(raw, settings.secret_key) if raw else None

    def is_logged_in(self) -> bool:
        return self._user_id is not None

    def current_user_id(self) -> str | None:
        return self._user_id
