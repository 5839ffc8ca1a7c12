"""PKCE (RFC 7636) transforms and code generation.

S256 is preferred; plain is accepted for clients that cannot hash.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets

SUPPORTED_METHODS = ("S256", "plain")

# base64url(sha256) without padding is always 43 chars
_S256_CHALLENGE = re.compile(r"^[A-Za-z0-9_-]{43}$")
# RFC 7636 section 4.1 unreserved characters; length is not enforced below 43
_VERIFIER = re.compile(r"^[A-Za-z0-9._~-]{1,128}$")


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def compute_challenge(code_verifier: str, method: str) -> str:
    if method == "S256":
        return s256_challenge(code_verifier)
    if method == "plain":
        return code_verifier
    raise ValueError(f"Unsupported code_challenge_method: {method}")


def is_valid_challenge(code_challenge: str, method: str) -> bool:
    """Check the challenge is well-formed for *method*."""
    if method not in SUPPORTED_METHODS or not code_challenge:
        return False
    if method == "S256":
        return bool(_S256_CHALLENGE.match(code_challenge))
    return bool(_VERIFIER.match(code_challenge))


def verify(code_verifier: str, code_challenge: str, method: str) -> bool:
    """Recompute the challenge from *code_verifier* and compare in constant time."""
    if not code_verifier or not _VERIFIER.match(code_verifier):
        return False
    try:
        expected = compute_challenge(code_verifier, method)
    except ValueError:
        return False
    return secrets.compare_digest(expected, code_challenge)


def generate_code() -> str:
    return secrets.token_urlsafe(32)
