"""Signed continuation cookie for authorization requests interrupted by login.

Cookie value format: ``{base64url(json)}.{hex_hmac}``

The payload is untrusted even when the signature checks out; the flow
controller revalidates client and redirect URI before using it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import asdict, dataclass

__all__ = ["COOKIE_NAME", "ContinuationState", "decode", "encode"]

COOKIE_NAME = "tx_mcpserver_oauth"


@dataclass
class ContinuationState:
    client_id: str
    client_name: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    state: str = ""

    def to_params(self) -> dict[str, str]:
        params = asdict(self)
        params["response_type"] = "code"
        return params


def encode(state: ContinuationState, key: str) -> str:
    raw = json.dumps(asdict(state), separators=(",", ":"), sort_keys=True)
    payload = base64.urlsafe_b64encode(raw.encode()).rstrip(b"=").decode("ascii")
    return f"{payload}.{_sign(key, payload)}"


def decode(value: str, key: str) -> ContinuationState | None:
    """Return the state, or None if the value is malformed or tampered with."""
    if not value or "." not in value:
        return None
    payload, sig = value.rsplit(".", 1)
    if not _signature_matches(sig, _sign(key, payload)):
        return None

    try:
        raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
        data = json.loads(raw)
    except (binascii.Error, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        return ContinuationState(
            client_id=str(data["client_id"]),
            client_name=str(data.get("client_name") or ""),
            redirect_uri=str(data["redirect_uri"]),
            code_challenge=str(data["code_challenge"]),
            code_challenge_method=str(data.get("code_challenge_method") or "S256"),
            state=str(data.get("state") or ""),
        )
    except KeyError:
        return None


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


def _signature_matches(sig: str, expected: str) -> bool:
    # Cookie values may carry any character; compare_digest only takes ASCII str
    return hmac.compare_digest(sig.encode("utf-8", "replace"), expected.encode("ascii"))
