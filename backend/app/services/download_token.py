"""
Signed download tokens.

A token is a stateless capability that authorises downloading exactly one
generated PDF until its expiry:

    <base64url(JSON payload)>.<base64url(HMAC-SHA256(secret, encoded payload))>

Both parts are unpadded base64url. The payload carries the file ``name`` and an
``exp`` (unix seconds). Nothing is stored server-side; rotating the secret
invalidates every outstanding token.

Public API:
  sign_download_token(payload, secret) -> str
  verify_download_token(token, secret, now=None) -> dict | None
  issue_download_token(name, secret, ttl_seconds) -> str
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Any, Optional


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _mac(encoded_payload: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        encoded_payload.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def sign_download_token(payload: dict[str, Any], secret: str) -> str:
    """Serialize and sign a payload. The payload must contain a numeric ``exp``."""
    encoded = _b64url_encode(
        json.dumps(payload, separators=(",", ":")).encode("utf-8")
    )
    return f"{encoded}.{_mac(encoded, secret)}"


def verify_download_token(
    token: str,
    secret: str,
    now: Optional[float] = None,
) -> Optional[dict[str, Any]]:
    """
    Return the token payload, or None if the token is not valid.

    A token is rejected when it does not have exactly one ``.`` separator, when
    its MAC does not match (compared in constant time), when the payload is not
    a JSON object, or when ``exp`` is missing or in the past.
    """
    if not isinstance(token, str):
        return None

    parts = token.split(".")
    if len(parts) != 2:
        return None
    encoded, provided_mac = parts

    try:
        expected_mac = _mac(encoded, secret)
    except UnicodeEncodeError:
        return None

    provided = provided_mac.encode("utf-8")
    expected = expected_mac.encode("ascii")
    if len(provided) != len(expected) or not hmac.compare_digest(provided, expected):
        return None

    try:
        payload = json.loads(_b64url_decode(encoded).decode("utf-8"))
    except (binascii.Error, ValueError):
        return None

    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not exp:
        return None

    current = time.time() if now is None else now
    if exp < int(current):
        return None

    return payload


def issue_download_token(name: str, secret: str, ttl_seconds: int) -> str:
    """Mint a token for a single generated file, valid for ``ttl_seconds``."""
    return sign_download_token(
        {"name": name, "exp": int(time.time()) + ttl_seconds},
        secret,
    )
