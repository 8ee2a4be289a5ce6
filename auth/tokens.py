"""
Signed user tokens for the connector API.

Tokens are base64-encoded JSON payloads (``user_id`` + ``exp``) signed with
HMAC-SHA256.  The secret is ``config.jwt_secret`` (env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from config.settings import config


class InvalidUserToken(ValueError):
    pass


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_user_token(
    user_id: str,
    *,
    secret: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> str:
    """Create a signed token for ``user_id``."""
    secret = secret or config.jwt_secret
    ttl = ttl_seconds if ttl_seconds is not None else config.jwt_expiry_seconds
    raw = json.dumps({"user_id": user_id, "exp": int(time.time()) + ttl}).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw, secret)


def verify_user_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Return the ``user_id`` carried by a valid token.

    Raises ``InvalidUserToken`` on a malformed, forged or expired token.
    """
    secret = secret or config.jwt_secret
    encoded, sep, signature = token.partition(".")
    if not sep:
        raise InvalidUserToken("bad format")
    try:
        raw = urlsafe_b64decode(encoded.encode())
    except ValueError as exc:
        raise InvalidUserToken("bad encoding") from exc
    if not hmac.compare_digest(signature, _sign(raw, secret)):
        raise InvalidUserToken("bad signature")
    payload = json.loads(raw)
    if payload.get("exp", 0) < time.time():
        raise InvalidUserToken("token expired")
    return str(payload["user_id"])
