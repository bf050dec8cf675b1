"""
services/cookie_codec.py — encrypted envelope for the `sid` cookie.

The cookie carries the session handle inside a Fernet token (AES-128-CBC +
HMAC-SHA256 with an embedded timestamp), so the browser can neither read nor
alter it. decode() fails closed: a tampered, expired, foreign-key or
malformed value returns None, exactly like a missing cookie. Callers must not
branch on the difference; the reason is only logged.

The key lives for the whole process. Rotating it invalidates every
outstanding cookie, so create_app() builds one codec and never replaces it.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "sid"


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")


class SessionCookieCodec:

    def __init__(self, key: str | bytes, max_age: timedelta) -> None:
        if isinstance(key, str):
            key = key.encode("ascii")
        # Raises ValueError on a malformed key: surfaces at startup, not per request.
        self._fernet = Fernet(key)
        self.max_age = max_age

    @classmethod
    def from_config(cls, config) -> "SessionCookieCodec":
        return cls(config["SID_COOKIE_KEY"], config["SID_COOKIE_MAX_AGE"])

    def encode(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decode(self, value: str | bytes | None) -> Optional[str]:
        if not value:
            return None
        if isinstance(value, str):
            try:
                value = value.encode("ascii")
            except UnicodeEncodeError:
                logger.debug("session cookie rejected: non-ascii envelope")
                return None
        try:
            raw = self._fernet.decrypt(value, ttl=int(self.max_age.total_seconds()))
        except InvalidToken:
            # Covers bad signature, wrong key, expired timestamp and garbage.
            logger.debug("session cookie rejected: invalid or expired envelope")
            return None
        try:
            decoded = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
        return decoded or None


# ── Set-Cookie arguments ───────────────────────────────────────────────────
# Passed straight to flask.Response.set_cookie(**kwargs).

def session_cookie_kwargs(config, value: str) -> dict:
    return {
        "key": SESSION_COOKIE_NAME,
        "value": value,
        "max_age": int(config["SID_COOKIE_MAX_AGE"].total_seconds()),
        "domain": config.get("SID_COOKIE_DOMAIN"),
        "path": "/",
        "secure": bool(config.get("SID_COOKIE_SECURE", True)),
        "httponly": True,
        "samesite": "Lax",
    }


def clear_session_cookie_kwargs(config) -> dict:
    return {
        **session_cookie_kwargs(config, ""),
        "max_age": 0,
        "expires": 0,
    }
