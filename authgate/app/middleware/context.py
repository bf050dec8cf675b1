"""
middleware/context.py — the typed per-request auth context.

One RequestContext is created per request by the filter chain and stored on
flask.g.auth. Filters mutate it in order; the session extractor reads it.
Nothing else in the request path inspects the `sid` cookie directly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from flask import Request, g, request

from authgate.app.extensions import get_cookie_codec
from authgate.app.services.cookie_codec import SESSION_COOKIE_NAME
from authgate.app.services.credential_store import UserProfile


class SessionState(str, enum.Enum):
    # No cookie, an undecodable cookie, or no session row behind it.
    ANONYMOUS = "anonymous"
    # Session row found and not yet expired.
    VALID = "valid"
    # Session was expired and has been renewed during this request.
    RENEWED = "renewed"
    # Session row found, expired, and could not be renewed.
    EXPIRED = "expired"


@dataclass
class RequestContext:
    handle: Optional[str] = None
    state: SessionState = SessionState.ANONYMOUS
    user_id: Optional[int] = None
    # Encrypted cookie value to send back when the session was renewed.
    renewed_cookie: Optional[str] = None
    profile: Optional[UserProfile] = None

    @classmethod
    def from_request(cls, req: Request) -> "RequestContext":
        raw = req.cookies.get(SESSION_COOKIE_NAME)
        return cls(handle=get_cookie_codec().decode(raw))

    def __repr__(self) -> str:
        return (
            f"RequestContext(handle={'<redacted>' if self.handle else None}, "
            f"state={self.state.value}, user_id={self.user_id})"
        )


def current_context() -> RequestContext:
    """Return this request's context, building it from the cookie if no filter ran."""
    ctx = g.get("auth")
    if ctx is None:
        ctx = RequestContext.from_request(request)
        g.auth = ctx
    return ctx
