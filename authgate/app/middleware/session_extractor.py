"""
middleware/session_extractor.py — @require_session route decorator.

The decorator:
  1. Reads the request context built by the filter chain
  2. Rejects requests without a decodable `sid` cookie
  3. Rejects sessions the refresh filter found expired and could not renew
  4. Joins the session handle to its user
  5. Attaches the UserProfile to flask.g.user for the duration of the request

The extractor never compares timestamps itself; expiry and renewal belong to
the refresh filter, which has already run by the time a view is dispatched.

Error code:
  UNAUTHORIZED (401) — every failure above. Missing, tampered and unknown
  cookies are indistinguishable to the caller; the logs tell them apart.
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import current_app, g

from authgate.app.errors import StoreError, Unauthorized
from authgate.app.extensions import db
from authgate.app.middleware.context import SessionState, current_context
from authgate.app.services import credential_store as store
from authgate.app.services.credential_store import UserProfile


def require_session(f: Callable) -> Callable:
    """
    Route decorator that enforces a live session.

    Usage:
        @bp.route("/validate")
        @require_session
        def validate():
            profile = g.user  # always a UserProfile when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        resolve_profile()
        return f(*args, **kwargs)

    return decorated


def resolve_profile() -> UserProfile:
    """
    Resolve the caller's UserProfile or raise Unauthorized.

    Separated from the decorator so views and tests can call it directly.
    """
    ctx = current_context()
    if ctx.profile is not None:
        return ctx.profile

    if ctx.handle is None:
        current_app.logger.debug("no usable session cookie")
        raise Unauthorized()

    if ctx.state is SessionState.EXPIRED:
        raise Unauthorized("Your session has expired. Sign in again.")

    try:
        profile = store.find_user_profile_by_session_handle(ctx.handle, session=db.session)
    except StoreError:
        current_app.logger.warning("profile lookup failed; treating request as unauthenticated")
        raise Unauthorized()

    if profile is None:
        current_app.logger.debug("session cookie does not match any session")
        raise Unauthorized()

    ctx.profile = profile
    ctx.user_id = profile.id
    g.user = profile
    return profile
