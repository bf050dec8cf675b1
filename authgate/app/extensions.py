"""
extensions.py — Flask extension singletons and per-app service accessors.

SQLAlchemy is created here as a module-level object so it can be imported
anywhere without circular imports; init_app(app) is called in the factory.

The identity provider client and the cookie codec are not Flask extensions,
but they follow the same rule: built once in create_app(), stored on
app.extensions, and looked up through the accessors below. Tests swap the
identity provider by assigning app.extensions["identity_provider"].

    from authgate.app.extensions import db, get_cookie_codec
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

if TYPE_CHECKING:  # pragma: no cover
    from authgate.app.services.cookie_codec import SessionCookieCodec
    from authgate.app.services.identity_provider import GoogleOAuthClient
    from authgate.app.services.renewal_gate import RenewalGate

db = SQLAlchemy()

IDENTITY_PROVIDER_KEY = "identity_provider"
COOKIE_CODEC_KEY = "cookie_codec"
RENEWAL_GATE_KEY = "renewal_gate"


def get_identity_provider() -> "GoogleOAuthClient":
    return current_app.extensions[IDENTITY_PROVIDER_KEY]


def get_cookie_codec() -> "SessionCookieCodec":
    return current_app.extensions[COOKIE_CODEC_KEY]


def get_renewal_gate() -> "RenewalGate":
    return current_app.extensions[RENEWAL_GATE_KEY]
