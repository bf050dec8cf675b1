"""
schemas/auth_schema.py — Marshmallow schemas for the auth endpoints.

IMPORTANT: All schemas inherit from marshmallow.Schema directly, so they can
be used in unit tests without a Flask app context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate


class CallbackQuerySchema(Schema):
    """
    GET /auth/google_callback

    The provider redirects back with either `code` (success) or `error`
    (user denied consent, invalid client, ...). `error` is checked by the
    route before `code` is required, so a denial is reported as an upstream
    auth failure rather than a missing field.
    """

    class Meta:
        # Google also sends scope, authuser, prompt, hd, ...
        unknown = EXCLUDE

    code = fields.Str(required=True, validate=validate.Length(min=1, max=2048))
    state = fields.Str(load_default=None)


class ProviderErrorSchema(Schema):

    class Meta:
        unknown = EXCLUDE

    error = fields.Str(load_default=None)
    error_description = fields.Str(load_default=None)


class UserProfileSchema(Schema):
    """Serialises a credential_store.UserProfile for GET /auth/validate."""

    id = fields.Int()
    email = fields.Email()
    name = fields.Str()
    handle = fields.Str(allow_none=True)
    created_at = fields.DateTime(format="iso")
