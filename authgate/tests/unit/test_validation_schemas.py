"""
Unit tests for the marshmallow schemas. No app context needed.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from marshmallow import ValidationError

from authgate.app.schemas.auth_schema import CallbackQuerySchema, ProviderErrorSchema, UserProfileSchema
from authgate.app.services.credential_store import UserProfile


class TestCallbackQuerySchema:

    def test_code_is_required(self):
        with pytest.raises(ValidationError) as exc_info:
            CallbackQuerySchema().load({})
        assert "code" in exc_info.value.messages

    def test_empty_code_is_rejected(self):
        with pytest.raises(ValidationError):
            CallbackQuerySchema().load({"code": ""})

    def test_unknown_params_are_dropped(self):
        data = CallbackQuerySchema().load({"code": "abc", "scope": "email", "authuser": "0"})
        assert data == {"code": "abc", "state": None}


class TestProviderErrorSchema:

    def test_error_defaults_to_none(self):
        assert ProviderErrorSchema().load({"code": "abc"}) == {"error": None, "error_description": None}

    def test_error_is_loaded(self):
        data = ProviderErrorSchema().load({"error": "access_denied"})
        assert data["error"] == "access_denied"


def test_user_profile_schema_dumps_iso_timestamp():
    profile = UserProfile(
        id=7,
        email="alice@test.com",
        name="Alice",
        handle=None,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    assert UserProfileSchema().dump(profile) == {
        "id": 7,
        "email": "alice@test.com",
        "name": "Alice",
        "handle": None,
        "created_at": "2026-01-01T00:00:00+00:00",
    }
