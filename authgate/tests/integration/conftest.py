"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against an in-memory SQLite database (TestingConfig); set
    TEST_DATABASE_URL to point the suite at PostgreSQL instead.
  - The app is created once per session using create_app("testing").
  - Between tests, all rows are deleted so tests are isolated.
  - The Google client is replaced by FakeIdentityProvider, which keeps the
    real build_authorization_url() and answers the network calls from
    in-memory tables that each test fills in.

Helper functions (not fixtures) are provided for common operations:
  - sign_in(client, provider, ...)   → (response, sid cookie value)
  - sid_from(response)               → sid value from Set-Cookie, or None
  - use_sid(client, value)           → put a sid cookie in the client jar
  - expire_session(app, user_id)     → move the session row into the past
  - session_for(app, user_id)        → SessionRecord | None
"""

from __future__ import annotations

import itertools
from datetime import timedelta

import pytest
from sqlalchemy import select, text, update

from authgate.app import create_app
from authgate.app.errors import UpstreamRejectedError, UpstreamTransportError
from authgate.app.extensions import IDENTITY_PROVIDER_KEY, RENEWAL_GATE_KEY
from authgate.app.extensions import db as _db
from authgate.app.models.refresh_token import RefreshToken
from authgate.app.models.session import Session as SessionRow
from authgate.app.models.user import User
from authgate.app.services import credential_store as store
from authgate.app.services.identity_provider import GoogleOAuthClient, ProviderProfile, TokenSet
from authgate.app.services.renewal_gate import RenewalGate
from authgate.app.services.session_service import utcnow


# ═══════════════════════════════════════════════════════════════════════════
# Fake identity provider
# ═══════════════════════════════════════════════════════════════════════════

class FakeIdentityProvider(GoogleOAuthClient):
    """
    Same surface as GoogleOAuthClient, no network.

    codes:    authorization code  → (TokenSet, ProviderProfile)
    refresh:  refresh secret      → TokenSet, or an exception instance to raise
    calls:    every network-style call, in order, as (method, argument)
    """

    def __init__(self) -> None:
        super().__init__(
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_uri="http://localhost:3000/auth/google_callback",
        )
        self.codes: dict[str, tuple[TokenSet, ProviderProfile]] = {}
        self.refresh: dict[str, object] = {}
        self.profiles_by_token: dict[str, ProviderProfile] = {}
        self.calls: list[tuple[str, str]] = []
        self.profile_down = False
        self._seq = itertools.count(1)

    def next_access_token(self, prefix: str = "access") -> str:
        return f"{prefix}-{next(self._seq)}"

    def register_code(
        self,
        code: str,
        email: str,
        name: str,
        expires_in: int | None = 3600,
        refresh_token: str | None = "refresh",
    ) -> TokenSet:
        tokens = TokenSet(
            access_token=self.next_access_token(),
            refresh_token=refresh_token,
            expires_in=expires_in,
        )
        profile = ProviderProfile(email=email, name=name)
        self.codes[code] = (tokens, profile)
        self.profiles_by_token[tokens.access_token] = profile
        return tokens

    def allow_refresh(self, secret: str, expires_in: int | None = 3600) -> TokenSet:
        tokens = TokenSet(access_token=self.next_access_token("renewed"), expires_in=expires_in)
        self.refresh[secret] = tokens
        return tokens

    def exchange_code(self, code: str) -> TokenSet:
        self.calls.append(("exchange_code", code))
        if code not in self.codes:
            raise UpstreamRejectedError("The identity provider rejected the token request.", status_code=400)
        return self.codes[code][0]

    def fetch_profile(self, access_token: str) -> ProviderProfile:
        self.calls.append(("fetch_profile", access_token))
        if self.profile_down:
            raise UpstreamTransportError("The identity provider could not be reached.")
        return self.profiles_by_token[access_token]

    def exchange_refresh_token(self, refresh_secret: str) -> TokenSet:
        self.calls.append(("exchange_refresh_token", refresh_secret))
        result = self.refresh.get(refresh_secret)
        if result is None:
            raise UpstreamRejectedError("The identity provider rejected the token request.", status_code=400)
        if isinstance(result, Exception):
            raise result
        return result

    def refresh_calls(self) -> int:
        return sum(1 for method, _ in self.calls if method == "exchange_refresh_token")


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows between tests, children before users."""
    yield

    with app.app_context():
        _db.session.rollback()
        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM sessions"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


@pytest.fixture(autouse=True)
def renewal_gate(app):
    """A fresh RenewalGate per test; remembered handles never leak between tests."""
    original = app.extensions[RENEWAL_GATE_KEY]
    gate = RenewalGate(handoff_ttl=app.config["RENEWAL_HANDOFF_TTL"])
    app.extensions[RENEWAL_GATE_KEY] = gate
    yield gate
    app.extensions[RENEWAL_GATE_KEY] = original


@pytest.fixture
def provider(app):
    """Installs a fresh FakeIdentityProvider for one test."""
    original = app.extensions[IDENTITY_PROVIDER_KEY]
    fake = FakeIdentityProvider()
    app.extensions[IDENTITY_PROVIDER_KEY] = fake
    yield fake
    app.extensions[IDENTITY_PROVIDER_KEY] = original


@pytest.fixture
def client(app, provider):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def sid_from(response) -> str | None:
    """Returns the sid value set by `response`, or None if it sets none."""
    for header in response.headers.getlist("Set-Cookie"):
        if header.startswith("sid="):
            return header.split(";", 1)[0][len("sid="):]
    return None


def set_cookie_header(response) -> str | None:
    for header in response.headers.getlist("Set-Cookie"):
        if header.startswith("sid="):
            return header
    return None


def use_sid(client, value: str) -> None:
    client.set_cookie("sid", value)


def sign_in(
    client,
    provider: FakeIdentityProvider,
    email: str = "alice@test.com",
    name: str = "Alice",
    expires_in: int | None = 3600,
    refresh_token: str | None = None,
):
    """
    Runs the callback for a freshly registered code.
    The refresh secret defaults to "refresh-<local part of email>".
    Returns (response, sid cookie value).
    """
    if refresh_token is None:
        refresh_token = f"refresh-{email.split('@')[0]}"
    code = f"code-{email}-{len(provider.codes)}"
    provider.register_code(code, email, name, expires_in=expires_in, refresh_token=refresh_token)
    resp = client.get(f"/auth/google_callback?code={code}")
    assert resp.status_code == 302, f"sign_in failed: {resp.get_json()}"
    sid = sid_from(resp)
    assert sid, "callback did not set a sid cookie"
    use_sid(client, sid)
    return resp, sid


def user_id_for(app, email: str) -> int:
    with app.app_context():
        return _db.session.execute(select(User.id).where(User.email == email)).scalar_one()


def expire_session(app, user_id: int, by: timedelta = timedelta(minutes=1)) -> None:
    with app.app_context():
        _db.session.execute(
            update(SessionRow)
            .where(SessionRow.user_id == user_id)
            .values(expires_at=utcnow() - by)
        )
        _db.session.commit()


def expire_refresh_token(app, user_id: int) -> None:
    with app.app_context():
        _db.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )
        _db.session.commit()


def session_for(app, user_id: int):
    with app.app_context():
        return store.find_session_by_user(user_id, session=_db.session)


def refresh_token_for(app, user_id: int):
    with app.app_context():
        return store.find_refresh_token_by_user(user_id, session=_db.session)


def count_rows(app, table: str) -> int:
    with app.app_context():
        return _db.session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
