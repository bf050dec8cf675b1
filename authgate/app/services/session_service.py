"""
services/session_service.py — session lifecycle rules.

Responsibilities:
  - The expiry rule shared by login and renewal:
        expires_at = now + min(provider lifetime, configured ceiling)
    A token without a reported lifetime is never persisted (MissingExpiryError).
  - Login provisioning after a successful code exchange.
  - Renewal of an expired session with the stored refresh token, and
    adoption of a renewal by requests still carrying the replaced handle.

Layer rules:
  - No use of flask.request, flask.g, or HTTP status codes.
  - The identity provider and the store are passed in, never looked up.
  - Errors propagate. Deciding which failures are fatal (login) and which
    degrade to anonymous (refresh filter) is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from authgate.app.errors import MissingExpiryError, StoreError
from authgate.app.services import credential_store as store
from authgate.app.services.credential_store import SessionRecord
from authgate.app.services.identity_provider import GoogleOAuthClient, TokenSet
from authgate.app.services.renewal_gate import RenewalGate

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionHandle:
    """
    The secret a request authenticates with.

    Today it is the provider's access-token secret, stored verbatim as the
    session lookup key. Keeping it behind this type means switching to a
    locally generated identifier only touches from_tokens().
    """

    value: str

    @classmethod
    def from_tokens(cls, tokens: TokenSet) -> "SessionHandle":
        return cls(tokens.access_token)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return "SessionHandle(<redacted>)"


@dataclass(frozen=True)
class LoginResult:
    user_id: int
    handle: SessionHandle
    expires_at: datetime
    renewable: bool


@dataclass(frozen=True)
class RenewedSession:
    user_id: int
    handle: SessionHandle
    expires_at: datetime
    # True when another request renewed first and this one reused its result.
    adopted: bool = False


def session_expiry(now: datetime, expires_in: Optional[int], ceiling: timedelta) -> datetime:
    if expires_in is None:
        raise MissingExpiryError()
    return now + min(timedelta(seconds=expires_in), ceiling)


def provision_login(
        provider: GoogleOAuthClient,
        code: str,
        *,
        session: Session,
        session_ceiling: timedelta,
        refresh_lifetime: timedelta,
        now: Optional[datetime] = None,
) -> LoginResult:
    """
    Complete the authorization-code flow and persist user, session and
    refresh token.

    Every provider call and the expiry check happen before the first write,
    so an UpstreamAuthError or MissingExpiryError leaves no trace.

    Writes are sequential and not atomic together:
      - StoreError on the user or session upsert propagates (no usable session).
      - StoreError on the refresh-token upsert is logged and swallowed: the
        session works but will not be silently renewed.
    """
    tokens = provider.exchange_code(code)
    profile = provider.fetch_profile(tokens.access_token)

    now = now or utcnow()
    expires_at = session_expiry(now, tokens.expires_in, session_ceiling)
    handle = SessionHandle.from_tokens(tokens)

    user_id = store.upsert_user(profile.email, profile.name, session=session)
    store.upsert_session(user_id, handle.value, expires_at, session=session)

    renewable = False
    if tokens.refresh_token:
        try:
            store.upsert_refresh_token(
                user_id,
                tokens.refresh_token,
                now + refresh_lifetime,
                session=session,
            )
            renewable = True
        except StoreError:
            logger.warning("refresh token not saved for user %s; session will not renew", user_id)
    else:
        logger.info("provider returned no refresh token for user %s; session will not renew", user_id)

    return LoginResult(
        user_id=user_id,
        handle=handle,
        expires_at=expires_at,
        renewable=renewable,
    )


def renew_session(
        expired: SessionRecord,
        provider: GoogleOAuthClient,
        *,
        session: Session,
        gate: RenewalGate,
        session_ceiling: timedelta,
) -> Optional[RenewedSession]:
    """
    Renew an expired session with the user's refresh token.

    Returns None when the session cannot be renewed without the user:
    the row is gone, or the refresh token is missing or past its expiry.

    The replacement is registered with the gate before the new handle is
    committed, so a request still carrying the old handle can adopt it
    (see adopt_replaced) as soon as the old handle stops matching a row.

    Raises (session row untouched in every case):
      UpstreamAuthError  — provider unreachable or refused the refresh token
      MissingExpiryError — provider issued a token without a lifetime
      StoreError         — database failure
    """
    with gate.hold(expired.user_id):
        now = utcnow()
        current = store.find_session_by_user(expired.user_id, session=session)
        if current is None:
            return None

        if current.handle != expired.handle and not current.is_expired(now):
            return RenewedSession(
                user_id=current.user_id,
                handle=SessionHandle(current.handle),
                expires_at=current.expires_at,
                adopted=True,
            )

        refresh = store.find_refresh_token_by_user(current.user_id, session=session)
        if refresh is None or refresh.is_expired(now):
            return None

        tokens = provider.exchange_refresh_token(refresh.secret)
        renewed = RenewedSession(
            user_id=current.user_id,
            handle=SessionHandle.from_tokens(tokens),
            expires_at=session_expiry(now, tokens.expires_in, session_ceiling),
        )

        replaced = {expired.handle, current.handle}
        for old in replaced:
            gate.remember(old, renewed)
        try:
            store.update_session_handle(
                current.id, renewed.handle.value, renewed.expires_at, session=session,
            )
        except StoreError:
            for old in replaced:
                gate.forget(old)
            raise

    return renewed


def adopt_replaced(
        stale_handle: str,
        *,
        session: Session,
        gate: RenewalGate,
) -> Optional[RenewedSession]:
    """
    Resolve a handle that no longer matches any session row.

    Succeeds only when this process replaced that handle recently and the
    replacement is still the user's live session. A handle that was logged
    out, replaced again, or never issued returns None.
    """
    replacement = gate.replacement_for(stale_handle)
    if replacement is None:
        return None

    current = store.find_session_by_user(replacement.user_id, session=session)
    if current is None or current.handle != replacement.handle.value or current.is_expired(utcnow()):
        return None

    return RenewedSession(
        user_id=current.user_id,
        handle=SessionHandle(current.handle),
        expires_at=current.expires_at,
        adopted=True,
    )
