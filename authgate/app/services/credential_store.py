"""
services/credential_store.py — all reads and writes of users, sessions and
refresh tokens.

Layer rules:
  - No imports from routes, middleware or schemas.
  - No use of flask.request, flask.g, or HTTP status codes.
  - Every public function is its own unit of work: it commits on success and
    rolls back on failure. No transaction spans two calls, so callers must
    tolerate partial progress across a sequence of calls (see
    session_service.provision_login).

Outcomes:
  - A missing row is None, never an exception.
  - Any SQLAlchemyError (connectivity, constraint violation) becomes
    StoreError.

Results are frozen dataclasses, not ORM instances: the middleware and the
extractor hand them across the request without touching the ORM session
again. Reads select plain columns, so a re-read after another thread's
commit always sees fresh values rather than the identity map's copy.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authgate.app.errors import StoreError
from authgate.app.models.refresh_token import RefreshToken
from authgate.app.models.session import Session as SessionRow
from authgate.app.models.user import User

logger = logging.getLogger(__name__)


# ── Records ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionRecord:
    id: int
    user_id: int
    handle: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"SessionRecord(id={self.id}, user_id={self.user_id}, "
            f"handle=<redacted>, expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class RefreshTokenRecord:
    id: int
    user_id: int
    secret: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"RefreshTokenRecord(id={self.id}, user_id={self.user_id}, "
            f"secret=<redacted>, expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class UserProfile:
    id: int
    email: str
    name: str
    handle: Optional[str]
    created_at: datetime


# ── Private helpers ────────────────────────────────────────────────────────

def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@contextmanager
def _unit_of_work(session: Session, action: str) -> Iterator[None]:
    try:
        yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("credential store %s failed: %s", action, type(exc).__name__)
        raise StoreError(f"The credential store could not {action}.") from exc


def _insert_for(session: Session, model):
    """INSERT construct with ON CONFLICT support for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise StoreError(f"Unsupported database dialect for upserts: {dialect}.")


# ── Writes ─────────────────────────────────────────────────────────────────

def upsert_user(email: str, name: str, *, session: Session) -> int:
    """
    Create the user if no row has this email; return the user id either way.
    An existing user's name is left untouched.
    """
    stmt = (
        _insert_for(session, User)
        .values(email=email, name=name)
        .on_conflict_do_nothing(index_elements=["email"])
    )
    with _unit_of_work(session, "save the user"):
        session.execute(stmt)
        user_id = session.execute(
            select(User.id).where(User.email == email)
        ).scalar_one()
    return user_id


def upsert_session(
        user_id: int,
        handle: str,
        expires_at: datetime,
        *,
        session: Session,
) -> None:
    """Replace any existing session row for this user."""
    insert = _insert_for(session, SessionRow)
    stmt = insert.values(
        user_id=user_id,
        session_id=handle,
        expires_at=expires_at,
    ).on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "session_id": insert.excluded.session_id,
            "expires_at": insert.excluded.expires_at,
        },
    )
    with _unit_of_work(session, "save the session"):
        session.execute(stmt)


def upsert_refresh_token(
        user_id: int,
        secret: str,
        expires_at: datetime,
        *,
        session: Session,
) -> None:
    """Replace any existing refresh-token row for this user."""
    insert = _insert_for(session, RefreshToken)
    stmt = insert.values(
        user_id=user_id,
        refresh_token=secret,
        expires_at=expires_at,
    ).on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "refresh_token": insert.excluded.refresh_token,
            "expires_at": insert.excluded.expires_at,
        },
    )
    with _unit_of_work(session, "save the refresh token"):
        session.execute(stmt)


def update_session_handle(
        session_id: int,
        new_handle: str,
        new_expires_at: datetime,
        *,
        session: Session,
) -> None:
    """Swap the handle and expiry of an existing session row in place."""
    stmt = (
        update(SessionRow)
        .where(SessionRow.id == session_id)
        .values(session_id=new_handle, expires_at=new_expires_at)
        .execution_options(synchronize_session=False)
    )
    with _unit_of_work(session, "update the session"):
        session.execute(stmt)


def delete_session(user_id: int, *, session: Session) -> None:
    stmt = (
        delete(SessionRow)
        .where(SessionRow.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    with _unit_of_work(session, "delete the session"):
        session.execute(stmt)


def delete_refresh_token(user_id: int, *, session: Session) -> None:
    stmt = (
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    with _unit_of_work(session, "delete the refresh token"):
        session.execute(stmt)


# ── Reads ──────────────────────────────────────────────────────────────────

_SESSION_COLUMNS = (
    SessionRow.id,
    SessionRow.user_id,
    SessionRow.session_id,
    SessionRow.expires_at,
)


def _session_record(row) -> Optional[SessionRecord]:
    if row is None:
        return None
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        handle=row.session_id,
        expires_at=_as_utc(row.expires_at),
    )


def find_session_by_handle(handle: str, *, session: Session) -> Optional[SessionRecord]:
    with _unit_of_work(session, "read the session"):
        row = session.execute(
            select(*_SESSION_COLUMNS).where(SessionRow.session_id == handle)
        ).first()
    return _session_record(row)


def find_session_by_user(user_id: int, *, session: Session) -> Optional[SessionRecord]:
    with _unit_of_work(session, "read the session"):
        row = session.execute(
            select(*_SESSION_COLUMNS).where(SessionRow.user_id == user_id)
        ).first()
    return _session_record(row)


def find_refresh_token_by_user(user_id: int, *, session: Session) -> Optional[RefreshTokenRecord]:
    with _unit_of_work(session, "read the refresh token"):
        row = session.execute(
            select(
                RefreshToken.id,
                RefreshToken.user_id,
                RefreshToken.refresh_token,
                RefreshToken.expires_at,
            ).where(RefreshToken.user_id == user_id)
        ).first()
    if row is None:
        return None
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        secret=row.refresh_token,
        expires_at=_as_utc(row.expires_at),
    )


def find_user_profile_by_session_handle(handle: str, *, session: Session) -> Optional[UserProfile]:
    """Join sessions → users on the handle; the extractor's only query."""
    with _unit_of_work(session, "read the user profile"):
        row = session.execute(
            select(User.id, User.email, User.name, User.handle, User.created_at)
            .join(SessionRow, SessionRow.user_id == User.id)
            .where(SessionRow.session_id == handle)
            .limit(1)
        ).first()
    if row is None:
        return None
    return UserProfile(
        id=row.id,
        email=row.email,
        name=row.name,
        handle=row.handle,
        created_at=_as_utc(row.created_at),
    )
