"""
models/session.py — Session table definition.

One row per user (UNIQUE user_id). The session_id column holds the session
handle, the value carried inside the encrypted `sid` cookie, and is the only
way a request authenticates. Login upserts the row, renewal replaces
session_id + expires_at in place, logout deletes it.

FK policy: user_id ON DELETE CASCADE — the session is owned by the user.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authgate.app.extensions import db


class Session(db.Model):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,  # target of INSERT ... ON CONFLICT (user_id)
    )

    # Provider access tokens can be long; 2048 leaves headroom.
    session_id: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
        unique=True,
    )

    # Authoritative expiry. The cookie's own Max-Age is never trusted.
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="session",
    )

    def __repr__(self) -> str:  # pragma: no cover
        # session_id is a secret; never include it here.
        return f"<Session id={self.id} user_id={self.user_id} expires_at={self.expires_at}>"
