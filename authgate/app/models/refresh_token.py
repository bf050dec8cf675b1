"""
models/refresh_token.py — RefreshToken table definition.

Holds the provider-issued refresh secret used to mint new access tokens
without user interaction. One row per user, upserted on login and deleted
on logout. The provider does not report refresh-token lifetimes, so
expires_at is set from REFRESH_TOKEN_LIFETIME.

FK policy: user_id ON DELETE CASCADE — token is destroyed with its user.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authgate.app.extensions import db


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,  # target of INSERT ... ON CONFLICT (user_id)
    )

    # Stored verbatim: the raw value is needed to call the provider.
    refresh_token: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_token",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RefreshToken id={self.id} user_id={self.user_id}>"
