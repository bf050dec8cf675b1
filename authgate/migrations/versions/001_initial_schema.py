"""Initial schema — users, sessions, refresh_tokens.

Revision: 001_initial_schema

Append-only:
  This file must never be edited after it has been applied to any database.
  Schema changes go in a NEW migration file.

Creation order (FK dependency): users → sessions, refresh_tokens

ON DELETE policies:
  sessions.user_id        → CASCADE  (session owned by user)
  refresh_tokens.user_id  → CASCADE  (token owned by user)

sessions.user_id and refresh_tokens.user_id are UNIQUE: one row per user,
and the conflict target of the login upserts.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration, no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("handle", sa.String(50), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("handle", name="uq_users_handle"),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # ── sessions ───────────────────────────────────────────────────────────
    # session_id holds the session handle; it is the per-request lookup key.

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_sessions_user"),
            nullable=False,
        ),
        sa.Column("session_id", sa.String(2048), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sessions"),
        sa.UniqueConstraint("user_id", name="uq_sessions_user"),
        sa.UniqueConstraint("session_id", name="uq_sessions_session_id"),
    )

    # ── refresh_tokens ─────────────────────────────────────────────────────

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("refresh_token", sa.String(2048), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("user_id", name="uq_refresh_tokens_user"),
    )


def downgrade() -> None:
    """Local development reset only. In production, write a corrective migration."""
    op.drop_table("refresh_tokens")
    op.drop_table("sessions")
    op.drop_table("users")
