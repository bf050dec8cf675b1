"""
authgate/migrations/env.py — Alembic environment for the credential tables.

Migrates users, sessions and refresh_tokens. The database URL is resolved in
this order:

    alembic -x db_url=postgresql://...  upgrade head   (explicit override)
    TEST_DATABASE_URL                                   (when TEST_RUN is set)
    DATABASE_URL

The project .env is loaded first, the same file authgate/config.py reads.
SQLite targets run in batch mode, since SQLite cannot ALTER most constraints
in place.
"""

from __future__ import annotations

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv(Path(__file__).resolve().parents[2] / ".env")

# Models must be imported for their tables to land on db.metadata.
from authgate.app.extensions import db  # noqa: E402
from authgate.app.models import refresh_token, session, user  # noqa: E402,F401

target_metadata = db.metadata
config = context.config


def _database_url() -> str:
    url = context.get_x_argument(as_dictionary=True).get("db_url")
    if not url:
        name = "TEST_DATABASE_URL" if os.getenv("TEST_RUN") else "DATABASE_URL"
        url = os.getenv(name)
        if not url:
            raise RuntimeError(f"{name} is not set; pass -x db_url=... or export it.")
    # Hosted Postgres providers hand out 'postgres://', which SQLAlchemy rejects.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


db_url = _database_url()
# ConfigParser interpolation: a literal % in a password must be doubled.
config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": db_url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    context.configure(
        url=db_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
