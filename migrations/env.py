"""Alembic environment for the HomeEasy schema.

At startup ``homeeasy.database`` hands over its live connection through
``config.attributes["connection"]``; from the command line a synchronous
engine is built from ``sqlalchemy.url`` or ``HOMEEASY_DATABASE_URL``.
SQLite cannot ALTER most things in place, so every context runs in batch mode.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlmodel import SQLModel

from homeeasy.db_models import *  # noqa: F401, F403

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def _sync_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url

    from homeeasy.config import settings

    if "://" not in settings.database_url:
        return f"sqlite:///{settings.database_url}"
    return settings.database_url.replace("+aiosqlite", "")


def _migrate(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit the migration SQL instead of executing it."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    injected = config.attributes.get("connection")
    if injected is not None:
        _migrate(injected)
        return

    engine = create_engine(_sync_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _migrate(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
