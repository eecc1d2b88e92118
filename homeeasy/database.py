"""Async SQLModel database setup."""

from __future__ import annotations

import logging
from pathlib import Path

import sqlalchemy
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

# Importing the rows registers their tables on SQLModel.metadata.
from homeeasy.db_models import (  # noqa: F401
    BidRow,
    ConversationMemberRow,
    ConversationRow,
    MessageReadRow,
    MessageRow,
    PaymentRow,
    ReviewRow,
    TaskRow,
    UserRow,
)

logger = logging.getLogger("homeeasy.database")

_engine = None
_session_factory = None

# Absolute path to the migrations directory (sibling of homeeasy/ package)
_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def async_url(database_url: str) -> str:
    """Accept either a SQLite SQLAlchemy URL or a bare SQLite file path."""
    if "://" in database_url:
        if make_url(database_url).get_backend_name() != "sqlite":
            raise ValueError("Only SQLite databases are supported")
        return database_url
    Path(database_url).parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{database_url}"


def mask_url(url: str) -> str:
    if "://" not in url:
        return url
    return make_url(url).render_as_string(hide_password=True)


async def init_db(url: str = "sqlite+aiosqlite:///homeeasy.db") -> sessionmaker:
    global _engine, _session_factory
    connect_args = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    _engine = create_async_engine(url, echo=False, connect_args=connect_args, pool_pre_ping=True)
    _session_factory = sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async with _engine.begin() as conn:
        if "sqlite" in url:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
        await _run_alembic_upgrade(conn)

    logger.info("Database ready at %s", mask_url(url))
    return _session_factory


async def _run_alembic_upgrade(conn) -> None:
    """Run Alembic migrations using the existing async connection.

    A database that already has the tables but no ``alembic_version`` (built
    with ``create_all``) is stamped at the baseline before upgrading.
    """
    from alembic import command
    from alembic.config import Config

    def _do_upgrade(sync_conn):
        from alembic.migration import MigrationContext
        from alembic.script import ScriptDirectory

        alembic_cfg = Config()
        alembic_cfg.set_main_option("script_location", str(_MIGRATIONS_DIR))
        # Pass connection so env.py uses it instead of creating a new engine
        alembic_cfg.attributes["connection"] = sync_conn

        current_rev = MigrationContext.configure(sync_conn).get_current_revision()
        existing_tables = set(sqlalchemy.inspect(sync_conn).get_table_names())

        if "users" in existing_tables and "alembic_version" not in existing_tables:
            logger.info("Existing database without Alembic tracking; stamping baseline 001")
            command.stamp(alembic_cfg, "001")
            command.upgrade(alembic_cfg, "head")
            return

        head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current_rev != head_rev:
            logger.info("Upgrading database from %s to %s", current_rev or "(empty)", head_rev)
            command.upgrade(alembic_cfg, "head")
        else:
            logger.debug("Database schema is up to date at revision %s", current_rev)

    # Alembic's command API is synchronous; run_sync bridges the gap
    await conn.run_sync(_do_upgrade)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
