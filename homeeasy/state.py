"""Application state: the store plus the live fan-out objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from homeeasy.config import settings
from homeeasy.database import async_url, init_db, mask_url
from homeeasy.events import ConnectionHub, Notifier
from homeeasy.presence import Presence
from homeeasy.storage.base import Store
from homeeasy.storage.memory import MemoryStore
from homeeasy.storage.sql import SqlStore

logger = logging.getLogger("homeeasy.state")


@dataclass
class AppState:
    """Runtime application state."""

    store: Store
    presence: Presence
    hub: ConnectionHub
    notifier: Notifier
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds()


def build_state(store: Store) -> AppState:
    presence = Presence()
    hub = ConnectionHub()
    return AppState(store=store, presence=presence, hub=hub, notifier=Notifier(hub, presence))


async def open_store() -> Store:
    """Open the configured store, falling back to memory when allowed."""
    if settings.storage_backend == "memory":
        logger.info("Using in-memory store")
        return MemoryStore()

    url = settings.database_url
    try:
        url = async_url(url)
        return SqlStore(await init_db(url))
    except (SQLAlchemyError, OSError):
        if not settings.memory_fallback:
            raise
        logger.warning(
            "Database at %s unavailable, falling back to in-memory store",
            mask_url(url),
            exc_info=True,
        )
        return MemoryStore()


def get_services(request: Request) -> AppState:
    return request.app.state.services


Services = Depends(get_services)
