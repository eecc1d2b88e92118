"""Periodic maintenance of in-process state."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from homeeasy.config import settings
from homeeasy.state import AppState

logger = logging.getLogger("homeeasy.background")


def prune_presence(services: AppState) -> int:
    """Drop last-seen stamps of users offline for longer than the retention window."""
    return services.presence.prune(timedelta(hours=settings.presence_retention_hours))


async def background_loop(services: AppState) -> None:
    """Run maintenance every ``presence_cleanup_interval_seconds``."""
    while True:
        try:
            pruned = prune_presence(services)
            if pruned:
                logger.info("BG: pruned=%d, online=%d", pruned, services.presence.online_count())
        except Exception:
            logger.exception("Background task error")
        await asyncio.sleep(settings.presence_cleanup_interval_seconds)
