"""Background maintenance: expire open tasks whose deadline has passed."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.orm import sessionmaker

from nearhand.config import settings
from nearhand.services.tasks import expire_overdue_tasks

logger = logging.getLogger("nearhand.background")


async def run_once(session_factory: sessionmaker) -> int:
    async with session_factory() as session:
        return await expire_overdue_tasks(session)


async def background_loop(session_factory: sessionmaker) -> None:
    """Run maintenance every ``expire_poll_seconds``."""
    while True:
        try:
            expired = await run_once(session_factory)
            if expired:
                logger.info("BG: expired=%d", expired)
        except Exception:
            logger.exception("Background task error")
        await asyncio.sleep(settings.expire_poll_seconds)
