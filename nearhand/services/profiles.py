"""Profile registration."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from nearhand.auth import hash_key, key_fingerprint
from nearhand.db_models import Profile
from nearhand.ids import api_key, profile_id

logger = logging.getLogger("nearhand.profiles")


async def register(session: AsyncSession, name: str) -> dict:
    """Register a new profile. Returns profile_id and the raw API key."""
    pid = profile_id()
    key = api_key()
    profile = Profile(id=pid, name=name, key_hash=hash_key(key), key_fingerprint=key_fingerprint(key))
    session.add(profile)
    await session.commit()
    logger.info("Registered profile %s", pid)
    return {"profile_id": pid, "api_key": key}
