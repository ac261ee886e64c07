"""Authentication: bcrypt hashing with fingerprint-based DB lookup."""

from __future__ import annotations

import hashlib

import bcrypt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from nearhand.database import get_db_session
from nearhand.db_models import Profile


def hash_key(key: str) -> str:
    return bcrypt.hashpw(key.encode(), bcrypt.gensalt()).decode()


def verify_key(key: str, key_hash: str) -> bool:
    return bcrypt.checkpw(key.encode(), key_hash.encode())


def key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def get_current_profile(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Profile:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    raw_key = auth[7:]
    fp = key_fingerprint(raw_key)

    result = await session.execute(select(Profile).where(Profile.key_fingerprint == fp))
    profile = result.scalar_one_or_none()

    if not profile or not verify_key(raw_key, profile.key_hash):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return profile


AuthProfile = Depends(get_current_profile)
