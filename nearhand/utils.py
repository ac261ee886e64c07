"""Small helpers shared by services and routes."""

from __future__ import annotations

import enum
import json
from datetime import UTC, datetime


def safe_json_loads(raw: str | None):
    """Decode a JSON column, returning None for empty or corrupt values."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def status_str(status) -> str:
    if isinstance(status, enum.Enum):
        return status.value
    return str(status)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def iso(dt: datetime | None) -> str | None:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None
