"""Per-session location store: device readings and the saved profile location."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NamedTuple, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from nearhand.config import settings
from nearhand.db_models import Profile
from nearhand.geocoding import GeoResolver, is_resolved
from nearhand.models import Location
from nearhand.proximity import distance_km, is_stale
from nearhand.utils import as_utc

logger = logging.getLogger("nearhand.locations")


class LocationFailure(str, enum.Enum):
    permission_denied = "PermissionDenied"
    position_unavailable = "PositionUnavailable"
    timeout = "Timeout"


class Position(NamedTuple):
    lat: float
    lng: float


class PositionError(Exception):
    def __init__(self, reason: LocationFailure, message: str | None = None):
        super().__init__(message or reason.value)
        self.reason = reason


class PositionProvider(Protocol):
    async def get_current_position(self, high_accuracy: bool, timeout_ms: int) -> Position: ...


_REPORTED_ERRORS = {
    "permission_denied": LocationFailure.permission_denied,
    "position_unavailable": LocationFailure.position_unavailable,
    "timeout": LocationFailure.timeout,
}


class ReportedPosition:
    """Position provider for a fix (or failure) the client reported with its request."""

    def __init__(self, lat: float | None = None, lng: float | None = None, error: str | None = None):
        self.lat = lat
        self.lng = lng
        self.error = error

    async def get_current_position(self, high_accuracy: bool, timeout_ms: int) -> Position:
        if self.error:
            reason = _REPORTED_ERRORS.get(self.error.lower(), LocationFailure.position_unavailable)
            raise PositionError(reason)
        if self.lat is None or self.lng is None:
            raise PositionError(LocationFailure.position_unavailable)
        return Position(self.lat, self.lng)


@dataclass(frozen=True)
class Reconciliation:
    current: Location | None
    saved: Location | None
    distance_km: float | None
    needs_update: bool


def _saved_from_profile(profile: Profile) -> Location | None:
    if profile.latitude is None or profile.longitude is None:
        return None
    return Location(
        lat=profile.latitude,
        lng=profile.longitude,
        address=profile.address,
        city=profile.city,
        postal_code=profile.postal_code,
        country=profile.country,
        captured_at=as_utc(profile.location_updated_at),
    )


class LocationStore:
    """Holds one user's current reading for the lifetime of a request/session.

    Nothing here is process-wide; build a new store per request.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_id: str,
        provider: PositionProvider | None = None,
        resolver: GeoResolver | None = None,
        timeout: float | None = None,
        stale_threshold_km: float | None = None,
    ):
        self.session = session
        self.user_id = user_id
        self.provider = provider
        self.resolver = resolver
        self.timeout = timeout or settings.geolocation_timeout_seconds
        self.stale_threshold_km = (
            stale_threshold_km if stale_threshold_km is not None else settings.stale_threshold_km
        )
        self.current: Location | None = None
        self.last_failure: LocationFailure | None = None

    async def get_current(self, high_accuracy: bool = True) -> Location | None:
        """Fresh device reading, or None with ``last_failure`` set. No retry."""
        self.last_failure = None
        if self.provider is None:
            self.last_failure = LocationFailure.position_unavailable
            return None
        try:
            async with asyncio.timeout(self.timeout):
                position = await self.provider.get_current_position(
                    high_accuracy, int(self.timeout * 1000)
                )
            location = Location(lat=position.lat, lng=position.lng, captured_at=datetime.now(UTC))
        except TimeoutError:
            self.last_failure = LocationFailure.timeout
        except PositionError as e:
            self.last_failure = e.reason
        except Exception as e:
            logger.warning("Position provider failed for %s: %s", self.user_id, e)
            self.last_failure = LocationFailure.position_unavailable
        if self.last_failure is not None:
            logger.info("No current position for %s: %s", self.user_id, self.last_failure.value)
            self.current = None
            return None

        if self.resolver is not None:
            details = await self.resolver.resolve_details(location.lat, location.lng)
            if is_resolved(details.address):
                location.address = details.address
                location.city = details.city
                location.postal_code = details.postal_code
        self.current = location
        return location

    async def get_saved(self, user_id: str | None = None) -> Location | None:
        profile = await self.session.get(Profile, user_id or self.user_id)
        if profile is None:
            return None
        await self.session.refresh(profile)
        return _saved_from_profile(profile)

    async def save(self, user_id: str | None, location: Location) -> Location | None:
        """Upsert the saved location, stamping captured_at.

        Saving the same point twice only moves the timestamp. A cached
        address is kept while the coordinates stay the same and re-resolved
        when they change. Returns None when the profile does not exist.
        """
        profile = await self.session.get(Profile, user_id or self.user_id)
        if profile is None:
            return None
        previous = _saved_from_profile(profile)

        address = location.address if is_resolved(location.address) else None
        city = location.city
        postal_code = location.postal_code
        if address is None and location.same_point(previous):
            address = previous.address
            city = city or previous.city
            postal_code = postal_code or previous.postal_code
        if address is None and self.resolver is not None:
            details = await self.resolver.resolve_details(location.lat, location.lng)
            if is_resolved(details.address):
                address = details.address
                city = city or details.city
                postal_code = postal_code or details.postal_code

        profile.latitude = location.lat
        profile.longitude = location.lng
        profile.address = address
        profile.city = city
        profile.postal_code = postal_code
        profile.country = location.country or (previous.country if previous else None) or (
            settings.default_country
        )
        profile.location_updated_at = datetime.now(UTC)
        self.session.add(profile)
        await self.session.commit()
        logger.info("Saved location for %s at (%.5f, %.5f)", profile.id, location.lat, location.lng)
        return _saved_from_profile(profile)

    async def reconcile(self) -> Reconciliation:
        """Compare the current reading against the saved location."""
        current = self.current or await self.get_current()
        saved = await self.get_saved()
        distance = distance_km(current, saved) if current and saved else None
        return Reconciliation(
            current=current,
            saved=saved,
            distance_km=distance,
            needs_update=is_stale(current, saved, self.stale_threshold_km),
        )

    async def update_with_current(self) -> Location | None:
        """Replace the saved location with a fresh device reading."""
        current = await self.get_current()
        if current is None:
            return None
        return await self.save(self.user_id, current)
