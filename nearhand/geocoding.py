"""Reverse geocoding: coordinates to a short, human-readable address.

Addresses are a display cache. Resolution is best-effort: any collaborator
failure, timeout or unusable response yields ``ADDRESS_UNAVAILABLE`` so task
creation and location saves never block on the geocoder.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import NamedTuple, Protocol

import httpx

from nearhand.config import settings

logger = logging.getLogger("nearhand.geocoding")

ADDRESS_UNAVAILABLE = "Address unavailable"
ADDRESS_COMPONENTS = 3

_POSTAL_CODE_RE = re.compile(r"\b\d{5}\b")
_DIGIT_RE = re.compile(r"\d")


class ResolvedAddress(NamedTuple):
    address: str
    city: str | None
    postal_code: str | None


class GeocodingError(Exception):
    """Raised by geocoder clients when a lookup cannot produce an address."""


class ReverseGeocoder(Protocol):
    async def reverse_geocode(self, lat: float, lng: float) -> str: ...


class NominatimClient:
    """Reverse geocoder backed by the OpenStreetMap Nominatim API."""

    def __init__(
        self,
        base_url: str | None = None,
        user_agent: str | None = None,
        language: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.geocoder_url
        self.user_agent = user_agent or settings.geocoder_user_agent
        self.language = language or settings.geocoder_language
        self.timeout = timeout or settings.geocoder_timeout_seconds
        self._transport = transport

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "zoom": 18,
            "addressdetails": 1,
            "accept-language": self.language,
        }
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.get(
                self.base_url,
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        if resp.status_code != 200:
            raise GeocodingError(f"Nominatim returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise GeocodingError("Nominatim returned invalid JSON") from e
        display_name = data.get("display_name") if isinstance(data, dict) else None
        if not isinstance(display_name, str) or not display_name.strip():
            raise GeocodingError("Nominatim response has no display_name")
        return display_name


def shorten_address(raw: str, components: int = ADDRESS_COMPONENTS) -> str:
    """Keep the most specific ``components`` parts of a comma-separated address."""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    return ", ".join(parts[:components])


def extract_city(address: str | None, country: str | None = None) -> str | None:
    """First component that looks like a place name: no digits, not the country."""
    if not address or address == ADDRESS_UNAVAILABLE:
        return None
    country_name = (country or settings.default_country).lower()
    for part in (p.strip() for p in address.split(",")):
        if len(part) > 2 and not _DIGIT_RE.search(part) and country_name not in part.lower():
            return part
    return None


def extract_postal_code(address: str | None) -> str | None:
    if not address:
        return None
    match = _POSTAL_CODE_RE.search(address)
    return match.group(0) if match else None


class GeoResolver:
    def __init__(self, client: ReverseGeocoder | None = None, timeout: float | None = None):
        self.client = client or NominatimClient()
        self.timeout = timeout or settings.geocoder_timeout_seconds

    async def _lookup(self, lat: float, lng: float) -> str | None:
        try:
            async with asyncio.timeout(self.timeout):
                raw = await self.client.reverse_geocode(lat, lng)
        except TimeoutError:
            logger.warning("Reverse geocoding timed out for (%.5f, %.5f)", lat, lng)
            return None
        except Exception as e:
            logger.warning("Reverse geocoding failed for (%.5f, %.5f): %s", lat, lng, e)
            return None

        if not isinstance(raw, str) or not raw.strip():
            logger.warning("Reverse geocoder returned unusable value %r", raw)
            return None
        return raw

    async def resolve_address(self, lat: float, lng: float) -> str:
        """Resolve coordinates to a short address, or ``ADDRESS_UNAVAILABLE``."""
        raw = await self._lookup(lat, lng)
        if raw is None:
            return ADDRESS_UNAVAILABLE
        return shorten_address(raw) or ADDRESS_UNAVAILABLE

    async def resolve_details(self, lat: float, lng: float) -> ResolvedAddress:
        """Short address plus city and postal code parsed from the full result."""
        raw = await self._lookup(lat, lng)
        if raw is None:
            return ResolvedAddress(ADDRESS_UNAVAILABLE, None, None)
        return ResolvedAddress(
            shorten_address(raw) or ADDRESS_UNAVAILABLE,
            extract_city(raw),
            extract_postal_code(raw),
        )


def is_resolved(address: str | None) -> bool:
    return bool(address) and address != ADDRESS_UNAVAILABLE


def get_geo_resolver() -> GeoResolver:
    """FastAPI dependency; tests override it with a fake client."""
    return GeoResolver()
