"""Great-circle distance and location staleness."""

from __future__ import annotations

import math
from typing import NamedTuple

EARTH_RADIUS_KM = 6371.0
DEFAULT_STALE_THRESHOLD_KM = 5.0

# Haversine of identical points is exactly 0, but coordinates that went
# through a float column can drift in the last bits.
DISTANCE_EPSILON_KM = 1e-9


class Coordinates(NamedTuple):
    lat: float
    lng: float


def as_coordinates(point) -> Coordinates:
    """Accept a Coordinates/Location-like object or a (lat, lng) pair."""
    if point is None:
        raise ValueError("point is required")
    if isinstance(point, tuple):
        lat, lng = point
        return Coordinates(float(lat), float(lng))
    return Coordinates(float(point.lat), float(point.lng))


def distance_km(a, b) -> float:
    """Haversine distance in kilometres between two points."""
    p1 = as_coordinates(a)
    p2 = as_coordinates(b)
    d_lat = math.radians(p2.lat - p1.lat)
    d_lng = math.radians(p2.lng - p1.lng)
    h = (
        math.sin(d_lat / 2) * math.sin(d_lat / 2)
        + math.cos(math.radians(p1.lat))
        * math.cos(math.radians(p2.lat))
        * math.sin(d_lng / 2)
        * math.sin(d_lng / 2)
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def within_radius(a, b, radius_km: float) -> bool:
    return distance_km(a, b) <= radius_km + DISTANCE_EPSILON_KM


def is_stale(current, saved, threshold_km: float = DEFAULT_STALE_THRESHOLD_KM) -> bool:
    """True when both locations exist and have drifted more than threshold_km apart."""
    if current is None or saved is None:
        return False
    return distance_km(current, saved) > threshold_km


def format_distance(km: float) -> str:
    if km < 1:
        return "< 1 km"
    if km < 10:
        return f"{km:.1f} km"
    return f"{round(km)} km"


def bounding_box(origin, radius_km: float) -> tuple[float, float, float, float]:
    """Return (min_lat, max_lat, min_lng, max_lng) enclosing the radius.

    Used as a cheap SQL pre-filter; the exact check is still haversine.
    Near the poles or across the antimeridian the longitude span is widened
    to the full range.
    """
    o = as_coordinates(origin)
    # Angular radius, padded so float rounding never excludes an edge point.
    delta = radius_km / EARTH_RADIUS_KM + 1e-9
    d_lat = math.degrees(delta)
    min_lat = max(-90.0, o.lat - d_lat)
    max_lat = min(90.0, o.lat + d_lat)

    cos_lat = math.cos(math.radians(o.lat))
    if min_lat <= -90.0 or max_lat >= 90.0 or math.sin(delta) >= cos_lat:
        return min_lat, max_lat, -180.0, 180.0
    d_lng = math.degrees(math.asin(math.sin(delta) / cos_lat))
    min_lng = o.lng - d_lng
    max_lng = o.lng + d_lng
    if min_lng < -180.0 or max_lng > 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, min_lng, max_lng
