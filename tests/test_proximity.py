"""Distance, staleness and bounding-box math."""

from __future__ import annotations

import math

import pytest

from nearhand.models import Location
from nearhand.proximity import (
    Coordinates,
    bounding_box,
    distance_km,
    format_distance,
    is_stale,
    within_radius,
)
from tests.conftest import LYON, PARIS


def test_same_point_is_zero():
    assert distance_km(PARIS, PARIS) == 0


def test_quarter_meridian():
    assert distance_km((0, 0), (0, 90)) == pytest.approx(10007.5, abs=0.1)


def test_paris_lyon():
    assert distance_km(PARIS, LYON) == pytest.approx(392, abs=2)


def test_symmetric():
    assert distance_km(PARIS, LYON) == pytest.approx(distance_km(LYON, PARIS))


def test_accepts_location_objects():
    a = Location(lat=PARIS[0], lng=PARIS[1])
    b = Coordinates(*LYON)
    assert distance_km(a, b) == pytest.approx(distance_km(PARIS, LYON))


def test_none_point_rejected():
    with pytest.raises(ValueError):
        distance_km(None, PARIS)


def test_within_radius_zero_only_exact_point():
    assert within_radius(PARIS, PARIS, 0)
    assert not within_radius(PARIS, (PARIS[0] + 0.0001, PARIS[1]), 0)


class TestIsStale:
    def test_missing_side_is_never_stale(self):
        assert not is_stale(None, PARIS)
        assert not is_stale(PARIS, None)
        assert not is_stale(None, None)

    def test_short_move_is_not_stale(self):
        # ~1.1 km north
        assert not is_stale(PARIS, (PARIS[0] + 0.01, PARIS[1]))

    def test_long_move_is_stale(self):
        assert is_stale(PARIS, LYON)

    def test_custom_threshold(self):
        nearby = (PARIS[0] + 0.01, PARIS[1])
        assert is_stale(PARIS, nearby, threshold_km=0.5)


@pytest.mark.parametrize(
    "km,expected",
    [
        (0.0, "< 1 km"),
        (0.999, "< 1 km"),
        (1.0, "1.0 km"),
        (3.46, "3.5 km"),
        (12.4, "12 km"),
        (392.0, "392 km"),
    ],
)
def test_format_distance(km, expected):
    assert format_distance(km) == expected


class TestBoundingBox:
    def test_contains_points_on_the_circle(self):
        radius = 25.0
        min_lat, max_lat, min_lng, max_lng = bounding_box(PARIS, radius)
        # Walk the circle and make sure every point falls inside the box
        lat1 = math.radians(PARIS[0])
        lng1 = math.radians(PARIS[1])
        delta = radius / 6371.0
        for step in range(36):
            bearing = math.radians(step * 10)
            lat2 = math.asin(
                math.sin(lat1) * math.cos(delta)
                + math.cos(lat1) * math.sin(delta) * math.cos(bearing)
            )
            lng2 = lng1 + math.atan2(
                math.sin(bearing) * math.sin(delta) * math.cos(lat1),
                math.cos(delta) - math.sin(lat1) * math.sin(lat2),
            )
            lat, lng = math.degrees(lat2), math.degrees(lng2)
            assert min_lat <= lat <= max_lat
            assert min_lng <= lng <= max_lng

    def test_zero_radius_contains_origin(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(PARIS, 0)
        assert min_lat <= PARIS[0] <= max_lat
        assert min_lng <= PARIS[1] <= max_lng

    def test_polar_origin_spans_all_longitudes(self):
        _, max_lat, min_lng, max_lng = bounding_box((89.9, 0), 50)
        assert max_lat == 90.0
        assert (min_lng, max_lng) == (-180.0, 180.0)

    def test_antimeridian_spans_all_longitudes(self):
        _, _, min_lng, max_lng = bounding_box((0, 179.99), 10)
        assert (min_lng, max_lng) == (-180.0, 180.0)
