"""Tests for the pure geodesic helpers."""

import math

import pytest

from civicguard.errors import InvalidCoordinate
from civicguard.geo.proximity import (
    Coordinate,
    bearing_degrees,
    bounding_box,
    distance_km,
    km_to_meters,
    normalize_coordinate,
    validate_coordinate,
)


def test_validate_coordinate_bounds():
    assert validate_coordinate(0, 0)
    assert validate_coordinate(90, 180)
    assert validate_coordinate(-90, -180)
    assert not validate_coordinate(90.0001, 0)
    assert not validate_coordinate(0, -180.0001)


def test_validate_coordinate_rejects_non_numbers():
    assert not validate_coordinate("40.7", -74.0)
    assert not validate_coordinate(None, 0)
    assert not validate_coordinate(True, 0)
    assert not validate_coordinate(math.nan, 0)
    assert not validate_coordinate(0, math.inf)


def test_normalize_rounds_to_eight_places():
    c = normalize_coordinate(40.712812345678, -74.006012345678)
    assert c.latitude == 40.71281235
    assert c.longitude == -74.00601235


def test_normalize_never_clamps():
    with pytest.raises(InvalidCoordinate) as exc_info:
        normalize_coordinate(91, 0)
    assert exc_info.value.details["latitude"] == 91


def test_invalid_coordinate_details_are_json_safe():
    with pytest.raises(InvalidCoordinate) as exc_info:
        Coordinate(math.nan, 0)
    assert exc_info.value.details["latitude"] == "nan"


def test_distance_to_self_is_zero():
    p = Coordinate(51.5074, -0.1278)
    assert distance_km(p, p) == 0.0


def test_distance_is_symmetric():
    a = Coordinate(40.7128, -74.0060)
    b = Coordinate(34.0522, -118.2437)
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))
    # New York to Los Angeles is roughly 3936 km on a sphere
    assert distance_km(a, b) == pytest.approx(3936, rel=0.01)


def test_one_degree_of_latitude():
    d = distance_km(Coordinate(0, 0), Coordinate(1, 0))
    assert d == pytest.approx(111.195, abs=0.01)


def test_antipodes():
    d = distance_km(Coordinate(0, 0), Coordinate(0, 180))
    assert d == pytest.approx(math.pi * 6371.0088)


def test_bounding_box_contains_circle():
    center = Coordinate(40.7128, -74.0060)
    box = bounding_box(center, 5)
    # Sample points on the circle's edge in every direction.
    for bearing in range(0, 360, 15):
        lat1 = math.radians(center.latitude)
        lng1 = math.radians(center.longitude)
        ang = 5 / 6371.0088
        b = math.radians(bearing)
        lat2 = math.asin(math.sin(lat1) * math.cos(ang) + math.cos(lat1) * math.sin(ang) * math.cos(b))
        lng2 = lng1 + math.atan2(
            math.sin(b) * math.sin(ang) * math.cos(lat1),
            math.cos(ang) - math.sin(lat1) * math.sin(lat2),
        )
        edge = Coordinate(math.degrees(lat2), math.degrees(lng2))
        assert box.contains(edge), bearing


def test_bounding_box_near_pole_covers_all_longitudes():
    box = bounding_box(Coordinate(89.99, 0), 5)
    assert box.north == 90.0
    assert box.west == -180.0
    assert box.east == 180.0
    assert box.contains(Coordinate(89.995, 179.0))


def test_bounding_box_across_antimeridian():
    box = bounding_box(Coordinate(0, 179.99), 5)
    assert box.crosses_antimeridian
    assert box.contains(Coordinate(0, -179.99))
    assert box.contains(Coordinate(0, 179.98))
    assert not box.contains(Coordinate(0, 0))


def test_bounding_box_zero_radius():
    c = Coordinate(10, 10)
    box = bounding_box(c, 0)
    assert box.contains(c)


def test_bounding_box_rejects_negative_radius():
    with pytest.raises(ValueError):
        bounding_box(Coordinate(0, 0), -1)


def test_bearing_cardinal_directions():
    origin = Coordinate(0, 0)
    assert bearing_degrees(origin, Coordinate(1, 0)) == pytest.approx(0.0)
    assert bearing_degrees(origin, Coordinate(0, 1)) == pytest.approx(90.0)
    assert bearing_degrees(origin, Coordinate(-1, 0)) == pytest.approx(180.0)
    assert bearing_degrees(origin, Coordinate(0, -1)) == pytest.approx(270.0)


def test_bearing_range():
    b = bearing_degrees(Coordinate(10, 10), Coordinate(10, 10))
    assert 0.0 <= b < 360.0


def test_unit_conversions():
    assert km_to_meters(2.345) == 2345
