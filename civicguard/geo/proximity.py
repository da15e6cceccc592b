"""Pure geodesic helpers: validation, distance, bounding boxes and bearings.

All distances are great-circle distances on a sphere with the IUGG mean Earth
radius. Nothing in this module performs I/O.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from typing import Any

from civicguard.errors import InvalidCoordinate

EARTH_RADIUS_KM = 6371.0088

# Decimal places kept for stored / compared coordinates (~1.1 mm).
COORDINATE_PRECISION = 8

# Widening applied to bounding boxes so float rounding never cuts the circle.
_BOX_EPSILON_DEG = 1e-7


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_coordinate(latitude: Any, longitude: Any) -> bool:
    """Return True if both values are finite numbers inside WGS84 bounds."""
    return (
        _is_real(latitude)
        and _is_real(longitude)
        and -90.0 <= latitude <= 90.0
        and -180.0 <= longitude <= 180.0
    )


@dataclass(frozen=True)
class Coordinate:
    """A validated WGS84 point, normalized to eight decimal places."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not validate_coordinate(self.latitude, self.longitude):
            raise InvalidCoordinate(self.latitude, self.longitude)
        object.__setattr__(self, "latitude", round(float(self.latitude), COORDINATE_PRECISION))
        object.__setattr__(self, "longitude", round(float(self.longitude), COORDINATE_PRECISION))

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


def normalize_coordinate(latitude: Any, longitude: Any) -> Coordinate:
    """Validate and normalize a raw latitude/longitude pair.

    Raises :class:`InvalidCoordinate` for anything that is not a finite number
    inside bounds. Values are never clamped.
    """
    return Coordinate(latitude, longitude)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in degrees.

    ``west > east`` means the box crosses the antimeridian.
    """

    north: float
    south: float
    east: float
    west: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def contains(self, point: Coordinate) -> bool:
        if not (self.south <= point.latitude <= self.north):
            return False
        if self.crosses_antimeridian:
            return point.longitude >= self.west or point.longitude <= self.east
        return self.west <= point.longitude <= self.east


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two points using the haversine formula."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude) - math.radians(a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    """Smallest lat/lng box containing every point within *radius_km* of *center*.

    Used as a cheap pre-filter before exact distance checks: it may include
    points slightly outside the circle but never excludes one inside it.
    """
    if not _is_real(radius_km) or radius_km < 0:
        raise ValueError(f"radius_km must be a non-negative number, got {radius_km!r}")

    angular = radius_km / EARTH_RADIUS_KM
    delta_lat = math.degrees(angular)
    north = center.latitude + delta_lat + _BOX_EPSILON_DEG
    south = center.latitude - delta_lat - _BOX_EPSILON_DEG

    # A cap touching a pole covers every meridian.
    if north >= 90.0 or south <= -90.0 or angular >= math.pi / 2:
        return BoundingBox(
            north=min(north, 90.0),
            south=max(south, -90.0),
            east=180.0,
            west=-180.0,
        )

    ratio = math.sin(angular) / math.cos(math.radians(center.latitude))
    if ratio >= 1.0:
        return BoundingBox(north=north, south=south, east=180.0, west=-180.0)

    delta_lng = math.degrees(math.asin(ratio)) + _BOX_EPSILON_DEG
    if delta_lng >= 180.0:
        return BoundingBox(north=north, south=south, east=180.0, west=-180.0)

    west = center.longitude - delta_lng
    east = center.longitude + delta_lng
    if west < -180.0:
        west += 360.0
    if east > 180.0:
        east -= 360.0
    return BoundingBox(north=north, south=south, east=east, west=west)


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial great-circle bearing from *a* to *b*, in ``[0, 360)``."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lng = math.radians(b.longitude - a.longitude)

    y = math.sin(d_lng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lng)
    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and tiny negatives can round up to exactly 360.0
    return 0.0 if bearing >= 360.0 else bearing


def km_to_meters(km: float) -> int:
    return round(km * 1000)
