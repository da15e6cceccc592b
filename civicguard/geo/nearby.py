"""Proximity search over visible issues.

Candidates come from a bounding-box query, then the exact great-circle
distance decides membership. Suppressed issues are never returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from civicguard.errors import ValidationFailed
from civicguard.geo.access import AccessGuard
from civicguard.geo.proximity import Coordinate, bearing_degrees, bounding_box, distance_km, km_to_meters
from civicguard.issues.models import Category, Issue, IssueStatus
from civicguard.store.sqlite_store import RecordStore


@dataclass(frozen=True)
class DistanceRange:
    label: str
    min_km: float
    max_km: float


DEFAULT_RANGES = (
    DistanceRange("Very Close", 0.0, 1.0),
    DistanceRange("Close", 1.0, 3.0),
    DistanceRange("Nearby", 3.0, 5.0),
)

STATISTICS_RADII = (1.0, 2.0, 3.0, 5.0)


@dataclass(frozen=True)
class NearbyIssue:
    issue: Issue
    distance_km: float
    bearing: float

    def to_dict(self) -> dict[str, Any]:
        data = self.issue.to_dict()
        data["distance_km"] = round(self.distance_km, 2)
        data["distance_meters"] = km_to_meters(self.distance_km)
        data["bearing"] = round(self.bearing, 1)
        return data


@dataclass
class NearbyPage:
    items: list[NearbyIssue]
    total: int
    limit: int
    offset: int
    radius_km: float
    center: Coordinate
    statuses: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass
class LocationStatistics:
    center: Coordinate
    total: int
    by_distance: dict[float, int]
    by_category: dict[str, int]
    by_status: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_distance": {f"within_{r:g}km": count for r, count in self.by_distance.items()},
            "by_category": dict(self.by_category),
            "by_status": dict(self.by_status),
            "user_location": self.center.to_dict(),
        }


def _parse_enums(enum_cls, values: Optional[Sequence[Any]], field_name: str) -> list:
    parsed = []
    for value in values or []:
        try:
            parsed.append(enum_cls(value))
        except ValueError:
            valid = ", ".join(m.value for m in enum_cls)
            raise ValidationFailed(field_name, f"Invalid {field_name} value '{value}'. Valid values are: {valid}") from None
    return parsed


class NearbySearch:
    def __init__(self, store: RecordStore, guard: Optional[AccessGuard] = None) -> None:
        self._store = store
        self._guard = guard or AccessGuard()

    def _within(
        self,
        center: Coordinate,
        radius_km: float,
        statuses: list[IssueStatus],
        categories: list[Category],
    ) -> list[NearbyIssue]:
        box = bounding_box(center, radius_km)
        found = []
        for issue in self._store.issues_in_box(box, statuses, categories):
            d = distance_km(center, issue.location)
            if d <= radius_km:
                found.append(NearbyIssue(issue, d, bearing_degrees(center, issue.location)))
        found.sort(key=lambda n: (n.distance_km, n.issue.created_at))
        return found

    def list_within_radius(
        self,
        center: Coordinate,
        radius_km: Optional[float] = None,
        statuses: Optional[Sequence[Any]] = None,
        categories: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> NearbyPage:
        """Visible issues within *radius_km* of *center*, nearest first."""
        cfg = self._guard.config
        radius = self._guard.validate_list_radius(radius_km)
        status_list = _parse_enums(IssueStatus, statuses, "status")
        category_list = _parse_enums(Category, categories, "category")
        limit = cfg.list_limit_default if limit is None else max(1, min(int(limit), cfg.list_limit_max))
        offset = max(int(offset), 0)

        found = self._within(center, radius, status_list, category_list)
        return NearbyPage(
            items=found[offset:offset + limit],
            total=len(found),
            limit=limit,
            offset=offset,
            radius_km=radius,
            center=center,
            statuses=[s.value for s in status_list],
            categories=[c.value for c in category_list],
        )

    def group_by_distance(
        self,
        center: Coordinate,
        ranges: Sequence[DistanceRange] = DEFAULT_RANGES,
    ) -> dict[str, list[NearbyIssue]]:
        """Bucket nearby issues into half-open ``[min, max)`` distance ranges."""
        radius = min(max(r.max_km for r in ranges), self._guard.config.list_radius_max_km)
        found = self._within(center, radius, [], [])
        return {
            r.label: [n for n in found if r.min_km <= n.distance_km < r.max_km]
            for r in ranges
        }

    def closest(self, center: Coordinate, count: int = 5) -> list[NearbyIssue]:
        limit_max = self._guard.config.list_limit_max
        if not 1 <= count <= limit_max:
            raise ValidationFailed("count", f"Count must be between 1 and {limit_max}")
        found = self._within(center, self._guard.config.list_radius_max_km, [], [])
        return found[:count]

    def location_statistics(
        self,
        center: Coordinate,
        radii_km: Sequence[float] = STATISTICS_RADII,
    ) -> LocationStatistics:
        """Issue counts around *center*: cumulative per radius, then by category and status."""
        radius = min(max(radii_km), self._guard.config.list_radius_max_km)
        found = self._within(center, radius, [], [])
        by_category: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for n in found:
            by_category[n.issue.category.value] = by_category.get(n.issue.category.value, 0) + 1
            by_status[n.issue.status.value] = by_status.get(n.issue.status.value, 0) + 1
        return LocationStatistics(
            center=center,
            total=len(found),
            by_distance={r: sum(1 for n in found if n.distance_km <= r) for r in sorted(radii_km)},
            by_category=by_category,
            by_status=by_status,
        )
