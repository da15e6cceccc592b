"""Location-based access control.

Callers may only view, flag or update issues within their neighborhood zone.
Reporting uses a separate, independently configured plausibility radius.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from civicguard.config import GeoConfig
from civicguard.errors import AccessDenied, InvalidRadius, MissingCallerLocation, ReportTooFar
from civicguard.geo.proximity import Coordinate, distance_km


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a proximity check."""

    allowed: bool
    distance_km: float
    max_radius_km: float

    @property
    def reason(self) -> str:
        if self.allowed:
            return ""
        return (
            f"Issue is {self.distance_km:.2f}km away "
            f"(max {self.max_radius_km}km allowed)"
        )


class AccessGuard:
    """Pure admit/deny decisions over caller and target locations."""

    def __init__(self, config: Optional[GeoConfig] = None) -> None:
        self._config = config or GeoConfig()

    @property
    def config(self) -> GeoConfig:
        return self._config

    def check_access(
        self,
        caller: Optional[Coordinate],
        target: Coordinate,
        max_radius_km: Optional[float] = None,
    ) -> AccessDecision:
        """Decide whether *caller* is close enough to *target*.

        Raises :class:`MissingCallerLocation` when no caller location was
        supplied. A distance equal to the radius is allowed.
        """
        if caller is None:
            raise MissingCallerLocation()
        limit = self._config.view_radius_km if max_radius_km is None else max_radius_km
        distance = distance_km(caller, target)
        return AccessDecision(allowed=distance <= limit, distance_km=distance, max_radius_km=limit)

    def require_access(
        self,
        caller: Optional[Coordinate],
        target: Coordinate,
        max_radius_km: Optional[float] = None,
    ) -> AccessDecision:
        """Like :meth:`check_access` but raises :class:`AccessDenied` on deny."""
        decision = self.check_access(caller, target, max_radius_km)
        if not decision.allowed:
            raise AccessDenied(decision.distance_km, decision.max_radius_km)
        return decision

    def validate_list_radius(self, radius_km: Any = None) -> float:
        """Return a usable search radius; out-of-range values are rejected."""
        cfg = self._config
        if radius_km is None:
            return cfg.list_radius_default_km
        try:
            value = float(radius_km)
        except (TypeError, ValueError):
            raise InvalidRadius(radius_km, cfg.list_radius_min_km, cfg.list_radius_max_km) from None
        if value != value or not (cfg.list_radius_min_km <= value <= cfg.list_radius_max_km):
            raise InvalidRadius(radius_km, cfg.list_radius_min_km, cfg.list_radius_max_km)
        return round(value, 2)

    def check_report_location(
        self,
        reporter: Optional[Coordinate],
        issue_location: Coordinate,
    ) -> Optional[float]:
        """Check a new report is plausible relative to the reporter's position.

        Returns the measured distance, or None when the reporter supplied no
        location (the check is then skipped). Raises :class:`ReportTooFar`
        beyond ``report_radius_km``.
        """
        if reporter is None:
            return None
        distance = distance_km(reporter, issue_location)
        if distance > self._config.report_radius_km:
            raise ReportTooFar(distance, self._config.report_radius_km)
        return distance
