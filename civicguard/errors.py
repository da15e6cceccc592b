"""Typed failures raised by the engine.

Every error carries a stable ``code``, a human readable ``message``, the HTTP
status the web layer maps it to, and a ``details`` dict explaining *why*.
"""

from __future__ import annotations

import math
from typing import Any, Optional


class CivicGuardError(Exception):
    """Base class for all expected, caller-visible engine failures."""

    code = "CIVICGUARD_ERROR"
    http_status = 400

    def __init__(self, message: str = "", details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


def _json_safe(value: Any) -> Any:
    """NaN and infinities are not valid JSON numbers."""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


class InvalidCoordinate(CivicGuardError):
    code = "INVALID_COORDINATES"

    def __init__(self, latitude: Any = None, longitude: Any = None) -> None:
        super().__init__(
            "Invalid latitude or longitude coordinates",
            {
                "latitude": _json_safe(latitude),
                "longitude": _json_safe(longitude),
                "constraints": {
                    "latitude": "Must be between -90 and 90",
                    "longitude": "Must be between -180 and 180",
                },
            },
        )


class InvalidRadius(CivicGuardError):
    code = "INVALID_RADIUS"

    def __init__(self, radius_km: Any, min_km: float, max_km: float) -> None:
        super().__init__(
            f"Radius must be between {min_km}km and {max_km}km",
            {"provided": _json_safe(radius_km), "min": min_km, "max": max_km},
        )


class MissingCallerLocation(CivicGuardError):
    code = "USER_LOCATION_REQUIRED"

    def __init__(self) -> None:
        super().__init__(
            "Valid user location (userLat, userLng) is required for location-based access"
        )


class AccessDenied(CivicGuardError):
    code = "LOCATION_ACCESS_DENIED"
    http_status = 403

    def __init__(self, distance_km: float, max_radius_km: float) -> None:
        super().__init__(
            f"Issue is outside your neighborhood zone "
            f"({distance_km:.2f}km away, max {max_radius_km}km allowed)",
            {"distance_km": distance_km, "max_radius_km": max_radius_km},
        )
        self.distance_km = distance_km
        self.max_radius_km = max_radius_km


class ReportTooFar(CivicGuardError):
    code = "ISSUE_TOO_FAR"

    def __init__(self, distance_km: float, max_radius_km: float) -> None:
        super().__init__(
            f"Issue location is too far from your current location "
            f"({distance_km:.2f}km away, max {max_radius_km}km allowed)",
            {"distance_km": distance_km, "max_radius_km": max_radius_km},
        )
        self.distance_km = distance_km
        self.max_radius_km = max_radius_km


class NotFound(CivicGuardError):
    code = "ISSUE_NOT_FOUND"
    http_status = 404

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue '{issue_id}' not found", {"issue_id": issue_id})


class StatusUnchanged(CivicGuardError):
    code = "STATUS_UNCHANGED"

    def __init__(self, status: str) -> None:
        super().__init__(f"Issue is already in {status} status", {"status": status})


class InvalidTransition(CivicGuardError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            {"current": current, "requested": requested},
        )


class CommentRequired(CivicGuardError):
    code = "COMMENT_REQUIRED"

    def __init__(self, min_length: int, max_length: int) -> None:
        super().__init__(
            f"A comment of {min_length}-{max_length} characters is required when updating issue status",
            {"min_length": min_length, "max_length": max_length},
        )


class ValidationFailed(CivicGuardError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, {"field": field})


class DuplicateFlag(CivicGuardError):
    code = "DUPLICATE_FLAG"
    http_status = 409

    def __init__(self, issue_id: str) -> None:
        super().__init__("You have already flagged this issue", {"issue_id": issue_id})


class SelfFlag(CivicGuardError):
    code = "SELF_FLAG"
    http_status = 403

    def __init__(self, issue_id: str) -> None:
        super().__init__("You cannot flag your own issue", {"issue_id": issue_id})


class StorageUnavailable(CivicGuardError):
    """The backing store timed out or could not be reached.

    The only error that may be transient. Reads can be retried; mutations must
    be checked for a prior commit before retrying.
    """

    code = "STORAGE_UNAVAILABLE"
    http_status = 503

    def __init__(self, reason: str = "") -> None:
        super().__init__("Storage is temporarily unavailable", {"reason": reason})
