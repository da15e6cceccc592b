"""Issue records, statuses and the status history ledger."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from civicguard.geo.proximity import Coordinate
from civicguard.identity import Identity, Registered


class IssueStatus(str, Enum):
    reported = "reported"
    in_progress = "in_progress"
    resolved = "resolved"


class Category(str, Enum):
    roads = "roads"
    lighting = "lighting"
    water = "water"
    cleanliness = "cleanliness"
    safety = "safety"
    obstructions = "obstructions"


@dataclass
class Issue:
    """A reported civic issue.

    ``location`` never changes after creation. ``status`` is written only by
    the lifecycle; ``visible``, ``flag_count`` and ``marked_for_removal`` only
    by moderation.
    """

    id: str
    title: str
    description: str
    category: Category
    location: Coordinate
    status: IssueStatus = IssueStatus.reported
    visible: bool = True
    flag_count: int = 0
    reporter: Optional[Identity] = None
    marked_for_removal: bool = False
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_anonymous(self) -> bool:
        return not isinstance(self.reporter, Registered)

    def to_dict(self, include_reporter: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "visible": self.visible,
            "flag_count": self.flag_count,
            "is_anonymous": self.is_anonymous,
            "marked_for_removal": self.marked_for_removal,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_reporter and isinstance(self.reporter, Registered):
            data["reporter_id"] = self.reporter.user_id
        return data


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One accepted status transition. Never mutated or deleted."""

    id: str
    issue_id: str
    previous_status: Optional[IssueStatus]
    new_status: IssueStatus
    comment: str
    actor_id: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "comment": self.comment,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp,
        }
