"""Data models for the community flagging system."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from civicguard.identity import Identity, Registered


class FlagType(str, Enum):
    spam = "spam"
    inappropriate = "inappropriate"
    irrelevant = "irrelevant"
    duplicate = "duplicate"
    other = "other"


class ReviewAction(str, Enum):
    """Admin decision over all outstanding flags of an issue.

    ``approve`` means the issue is fine and the flags were invalid.
    """

    approve = "approve"
    reject = "reject"
    delete = "delete"


@dataclass(frozen=True)
class FlagReview:
    action: ReviewAction
    comment: str
    reviewer_id: str
    reviewed_at: str


@dataclass(frozen=True)
class Flag:
    """A single community flag on an issue."""

    id: str
    issue_id: str
    flagger: Identity
    reason: str
    flag_type: FlagType
    created_at: str
    review: Optional[FlagReview] = None

    @property
    def resolved(self) -> bool:
        return self.review is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "flagged_by": self.flagger.user_id if isinstance(self.flagger, Registered) else None,
            "reason": self.reason,
            "flag_type": self.flag_type.value,
            "created_at": self.created_at,
            "review_action": self.review.action.value if self.review else None,
            "review_comment": self.review.comment if self.review else None,
            "reviewed_by": self.review.reviewer_id if self.review else None,
            "reviewed_at": self.review.reviewed_at if self.review else None,
        }


@dataclass(frozen=True)
class FlagResult:
    """Result of a successful flag submission.

    ``auto_hidden`` is True only when *this* flag tipped the issue over the
    threshold, which differs from ``visible`` when it was already hidden.
    """

    flag: Flag
    flag_count: int
    visible: bool
    auto_hidden: bool


@dataclass(frozen=True)
class ReviewResult:
    issue_id: str
    action: ReviewAction
    resolved_count: int
    visible: bool
    marked_for_removal: bool
    review: FlagReview


@dataclass(frozen=True)
class BanSignal:
    """Derived statistics over a user's flagging history."""

    recent_flag_count: int = 0
    total_flag_count: int = 0
    reviewed_flag_count: int = 0
    rejected_flag_count: int = 0
    rejection_rate: float = 0.0


@dataclass(frozen=True)
class BanRecommendation:
    user_id: str
    should_ban: bool
    signal: BanSignal = field(default_factory=BanSignal)
    reasons: tuple[str, ...] = ()
