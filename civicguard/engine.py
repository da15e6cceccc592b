"""The engine facade: the operation contracts consumed by the web API and CLI.

Single-record operations require the caller's location and pass through the
access guard before reaching the lifecycle or moderation components. Role
checks happen before these methods are called.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

from civicguard.audit_log import AuditLogger
from civicguard.config import EngineConfig
from civicguard.errors import MissingCallerLocation, NotFound
from civicguard.geo.access import AccessDecision, AccessGuard
from civicguard.geo.nearby import LocationStatistics, NearbyIssue, NearbyPage, NearbySearch
from civicguard.geo.proximity import Coordinate
from civicguard.identity import Identity, Registered
from civicguard.issues.lifecycle import IssueLifecycle, TransitionResult
from civicguard.issues.models import Category, Issue, IssueStatus, StatusHistoryEntry
from civicguard.moderation.ban import BanEvaluator
from civicguard.moderation.engine import ModerationEngine
from civicguard.moderation.models import BanRecommendation, FlagResult, FlagType, ReviewAction, ReviewResult
from civicguard.notifications import NotificationDispatcher
from civicguard.store.sqlite_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlaggingStats:
    user_id: str
    recommendation: BanRecommendation
    by_type: dict[str, int] = field(default_factory=dict)


class CivicGuardEngine:
    """Wires the store, guard, lifecycle, moderation and ban evaluator together."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[RecordStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or RecordStore(self.config.database_path, self.config.busy_timeout_seconds)
        self.dispatcher = dispatcher or NotificationDispatcher.from_config(self.store, self.config.notifications)
        self.audit = audit or AuditLogger(self.config.audit_log_dir)
        self.guard = AccessGuard(self.config.geo)
        self.lifecycle = IssueLifecycle(self.store, self.guard, self.config.lifecycle, self.dispatcher)
        self.moderation = ModerationEngine(self.store, self.config.moderation, self.dispatcher, self.audit)
        self.ban = BanEvaluator(self.store, self.config.moderation)
        self.nearby = NearbySearch(self.store, self.guard)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _visible_issue(self, issue_id: str) -> Issue:
        issue = self.store.get_issue(issue_id)
        if issue is None or not issue.visible:
            raise NotFound(issue_id)
        return issue

    def _authorize(self, issue_id: str, caller: Optional[Coordinate]) -> tuple[Issue, AccessDecision]:
        if caller is None:
            raise MissingCallerLocation()
        issue = self._visible_issue(issue_id)
        return issue, self.guard.require_access(caller, issue.location)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def report_issue(
        self,
        title: str,
        description: str,
        category: Union[Category, str],
        location: Coordinate,
        reporter: Optional[Identity] = None,
        reporter_location: Optional[Coordinate] = None,
    ) -> Issue:
        return self.lifecycle.open_issue(title, description, category, location, reporter, reporter_location)

    def list_nearby(
        self,
        center: Coordinate,
        radius_km: Optional[float] = None,
        statuses: Optional[Sequence[Any]] = None,
        categories: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> NearbyPage:
        return self.nearby.list_within_radius(center, radius_km, statuses, categories, limit, offset)

    def nearby_by_distance(self, center: Coordinate) -> dict[str, list[NearbyIssue]]:
        return self.nearby.group_by_distance(center)

    def closest_issues(self, center: Coordinate, count: int = 5) -> list[NearbyIssue]:
        return self.nearby.closest(center, count)

    def location_statistics(self, center: Coordinate) -> LocationStatistics:
        return self.nearby.location_statistics(center)

    def get_issue(self, issue_id: str, caller: Optional[Coordinate]) -> tuple[Issue, AccessDecision]:
        """Issue detail for a caller inside the viewing radius."""
        return self._authorize(issue_id, caller)

    def get_history(self, issue_id: str, caller: Optional[Coordinate]) -> list[StatusHistoryEntry]:
        self._authorize(issue_id, caller)
        return self.lifecycle.get_history(issue_id)

    def update_status(
        self,
        issue_id: str,
        caller: Optional[Coordinate],
        new_status: Union[IssueStatus, str],
        comment: str,
        actor_id: str,
    ) -> TransitionResult:
        self._authorize(issue_id, caller)
        return self.lifecycle.request_transition(issue_id, new_status, comment, actor_id)

    def flag_issue(
        self,
        issue_id: str,
        caller: Optional[Coordinate],
        flagger: Identity,
        reason: str,
        flag_type: Union[FlagType, str] = FlagType.spam,
    ) -> FlagResult:
        self._authorize(issue_id, caller)
        result = self.moderation.submit_flag(issue_id, flagger, reason, flag_type)
        if isinstance(flagger, Registered):
            recommendation = self.ban.evaluate(flagger.user_id)
            if recommendation.should_ban:
                logger.warning(
                    "User %s meets the ban criteria: %s",
                    flagger.user_id,
                    "; ".join(recommendation.reasons),
                )
        return result

    def review(
        self,
        issue_id: str,
        reviewer_id: str,
        action: Union[ReviewAction, str],
        comment: str = "",
    ) -> ReviewResult:
        return self.moderation.review_flags(issue_id, reviewer_id, action, comment)

    def flagging_stats(self, user_id: str) -> FlaggingStats:
        return FlaggingStats(
            user_id=user_id,
            recommendation=self.ban.evaluate(user_id),
            by_type=self.moderation.flag_type_counts(user_id),
        )
