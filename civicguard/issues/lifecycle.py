"""Issue status state machine with an append-only history ledger.

States: reported, in_progress, resolved. Every pair of distinct states is a
legal transition; self-loops are rejected as ``StatusUnchanged``. The table is
still consulted on every request, and must gain an entry whenever a status is
added to :class:`IssueStatus`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from civicguard.config import LifecycleConfig
from civicguard.errors import CommentRequired, InvalidTransition, NotFound, StatusUnchanged, ValidationFailed
from civicguard.geo.access import AccessGuard
from civicguard.geo.proximity import Coordinate
from civicguard.identity import Identity, Registered
from civicguard.issues.models import Category, Issue, IssueStatus, StatusHistoryEntry
from civicguard.notifications import NotificationDispatcher
from civicguard.store.sqlite_store import RecordStore, utc_now_iso

logger = logging.getLogger(__name__)

TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    IssueStatus.reported: frozenset({IssueStatus.in_progress, IssueStatus.resolved}),
    IssueStatus.in_progress: frozenset({IssueStatus.resolved, IssueStatus.reported}),
    IssueStatus.resolved: frozenset({IssueStatus.in_progress, IssueStatus.reported}),
}

INITIAL_COMMENT = "Issue reported"

_TITLE_LENGTH = (3, 200)
_DESCRIPTION_LENGTH = (10, 2000)


def allowed_transitions(status: IssueStatus) -> frozenset[IssueStatus]:
    return TRANSITIONS.get(status, frozenset())


def can_transition(current: IssueStatus, new: IssueStatus) -> bool:
    return new in allowed_transitions(current)


@dataclass(frozen=True)
class TransitionResult:
    issue: Issue
    entry: StatusHistoryEntry


def _check_length(field_name: str, value: Optional[str], bounds: tuple[int, int]) -> str:
    text = (value or "").strip()
    low, high = bounds
    if not low <= len(text) <= high:
        raise ValidationFailed(field_name, f"{field_name} must be between {low} and {high} characters")
    return text


class IssueLifecycle:
    """Owns ``Issue.status`` and the status history ledger."""

    def __init__(
        self,
        store: RecordStore,
        guard: Optional[AccessGuard] = None,
        config: Optional[LifecycleConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self._store = store
        self._guard = guard or AccessGuard()
        self._config = config or LifecycleConfig()
        self._dispatcher = dispatcher

    # -- creation ------------------------------------------------------------

    def open_issue(
        self,
        title: str,
        description: str,
        category: Union[Category, str],
        location: Coordinate,
        reporter: Optional[Identity] = None,
        reporter_location: Optional[Coordinate] = None,
    ) -> Issue:
        """Create an issue in ``reported`` state.

        The initial history entry is written only when a registered reporter
        can be credited with it; anonymous reports start without one.
        """
        title = _check_length("title", title, _TITLE_LENGTH)
        description = _check_length("description", description, _DESCRIPTION_LENGTH)
        try:
            category = Category(category)
        except ValueError:
            raise ValidationFailed(
                "category", f"Invalid category. Must be one of: {', '.join(c.value for c in Category)}"
            ) from None
        self._guard.check_report_location(reporter_location, location)

        now = utc_now_iso()
        issue = Issue(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            category=category,
            location=location,
            reporter=reporter,
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction() as conn:
            self._store.insert_issue(conn, issue)
            if isinstance(reporter, Registered):
                self._store.insert_history(
                    conn,
                    StatusHistoryEntry(
                        id=uuid.uuid4().hex,
                        issue_id=issue.id,
                        previous_status=None,
                        new_status=IssueStatus.reported,
                        comment=INITIAL_COMMENT,
                        actor_id=reporter.user_id,
                        timestamp=now,
                    ),
                )
        logger.info("Issue %s reported (%s)", issue.id, category.value)
        return issue

    # -- transitions ---------------------------------------------------------

    def request_transition(
        self,
        issue_id: str,
        new_status: Union[IssueStatus, str],
        comment: Optional[str],
        actor_id: str,
    ) -> TransitionResult:
        """Move an issue to *new_status*, recording who did it and why.

        Validation and both writes happen under one write lock, so a racing
        request sees this one's committed status. Suppressed issues cannot
        change status.
        """
        with self._store.transaction() as conn:
            issue = self._store.get_issue(issue_id, conn)
            if issue is None or not issue.visible:
                raise NotFound(issue_id)

            current = issue.status
            if new_status == current:
                raise StatusUnchanged(current.value)
            try:
                target = IssueStatus(new_status)
            except ValueError:
                raise InvalidTransition(current.value, str(new_status)) from None
            if not can_transition(current, target):
                raise InvalidTransition(current.value, target.value)

            text = (comment or "").strip()
            cfg = self._config
            if not cfg.comment_min_length <= len(text) <= cfg.comment_max_length:
                raise CommentRequired(cfg.comment_min_length, cfg.comment_max_length)

            now = utc_now_iso()
            entry = StatusHistoryEntry(
                id=uuid.uuid4().hex,
                issue_id=issue_id,
                previous_status=current,
                new_status=target,
                comment=text,
                actor_id=actor_id,
                timestamp=now,
            )
            self._store.insert_history(conn, entry)
            self._store.set_status(conn, issue_id, target, now)
            self._store.enqueue_event(
                conn,
                uuid.uuid4().hex,
                "issue.status_changed",
                {
                    "issue_id": issue_id,
                    "title": issue.title,
                    "previous_status": current.value,
                    "new_status": target.value,
                    "comment": text,
                    "updated_by": actor_id,
                    "reporter_id": issue.reporter.user_id if isinstance(issue.reporter, Registered) else None,
                },
                now,
            )
            issue.status = target
            issue.updated_at = now

        logger.info("Issue %s status %s -> %s by %s", issue_id, current.value, target.value, actor_id)
        if self._dispatcher is not None:
            self._dispatcher.drain_after_commit()
        return TransitionResult(issue=issue, entry=entry)

    # -- reads ---------------------------------------------------------------

    def get_history(self, issue_id: str) -> list[StatusHistoryEntry]:
        """Chronological (oldest first) status history of an issue."""
        if self._store.get_issue(issue_id) is None:
            raise NotFound(issue_id)
        return self._store.list_history(issue_id)
