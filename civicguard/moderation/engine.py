"""Community flagging with threshold-triggered auto-suppression and admin review.

Each flag is one atomic unit: insert the flag (the unique index rejects a
second unresolved flag from the same identity), bump ``flag_count`` and hide
the issue once the count reaches the threshold. A review resolves every
outstanding flag on an issue at once and sets its visibility.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Union

from civicguard.audit_log import AuditLogger
from civicguard.config import ModerationConfig
from civicguard.errors import NotFound, SelfFlag, ValidationFailed
from civicguard.identity import Anonymous, Identity, Registered
from civicguard.issues.models import Issue
from civicguard.moderation.models import (
    Flag,
    FlagResult,
    FlagReview,
    FlagType,
    ReviewAction,
    ReviewResult,
)
from civicguard.notifications import NotificationDispatcher
from civicguard.store.sqlite_store import RecordStore, utc_now_iso

logger = logging.getLogger(__name__)

FLAGGED_STATUSES = ("pending", "reviewed", "all")


def _check_identity(flagger: Identity) -> None:
    if isinstance(flagger, Registered) and flagger.user_id:
        return
    if isinstance(flagger, Anonymous) and flagger.session_token:
        return
    raise ValidationFailed("flagger", "A user id or session token is required to flag an issue")


class ModerationEngine:
    """Owns ``Issue.visible``, ``Issue.flag_count`` and all flags."""

    def __init__(
        self,
        store: RecordStore,
        config: Optional[ModerationConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._config = config or ModerationConfig()
        self._dispatcher = dispatcher
        self._audit = audit

    @property
    def threshold(self) -> int:
        return self._config.flag_threshold

    # -- flagging ------------------------------------------------------------

    def submit_flag(
        self,
        issue_id: str,
        flagger: Identity,
        reason: str,
        flag_type: Union[FlagType, str] = FlagType.spam,
    ) -> FlagResult:
        """Flag an issue on behalf of *flagger*.

        Raises ``NotFound``, ``SelfFlag`` or ``DuplicateFlag``. The returned
        ``auto_hidden`` is True only if this flag hid a visible issue.
        """
        _check_identity(flagger)
        cfg = self._config
        text = (reason or "").strip()
        if not cfg.reason_min_length <= len(text) <= cfg.reason_max_length:
            raise ValidationFailed(
                "reason",
                f"Reason must be between {cfg.reason_min_length} and {cfg.reason_max_length} characters",
            )
        try:
            flag_type = FlagType(flag_type)
        except ValueError:
            raise ValidationFailed(
                "flag_type", f"Flag type must be one of: {', '.join(t.value for t in FlagType)}"
            ) from None

        now = utc_now_iso()
        flag = Flag(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            flagger=flagger,
            reason=text,
            flag_type=flag_type,
            created_at=now,
        )

        with self._store.transaction() as conn:
            issue = self._store.get_issue(issue_id, conn)
            if issue is None:
                raise NotFound(issue_id)
            if issue.reporter is not None and issue.reporter == flagger:
                raise SelfFlag(issue_id)

            self._store.insert_flag(conn, flag)
            flag_count, visible = self._store.increment_flag_count(conn, issue_id, self.threshold, now)
            auto_hidden = issue.visible and not visible
            self._store.enqueue_event(
                conn,
                uuid.uuid4().hex,
                "issue.flagged",
                {
                    "issue_id": issue_id,
                    "flag_type": flag_type.value,
                    "reason": text,
                    "flag_count": flag_count,
                },
                now,
            )
            if auto_hidden:
                self._store.enqueue_event(
                    conn,
                    uuid.uuid4().hex,
                    "issue.auto_hidden",
                    {"issue_id": issue_id, "title": issue.title, "flag_count": flag_count},
                    now,
                )

        if auto_hidden:
            logger.warning("Issue %s auto-hidden after %d flags", issue_id, flag_count)
        else:
            logger.info("Issue %s flagged (%s), count=%d", issue_id, flag_type.value, flag_count)
        if self._dispatcher is not None:
            self._dispatcher.drain_after_commit()

        return FlagResult(flag=flag, flag_count=flag_count, visible=visible, auto_hidden=auto_hidden)

    # -- review --------------------------------------------------------------

    def review_flags(
        self,
        issue_id: str,
        reviewer_id: str,
        action: Union[ReviewAction, str],
        comment: str = "",
    ) -> ReviewResult:
        """Resolve all outstanding flags on an issue as one decision.

        ``approve`` makes the issue visible, ``reject`` keeps it hidden and
        ``delete`` hides it and marks it for removal by the storage owner.
        Reviewing an issue with no open flags is allowed: nothing is resolved
        but the visibility effect still applies.
        """
        try:
            action = ReviewAction(action)
        except ValueError:
            raise ValidationFailed(
                "action", f"Action must be one of: {', '.join(a.value for a in ReviewAction)}"
            ) from None
        text = (comment or "").strip()
        if len(text) > self._config.review_comment_max_length:
            raise ValidationFailed(
                "comment",
                f"Review comment must be at most {self._config.review_comment_max_length} characters",
            )

        now = utc_now_iso()
        review = FlagReview(action=action, comment=text, reviewer_id=reviewer_id, reviewed_at=now)
        visible = action == ReviewAction.approve
        remove = action == ReviewAction.delete

        with self._store.transaction() as conn:
            issue = self._store.get_issue(issue_id, conn)
            if issue is None:
                raise NotFound(issue_id)
            resolved = self._store.resolve_open_flags(conn, issue_id, review)
            self._store.apply_visibility(conn, issue_id, visible, now, mark_for_removal=remove)
            self._store.enqueue_event(
                conn,
                uuid.uuid4().hex,
                "issue.reviewed",
                {
                    "issue_id": issue_id,
                    "action": action.value,
                    "reviewed_by": reviewer_id,
                    "resolved_flags": resolved,
                    "visible": visible,
                },
                now,
            )
            if remove:
                self._store.enqueue_event(
                    conn,
                    uuid.uuid4().hex,
                    "issue.marked_for_removal",
                    {"issue_id": issue_id, "requested_by": reviewer_id},
                    now,
                )

        logger.info(
            "Issue %s reviewed by %s: %s (%d flags resolved)", issue_id, reviewer_id, action.value, resolved
        )
        if self._audit is not None:
            self._audit.log_flag_review(reviewer_id, issue_id, action.value, text, issue.flag_count, resolved)
            if remove:
                self._audit.log_issue_deletion(reviewer_id, issue_id, text)
        if self._dispatcher is not None:
            self._dispatcher.drain_after_commit()

        return ReviewResult(
            issue_id=issue_id,
            action=action,
            resolved_count=resolved,
            visible=visible,
            marked_for_removal=remove or issue.marked_for_removal,
            review=review,
        )

    # -- admin reads ---------------------------------------------------------

    def list_flagged(
        self,
        status: str = "pending",
        flag_type: Optional[Union[FlagType, str]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Issue], int]:
        """Review queue: ``pending`` (auto-hidden), ``reviewed`` or ``all``."""
        if status not in FLAGGED_STATUSES:
            raise ValidationFailed("status", f"Status must be one of: {', '.join(FLAGGED_STATUSES)}")
        if flag_type is not None:
            try:
                flag_type = FlagType(flag_type)
            except ValueError:
                raise ValidationFailed(
                    "flag_type", f"Flag type must be one of: {', '.join(t.value for t in FlagType)}"
                ) from None
        return self._store.flagged_issues(
            status=status,
            flag_type=flag_type,
            threshold=self.threshold,
            limit=max(1, min(limit, 100)),
            offset=max(offset, 0),
        )

    def flags_for(self, issue_id: str, unresolved_only: bool = False) -> list[Flag]:
        return self._store.list_flags(issue_id, unresolved_only=unresolved_only)

    def flag_type_counts(self, user_id: str) -> dict[str, int]:
        """Number of flags *user_id* has submitted, per flag type."""
        return self._store.user_flag_type_counts(user_id)
