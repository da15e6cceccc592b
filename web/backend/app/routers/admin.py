"""Admin moderation API router.

Prefix: ``/api/admin``

Every endpoint requires the ``admin`` role.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query

from civicguard.engine import CivicGuardEngine
from civicguard.identity import Role
from web.backend.app.middleware.auth import Caller, get_caller, get_engine, require_role
from web.backend.app.models.api import (
    AdminLogEntryResponse,
    BanSignalResponse,
    FlagDetailResponse,
    FlaggedIssueResponse,
    FlaggedListResponse,
    FlaggingStatsResponse,
    ReviewRequest,
    ReviewResponse,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/flagged", response_model=FlaggedListResponse)
def list_flagged_issues(
    status: str = Query("pending", pattern="^(pending|reviewed|all)$"),
    flag_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Flagged-issue review queue with each issue's flags."""
    require_role(caller, Role.admin)
    issues, total = engine.moderation.list_flagged(status, flag_type, limit, offset)
    items = []
    for issue in issues:
        flags = engine.moderation.flags_for(issue.id, unresolved_only=(status == "pending"))
        items.append(
            FlaggedIssueResponse(
                **issue.to_dict(),
                flags=[FlagDetailResponse(**f.to_dict()) for f in flags],
            )
        )
    return FlaggedListResponse(
        issues=items,
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.post("/issues/{issue_id}/review", response_model=ReviewResponse)
def review_issue_flags(
    issue_id: str,
    req: ReviewRequest,
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Resolve all outstanding flags on an issue."""
    admin_id = require_role(caller, Role.admin)
    result = engine.review(issue_id, admin_id, req.action, req.comment)
    return ReviewResponse(
        issue_id=result.issue_id,
        action=result.action.value,
        resolved_count=result.resolved_count,
        visible=result.visible,
        marked_for_removal=result.marked_for_removal,
        reviewed_by=result.review.reviewer_id,
        reviewed_at=result.review.reviewed_at,
    )


@router.get("/users/{user_id}/flagging-stats", response_model=FlaggingStatsResponse)
def get_flagging_stats(
    user_id: str,
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """A user's flagging statistics and ban recommendation."""
    require_role(caller, Role.admin)
    stats = engine.flagging_stats(user_id)
    rec = stats.recommendation
    return FlaggingStatsResponse(
        user_id=user_id,
        should_ban=rec.should_ban,
        reasons=list(rec.reasons),
        signal=BanSignalResponse(**asdict(rec.signal)),
        by_type=stats.by_type,
    )


@router.get("/logs", response_model=list[AdminLogEntryResponse])
def list_admin_logs(
    admin_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=10000),
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Admin action log, newest first."""
    require_role(caller, Role.admin)
    entries = engine.audit.get_entries(admin_id=admin_id, action=action, target_id=target_id, limit=limit)
    return [AdminLogEntryResponse(**asdict(e)) for e in entries]
