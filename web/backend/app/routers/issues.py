"""Issues API router: proximity listing, gated detail, status and flagging.

Prefix: ``/api/issues``

Single-issue endpoints take the caller's position as ``userLat`` /
``userLng`` (query string for reads, body for writes). Handlers are plain
``def`` so SQLite waits run in the threadpool.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from civicguard.engine import CivicGuardEngine
from civicguard.geo.nearby import DEFAULT_RANGES
from civicguard.geo.proximity import Coordinate, normalize_coordinate
from civicguard.identity import Role
from civicguard.store.sqlite_store import utc_now_iso
from web.backend.app.middleware.auth import Caller, get_caller, get_engine, require_identity, require_role
from web.backend.app.models.api import (
    ClosestIssuesResponse,
    DistanceGroupResponse,
    DistanceGroupsResponse,
    FlagRequest,
    FlagResponse,
    HistoryEntryResponse,
    HistoryResponse,
    IssueDetailResponse,
    IssueResponse,
    LocationStatisticsResponse,
    NearbyIssueResponse,
    NearbyListResponse,
    NearbyMetadata,
    ReportIssueRequest,
    StatusUpdateRequest,
    StatusUpdateResponse,
)

router = APIRouter(prefix="/api/issues", tags=["issues"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _caller_location(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinate]:
    """Both halves or nothing; a lone latitude counts as no location."""
    if lat is None or lng is None:
        return None
    return normalize_coordinate(lat, lng)


def _issue_to_response(issue) -> IssueResponse:
    return IssueResponse(**issue.to_dict())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=NearbyListResponse)
def list_issues(
    lat: float = Query(..., description="Search center latitude"),
    lng: float = Query(..., description="Search center longitude"),
    radius: Optional[float] = Query(None, description="Radius in km"),
    status_filter: list[str] = Query([], alias="status"),
    category: list[str] = Query([]),
    limit: Optional[int] = Query(None),
    offset: int = Query(0, ge=0),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """List visible issues within a radius of a point, nearest first."""
    page = engine.list_nearby(normalize_coordinate(lat, lng), radius, status_filter, category, limit, offset)
    return NearbyListResponse(
        issues=[NearbyIssueResponse(**item.to_dict()) for item in page.items],
        metadata=NearbyMetadata(
            total=page.total,
            count=len(page.items),
            limit=page.limit,
            offset=page.offset,
            radius=page.radius_km,
            has_more=page.has_more,
            user_location=page.center.to_dict(),
            filters={"status": page.statuses, "category": page.categories},
        ),
    )


@router.post("", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
def report_issue(
    req: ReportIssueRequest,
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Report a new issue; anonymous reports are allowed."""
    issue = engine.report_issue(
        title=req.title,
        description=req.description,
        category=req.category,
        location=normalize_coordinate(req.latitude, req.longitude),
        reporter=caller.identity,
        reporter_location=_caller_location(req.user_lat, req.user_lng),
    )
    return _issue_to_response(issue)


# Declared before /{issue_id} so the path segments are not read as ids.
@router.get("/by-distance", response_model=DistanceGroupsResponse)
def list_issues_by_distance(
    lat: float = Query(...),
    lng: float = Query(...),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Visible issues bucketed into Very Close / Close / Nearby rings."""
    center = normalize_coordinate(lat, lng)
    grouped = engine.nearby_by_distance(center)
    groups = [
        DistanceGroupResponse(
            label=r.label,
            min_km=r.min_km,
            max_km=r.max_km,
            count=len(grouped[r.label]),
            issues=[NearbyIssueResponse(**item.to_dict()) for item in grouped[r.label]],
        )
        for r in DEFAULT_RANGES
    ]
    return DistanceGroupsResponse(
        groups=groups,
        total=sum(g.count for g in groups),
        user_location=center.to_dict(),
    )


@router.get("/closest", response_model=ClosestIssuesResponse)
def list_closest_issues(
    lat: float = Query(...),
    lng: float = Query(...),
    count: int = Query(5),
    engine: CivicGuardEngine = Depends(get_engine),
):
    center = normalize_coordinate(lat, lng)
    items = engine.closest_issues(center, count)
    return ClosestIssuesResponse(
        issues=[NearbyIssueResponse(**item.to_dict()) for item in items],
        count=len(items),
        user_location=center.to_dict(),
    )


@router.get("/stats", response_model=LocationStatisticsResponse)
def get_location_statistics(
    lat: float = Query(...),
    lng: float = Query(...),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Issue counts around a point by distance, category and status."""
    stats = engine.location_statistics(normalize_coordinate(lat, lng))
    return LocationStatisticsResponse(**stats.to_dict(), generated_at=utc_now_iso())


@router.get("/{issue_id}", response_model=IssueDetailResponse)
def get_issue(
    issue_id: str,
    user_lat: Optional[float] = Query(None, alias="userLat"),
    user_lng: Optional[float] = Query(None, alias="userLng"),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Issue detail, only for callers within the viewing radius."""
    issue, decision = engine.get_issue(issue_id, _caller_location(user_lat, user_lng))
    return IssueDetailResponse(issue=_issue_to_response(issue), distance_km=round(decision.distance_km, 3))


@router.get("/{issue_id}/history", response_model=HistoryResponse)
def get_issue_history(
    issue_id: str,
    user_lat: Optional[float] = Query(None, alias="userLat"),
    user_lng: Optional[float] = Query(None, alias="userLng"),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Chronological status history of an issue."""
    location = _caller_location(user_lat, user_lng)
    entries = engine.get_history(issue_id, location)
    issue, _ = engine.get_issue(issue_id, location)
    return HistoryResponse(
        issue_id=issue_id,
        current_status=issue.status.value,
        history=[HistoryEntryResponse(**e.to_dict()) for e in entries],
    )


@router.patch("/{issue_id}/status", response_model=StatusUpdateResponse)
def update_issue_status(
    issue_id: str,
    req: StatusUpdateRequest,
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Move an issue to a new status. Requires ``authority`` or higher."""
    actor_id = require_role(caller, Role.authority)
    result = engine.update_status(
        issue_id,
        _caller_location(req.user_lat, req.user_lng),
        req.status,
        req.comment,
        actor_id,
    )
    return StatusUpdateResponse(
        issue=_issue_to_response(result.issue),
        entry=HistoryEntryResponse(**result.entry.to_dict()),
    )


@router.post("/{issue_id}/flag", response_model=FlagResponse, status_code=status.HTTP_201_CREATED)
def flag_issue(
    issue_id: str,
    req: FlagRequest,
    caller: Caller = Depends(get_caller),
    engine: CivicGuardEngine = Depends(get_engine),
):
    """Flag an issue as inappropriate; anonymous callers need a session token."""
    flagger = require_identity(caller)
    result = engine.flag_issue(
        issue_id,
        _caller_location(req.user_lat, req.user_lng),
        flagger,
        req.reason,
        req.flag_type,
    )
    return FlagResponse(
        flag_id=result.flag.id,
        issue_id=issue_id,
        flag_type=result.flag.flag_type.value,
        flag_count=result.flag_count,
        visible=result.visible,
        auto_hidden=result.auto_hidden,
        created_at=result.flag.created_at,
    )
