"""Pydantic models for API request/response serialization.

These models mirror the CivicGuard dataclasses and provide JSON
serialization for the FastAPI endpoints. Caller locations use the
``userLat`` / ``userLng`` names the mobile clients send.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _CallerLocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_lat: Optional[float] = Field(None, alias="userLat")
    user_lng: Optional[float] = Field(None, alias="userLng")


# ---------------------------------------------------------------------------
# Issue models
# ---------------------------------------------------------------------------


class IssueResponse(BaseModel):
    """Mirrors civicguard.issues.models.Issue."""

    id: str
    title: str
    description: str
    category: str
    status: str
    latitude: float
    longitude: float
    visible: bool = True
    flag_count: int = 0
    is_anonymous: bool = True
    marked_for_removal: bool = False
    created_at: str = ""
    updated_at: str = ""


class IssueDetailResponse(BaseModel):
    issue: IssueResponse
    distance_km: float


class NearbyIssueResponse(IssueResponse):
    distance_km: float
    distance_meters: int
    bearing: float


class NearbyMetadata(BaseModel):
    total: int
    count: int
    limit: int
    offset: int
    radius: float
    has_more: bool
    user_location: dict[str, float]
    filters: dict[str, list[str]] = Field(default_factory=dict)


class NearbyListResponse(BaseModel):
    issues: list[NearbyIssueResponse] = Field(default_factory=list)
    metadata: NearbyMetadata


class DistanceGroupResponse(BaseModel):
    label: str
    min_km: float
    max_km: float
    count: int
    issues: list[NearbyIssueResponse] = Field(default_factory=list)


class DistanceGroupsResponse(BaseModel):
    groups: list[DistanceGroupResponse] = Field(default_factory=list)
    total: int
    user_location: dict[str, float]


class ClosestIssuesResponse(BaseModel):
    issues: list[NearbyIssueResponse] = Field(default_factory=list)
    count: int
    user_location: dict[str, float]


class LocationStatisticsResponse(BaseModel):
    """Mirrors civicguard.geo.nearby.LocationStatistics."""

    total: int
    by_distance: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    user_location: dict[str, float]
    generated_at: str


class ReportIssueRequest(_CallerLocation):
    """Request body for reporting a new issue."""

    title: str
    description: str
    category: str
    latitude: float
    longitude: float


class HistoryEntryResponse(BaseModel):
    """Mirrors civicguard.issues.models.StatusHistoryEntry."""

    id: str
    issue_id: str
    previous_status: Optional[str] = None
    new_status: str
    comment: str
    actor_id: str
    timestamp: str


class HistoryResponse(BaseModel):
    issue_id: str
    current_status: str
    history: list[HistoryEntryResponse] = Field(default_factory=list)


class StatusUpdateRequest(_CallerLocation):
    status: str
    comment: str = ""


class StatusUpdateResponse(BaseModel):
    issue: IssueResponse
    entry: HistoryEntryResponse


# ---------------------------------------------------------------------------
# Flag / moderation models
# ---------------------------------------------------------------------------


class FlagRequest(_CallerLocation):
    reason: str
    flag_type: str = "spam"


class FlagResponse(BaseModel):
    flag_id: str
    issue_id: str
    flag_type: str
    flag_count: int
    visible: bool
    auto_hidden: bool
    created_at: str


class FlagDetailResponse(BaseModel):
    """Mirrors civicguard.moderation.models.Flag."""

    id: str
    issue_id: str
    flagged_by: Optional[str] = None
    reason: str
    flag_type: str
    created_at: str
    review_action: Optional[str] = None
    review_comment: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None


class FlaggedIssueResponse(IssueResponse):
    flags: list[FlagDetailResponse] = Field(default_factory=list)


class FlaggedListResponse(BaseModel):
    issues: list[FlaggedIssueResponse] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False


class ReviewRequest(BaseModel):
    action: str
    comment: str = ""


class ReviewResponse(BaseModel):
    issue_id: str
    action: str
    resolved_count: int
    visible: bool
    marked_for_removal: bool
    reviewed_by: str
    reviewed_at: str


class BanSignalResponse(BaseModel):
    recent_flag_count: int = 0
    total_flag_count: int = 0
    reviewed_flag_count: int = 0
    rejected_flag_count: int = 0
    rejection_rate: float = 0.0


class FlaggingStatsResponse(BaseModel):
    user_id: str
    should_ban: bool
    reasons: list[str] = Field(default_factory=list)
    signal: BanSignalResponse
    by_type: dict[str, int] = Field(default_factory=dict)


class AdminLogEntryResponse(BaseModel):
    """Mirrors civicguard.audit_log.AdminLogEntry."""

    id: str
    timestamp: str
    admin_id: str
    action: str
    target_type: str
    target_id: str
    details: dict = Field(default_factory=dict)
