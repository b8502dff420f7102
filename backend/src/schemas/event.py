"""
Pydantic schemas for event API request/response validation.

Provides data validation and serialization for:
- Draft creation and update requests
- Lifecycle requests (reject, delete, restore, edit requests, bulk approve)
- Event API responses (detail, list, statistics, per-item bulk results)

Design:
- GUIDs are exposed via guid property, never internal IDs
- Datetimes are accepted with an offset and stored as UTC; the original
  zone name travels separately in start_timezone/end_timezone
- Guard checks (end after start, role, state) run in the service layer
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Request Schemas
# ============================================================================


class EventCreate(BaseModel):
    """
    Schema for creating a draft reservation.

    Required:
        title: Event title
        start_at: Start instant
        end_at: End instant (must be after start_at)

    Optional:
        location_guids: Approved location GUIDs (loc_xxx), in order
        location_text: Free-text location (derived from locations when omitted)
        calendar_id: External calendar to publish to on approval
    """

    title: str = Field(..., min_length=1, max_length=500)
    start_at: datetime
    end_at: datetime
    description: Optional[str] = None
    start_timezone: Optional[str] = Field(default=None, max_length=64)
    end_timezone: Optional[str] = Field(default=None, max_length=64)
    is_all_day: bool = False
    location_guids: List[str] = Field(default_factory=list)
    location_text: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=255)
    categories: Optional[List[str]] = None
    attendee_count: Optional[int] = Field(default=None, ge=0)
    setup_minutes: int = Field(default=0, ge=0)
    teardown_minutes: int = Field(default=0, ge=0)
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    internal_notes: Optional[str] = None
    calendar_id: Optional[str] = Field(default=None, max_length=512)

    @field_validator("title")
    @classmethod
    def validate_title_not_whitespace(cls, v: str) -> str:
        """Ensure title is not just whitespace."""
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Sisterhood Board Meeting",
                "start_at": "2026-03-15T18:00:00-04:00",
                "end_at": "2026-03-15T20:00:00-04:00",
                "start_timezone": "America/New_York",
                "end_timezone": "America/New_York",
                "location_guids": ["loc_01hgw2bbg0000000000000001"],
                "attendee_count": 25,
                "setup_minutes": 30,
            }
        }
    }


class EventDraftUpdate(BaseModel):
    """Partial update of a draft. Only provided fields change."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    description: Optional[str] = None
    start_timezone: Optional[str] = Field(default=None, max_length=64)
    end_timezone: Optional[str] = Field(default=None, max_length=64)
    is_all_day: Optional[bool] = None
    location_guids: Optional[List[str]] = None
    location_text: Optional[str] = None
    categories: Optional[List[str]] = None
    attendee_count: Optional[int] = Field(default=None, ge=0)
    setup_minutes: Optional[int] = Field(default=None, ge=0)
    teardown_minutes: Optional[int] = Field(default=None, ge=0)
    assigned_to: Optional[str] = None
    internal_notes: Optional[str] = None
    calendar_id: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, description="Optimistic concurrency check")


class ReasonRequest(BaseModel):
    """Request carrying a reason (reject, reject edit)."""

    reason: str = Field(..., description="Why the action is taken")


class OptionalReasonRequest(BaseModel):
    """Request carrying an optional reason or note (delete, restore, approve edit)."""

    reason: Optional[str] = None


class ApproveRequest(BaseModel):
    calendar_id: Optional[str] = Field(default=None, description="Calendar to publish to")


class BulkApproveRequest(BaseModel):
    guids: List[str] = Field(..., min_length=1)
    calendar_id: Optional[str] = None


class EditRequestCreate(BaseModel):
    """
    Proposed changes to an approved event.

    Example:
        >>> EditRequestCreate(changes={"title": "New title"}, reason="Speaker changed")
    """

    changes: Dict[str, Any] = Field(..., description="Field name to new value")
    reason: str


# ============================================================================
# Response Schemas
# ============================================================================


class StatusHistoryEntry(BaseModel):
    status: str
    action: Optional[str] = None
    changed_at: datetime
    changed_by: Optional[str] = None
    changed_by_email: Optional[str] = None
    reason: Optional[str] = None


class EventResponse(BaseModel):
    """Schema for event API responses."""

    guid: str = Field(..., description="Event GUID (evt_xxx)")
    event_id: str
    external_id: Optional[str] = None
    calendar_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    start_at: datetime
    end_at: datetime
    start_timezone: Optional[str] = None
    end_timezone: Optional[str] = None
    is_all_day: bool = False
    location_text: Optional[str] = None
    location_guids: List[str] = Field(default_factory=list)
    attendee_count: Optional[int] = None
    status: str
    is_deleted: bool
    previous_status: Optional[str] = None
    pending_edit_request: Optional[Dict[str, Any]] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    submitted_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    setup_minutes: int = 0
    teardown_minutes: int = 0
    assigned_to: Optional[str] = None
    internal_notes: Optional[str] = None
    registration_event_id: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_by_email: Optional[str] = None
    version: int
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class EventListResponse(BaseModel):
    items: List[EventResponse]
    total: int


class EventStatsResponse(BaseModel):
    """Event statistics."""

    total_count: int
    by_status: Dict[str, int]
    deleted_count: int
    pending_edit_count: int
    last_synced_at: Optional[datetime] = None


class BulkApproveItem(BaseModel):
    guid: str
    status: str
    external_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class BulkApproveResponse(BaseModel):
    results: List[BulkApproveItem]
    approved: int
    failed: int
