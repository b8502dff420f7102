"""
Pydantic schemas for location API request/response validation.

Provides data validation and serialization for:
- Location creation and update requests
- Alias replacement, approval, assignment and merge requests
- Location, unassigned-string, progress and count responses

Design:
- GUIDs are exposed via guid property, never internal IDs
- Capacity must be positive when given
- Duplicate and status checks are enforced at service layer
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Location Request Schemas
# ============================================================================


class LocationCreate(BaseModel):
    """
    Schema for creating a new location.

    Example:
        >>> request = LocationCreate(name="Main Chapel", building="Sanctuary", capacity=120)
    """

    name: str = Field(..., min_length=1, max_length=255, description="Canonical name")
    display_name: Optional[str] = Field(default=None, max_length=255)
    location_code: Optional[str] = Field(default=None, max_length=50)
    aliases: List[str] = Field(default_factory=list, description="Alternate strings")
    building: Optional[str] = Field(default=None, max_length=255)
    floor: Optional[str] = Field(default=None, max_length=50)
    capacity: Optional[int] = Field(default=None, gt=0)
    features: List[str] = Field(default_factory=list)
    accessibility: List[str] = Field(default_factory=list)
    is_reservable: bool = Field(default=False)
    notes: Optional[str] = Field(default=None)
    parent_guid: Optional[str] = Field(default=None, description="Parent location GUID (loc_xxx)")

    @field_validator("name")
    @classmethod
    def validate_name_not_whitespace(cls, v: str) -> str:
        """Ensure name is not just whitespace."""
        if not v.strip():
            raise ValueError("Name cannot be empty or whitespace")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Main Chapel",
                "building": "Sanctuary",
                "capacity": 120,
                "is_reservable": True,
            }
        }
    }


class LocationUpdate(BaseModel):
    """Schema for partially updating a location. Only provided fields change."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    location_code: Optional[str] = Field(default=None, max_length=50)
    building: Optional[str] = Field(default=None, max_length=255)
    floor: Optional[str] = Field(default=None, max_length=50)
    capacity: Optional[int] = Field(default=None, gt=0)
    features: Optional[List[str]] = None
    accessibility: Optional[List[str]] = None
    is_reservable: Optional[bool] = None
    notes: Optional[str] = None
    parent_guid: Optional[str] = None


class LocationAliasesUpdate(BaseModel):
    """Replacement alias list for a location."""

    aliases: List[str] = Field(default_factory=list)


class LocationApproveRequest(BaseModel):
    """Reviewer notes recorded when approving a pending location."""

    notes: Optional[str] = Field(default=None, max_length=2000)


class AssignStringRequest(BaseModel):
    """
    Assign one unresolved location string to a location.

    Example:
        >>> AssignStringRequest(raw_string="Room 402", location_guid="loc_01hgw2bbg0000000000000001")
    """

    raw_string: str = Field(..., min_length=1, max_length=500)
    location_guid: str = Field(..., description="Target location GUID (loc_xxx)")


class MergeRequest(BaseModel):
    """Merge one or more source locations into a target."""

    source_guids: List[str] = Field(..., min_length=1)
    target_guid: str
    merge_aliases: bool = Field(default=True, description="Copy source names and aliases to target")


# ============================================================================
# Location Response Schemas
# ============================================================================


class LocationResponse(BaseModel):
    """Schema for location API responses."""

    guid: str = Field(..., description="Location GUID (loc_xxx)")
    name: str
    display_name: Optional[str] = None
    location_code: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    usage_count: int = 0
    building: Optional[str] = None
    floor: Optional[str] = None
    capacity: Optional[int] = None
    features: List[str] = Field(default_factory=list)
    accessibility: List[str] = Field(default_factory=list)
    is_reservable: bool = False
    notes: Optional[str] = None
    parent_guid: Optional[str] = None
    status: str
    merged_into_guid: Optional[str] = None
    merged_by: Optional[str] = None
    merged_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LocationListResponse(BaseModel):
    """Schema for location list responses."""

    items: List[LocationResponse]
    total: int


class LocationSuggestion(BaseModel):
    """Advisory match for an unresolved string; never applied automatically."""

    location_guid: str
    matched: str
    confidence: float = Field(..., ge=0, le=1)


class UnassignedStringResponse(BaseModel):
    """Location string that resolves to no approved location."""

    raw: str
    normalized: str
    event_count: int
    suggestions: List[LocationSuggestion] = Field(default_factory=list)


class AssignStringResponse(BaseModel):
    location: LocationResponse
    alias_added: bool
    events_updated: int


class MergeItemResult(BaseModel):
    source_guid: str
    status: str
    events_updated: int = 0
    error: Optional[str] = None


class MergeResponse(BaseModel):
    target: LocationResponse
    results: List[MergeItemResult]


class LocationDeleteResponse(BaseModel):
    location: LocationResponse
    events_updated: int


class DeleteProgressResponse(BaseModel):
    """Progress of the latest delete/merge rewrite for a location."""

    location_guid: str
    operation: str
    status: str
    processed: int
    total: int
    percent: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class LocationEventCountResponse(BaseModel):
    location_guid: str
    event_count: int
    deleted_event_count: int
    usage_count: int


class LocationStatsResponse(BaseModel):
    """Aggregated location statistics."""

    total_count: int
    by_status: Dict[str, int]
    reservable_count: int
    unassigned_string_count: int

    model_config = {
        "json_schema_extra": {
            "example": {
                "total_count": 42,
                "by_status": {"pending": 2, "approved": 36, "merged": 3, "deleted": 1},
                "reservable_count": 18,
                "unassigned_string_count": 7,
            }
        }
    }


def location_response(location: Any) -> LocationResponse:
    return LocationResponse.model_validate(location)
