"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.event import (
    EventCreate,
    EventDraftUpdate,
    ReasonRequest,
    OptionalReasonRequest,
    ApproveRequest,
    BulkApproveRequest,
    EditRequestCreate,
    StatusHistoryEntry,
    EventResponse,
    EventListResponse,
    EventStatsResponse,
    BulkApproveItem,
    BulkApproveResponse,
)
from backend.src.schemas.location import (
    LocationCreate,
    LocationUpdate,
    LocationAliasesUpdate,
    LocationApproveRequest,
    AssignStringRequest,
    MergeRequest,
    LocationResponse,
    LocationListResponse,
    LocationSuggestion,
    UnassignedStringResponse,
    AssignStringResponse,
    MergeItemResult,
    MergeResponse,
    LocationDeleteResponse,
    DeleteProgressResponse,
    LocationEventCountResponse,
    LocationStatsResponse,
)
from backend.src.schemas.sync import (
    ReconcileRequest,
    SyncErrorItem,
    SyncResultResponse,
    CachedEventsResponse,
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    CacheStatsResponse,
)

__all__ = [
    # Events
    "EventCreate",
    "EventDraftUpdate",
    "ReasonRequest",
    "OptionalReasonRequest",
    "ApproveRequest",
    "BulkApproveRequest",
    "EditRequestCreate",
    "StatusHistoryEntry",
    "EventResponse",
    "EventListResponse",
    "EventStatsResponse",
    "BulkApproveItem",
    "BulkApproveResponse",
    # Locations
    "LocationCreate",
    "LocationUpdate",
    "LocationAliasesUpdate",
    "LocationApproveRequest",
    "AssignStringRequest",
    "MergeRequest",
    "LocationResponse",
    "LocationListResponse",
    "LocationSuggestion",
    "UnassignedStringResponse",
    "AssignStringResponse",
    "MergeItemResult",
    "MergeResponse",
    "LocationDeleteResponse",
    "DeleteProgressResponse",
    "LocationEventCountResponse",
    "LocationStatsResponse",
    # Sync / cache
    "ReconcileRequest",
    "SyncErrorItem",
    "SyncResultResponse",
    "CachedEventsResponse",
    "CacheInvalidateRequest",
    "CacheInvalidateResponse",
    "CacheStatsResponse",
]
