"""
Pydantic schemas for sync and cache API request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from backend.src.schemas.event import EventResponse


class ReconcileRequest(BaseModel):
    """
    Reconcile calendars over a half-open window.

    calendar_ids defaults to the configured default calendar.
    """

    start: datetime
    end: datetime
    calendar_ids: List[str] = Field(default_factory=list)
    force_refresh: bool = False
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Stop cooperatively after this many seconds",
    )

    @model_validator(mode="after")
    def validate_window(self) -> "ReconcileRequest":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class SyncErrorItem(BaseModel):
    external_id: Optional[str] = None
    calendar_id: Optional[str] = None
    error: str


class SyncResultResponse(BaseModel):
    calendar_ids: List[str]
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    created: int
    updated: int
    unchanged: int
    skipped: int
    errors: List[SyncErrorItem] = Field(default_factory=list)
    pages: int
    cancelled: bool
    complete: bool


class CachedEventsResponse(BaseModel):
    """Events served by a cache-first load."""

    source: str = Field(..., description="cache | regular_load | graph_fallback")
    cached: bool
    calendar_id: str
    start: datetime
    end: datetime
    events: List[EventResponse]
    sync: Optional[SyncResultResponse] = None


class CacheInvalidateRequest(BaseModel):
    """Invalidate by calendar, by event GUIDs, or everything when both are empty."""

    calendar_id: Optional[str] = None
    event_guids: List[str] = Field(default_factory=list)


class CacheInvalidateResponse(BaseModel):
    removed: int


class CacheStatsResponse(BaseModel):
    entries: int
    stale_entries: int
    max_entries: int
    ttl_seconds: int
    hits: int
    misses: int
    stale_evictions: int
    invalidations: int
    by_calendar: Dict[str, int]

    model_config = {"extra": "ignore"}


def sync_result_response(result: Any) -> SyncResultResponse:
    return SyncResultResponse(**result.to_dict())
