"""
Events API endpoints for room and calendar reservations.

Provides endpoints for:
- Listing events with status, calendar, window and owner filters
- Getting event details and statistics
- Creating and updating drafts
- Lifecycle transitions (submit, approve, bulk approve, reject, delete,
  restore, delete draft)
- Edit requests on approved events (request, approve, reject)

Design:
- Uses dependency injection for services
- Service exceptions are translated to HTTP status codes (see api/errors.py)
- Conflicts (409) carry the event's current status and version
- All endpoints use GUID format (evt_xxx) for identifiers
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from backend.src.api.dependencies import get_event_service, get_lifecycle_service
from backend.src.api.errors import to_http_exception
from backend.src.middleware.identity import get_actor
from backend.src.schemas.event import (
    ApproveRequest,
    BulkApproveItem,
    BulkApproveRequest,
    BulkApproveResponse,
    EditRequestCreate,
    EventCreate,
    EventDraftUpdate,
    EventListResponse,
    EventResponse,
    EventStatsResponse,
    OptionalReasonRequest,
    ReasonRequest,
)
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import ServiceError
from backend.src.services.lifecycle_service import LifecycleService
from backend.src.services.permissions import Actor
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/events",
    tags=["Events"],
)


def _unexpected(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error trying to {action}: {str(e)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


# ============================================================================
# Read Endpoints
# ============================================================================


@router.get(
    "/stats",
    response_model=EventStatsResponse,
    summary="Get event statistics",
)
async def get_event_stats(
    event_service: EventService = Depends(get_event_service),
) -> EventStatsResponse:
    """
    Get aggregated event statistics.

    Example:
        GET /api/events/stats

        Response:
        {
          "total_count": 42,
          "by_status": {"draft": 3, "pending": 5, "approved": 30, "rejected": 2, "deleted": 2},
          "deleted_count": 2,
          "pending_edit_count": 1,
          "last_synced_at": "2026-03-01T12:00:00Z"
        }
    """
    try:
        return EventStatsResponse(**event_service.get_stats())
    except Exception as e:
        raise _unexpected("get event statistics", e)


@router.get(
    "",
    response_model=EventListResponse,
    summary="List events",
    description="List events with optional status, calendar, window and owner filters",
)
async def list_events(
    status_filter: Optional[str] = Query(None, alias="status", description="Lifecycle status"),
    include_deleted: bool = Query(False, description="Include soft-deleted events"),
    calendar_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None, description="Window start (inclusive)"),
    end: Optional[datetime] = Query(None, description="Window end (exclusive)"),
    created_by: Optional[str] = Query(None, description="Owner user id"),
    has_pending_edit: Optional[bool] = Query(None),
    event_service: EventService = Depends(get_event_service),
) -> EventListResponse:
    """
    List events ordered by start time.

    Soft-deleted events are excluded unless include_deleted is set or the
    status filter is "deleted".
    """
    try:
        events = event_service.list(
            status=status_filter,
            is_deleted=None if include_deleted else False,
            calendar_id=calendar_id,
            start=start,
            end=end,
            created_by=created_by,
            has_pending_edit=has_pending_edit,
        )
        items = [EventResponse(**item) for item in event_service.build_event_responses(events)]
        return EventListResponse(items=items, total=len(items))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("list events", e)


@router.get(
    "/{guid}",
    response_model=EventResponse,
    summary="Get event details",
)
async def get_event(
    guid: str,
    event_service: EventService = Depends(get_event_service),
) -> EventResponse:
    """
    Get a single event by GUID, including soft-deleted events.

    Path Parameters:
        guid: Event GUID (evt_xxx format)
    """
    try:
        event = event_service.get_by_guid(guid)
        return EventResponse(**event_service.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"get event {guid}", e)


# ============================================================================
# Drafts
# ============================================================================


@router.post(
    "",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create draft reservation",
)
async def create_event(
    event_create: EventCreate,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    """
    Create a draft reservation owned by the caller.

    Location GUIDs must reference approved locations.
    """
    try:
        event = lifecycle.create_draft(actor, **event_create.model_dump(exclude_none=True))
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("create event", e)


@router.patch(
    "/{guid}",
    response_model=EventResponse,
    summary="Update draft reservation",
)
async def update_event(
    guid: str,
    event_update: EventDraftUpdate,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    """
    Update the caller's own draft. Only provided fields change.

    Send expected_version to fail with 409 when the draft changed since it
    was read.
    """
    try:
        changes = event_update.model_dump(exclude_unset=True)
        expected_version = changes.pop("expected_version", None)
        event = lifecycle.update_draft(guid, actor, changes, expected_version=expected_version)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"update event {guid}", e)


@router.delete(
    "/{guid}/draft",
    response_model=EventResponse,
    summary="Delete own draft",
)
async def delete_draft(
    guid: str,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.delete_draft(guid, actor)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"delete draft {guid}", e)


# ============================================================================
# Lifecycle Transitions
# ============================================================================


@router.post(
    "/approve/bulk",
    response_model=BulkApproveResponse,
    summary="Approve several pending events",
    description="Each event is approved independently; failures are reported per item",
)
def bulk_approve_events(
    request: BulkApproveRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> BulkApproveResponse:
    try:
        results = lifecycle.bulk_approve(request.guids, actor, calendar_id=request.calendar_id)
        items = [BulkApproveItem(**result) for result in results]
        approved = sum(1 for item in items if item.status == "ok")
        return BulkApproveResponse(results=items, approved=approved, failed=len(items) - approved)

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("bulk approve events", e)


@router.post(
    "/{guid}/submit",
    response_model=EventResponse,
    summary="Submit draft for approval",
)
async def submit_event(
    guid: str,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.submit(guid, actor)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"submit event {guid}", e)


@router.post(
    "/{guid}/approve",
    response_model=EventResponse,
    summary="Approve pending event",
    description="Publishes the event to the external calendar, then marks it approved",
)
def approve_event(
    guid: str,
    request: Optional[ApproveRequest] = Body(default=None),
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    """
    Approve a pending event.

    Returns 409 with the current status/version when the event is no longer
    pending or another request is approving it, and 502 when the external
    calendar write fails (nothing changes locally in that case).
    """
    try:
        calendar_id = request.calendar_id if request else None
        event = lifecycle.approve(guid, actor, calendar_id=calendar_id)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"approve event {guid}", e)


@router.post(
    "/{guid}/reject",
    response_model=EventResponse,
    summary="Reject pending event",
)
async def reject_event(
    guid: str,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.reject(guid, actor, request.reason)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"reject event {guid}", e)


@router.delete(
    "/{guid}",
    response_model=EventResponse,
    summary="Soft-delete event",
)
async def delete_event(
    guid: str,
    request: Optional[OptionalReasonRequest] = Body(default=None),
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    """
    Soft-delete an event. The previous status is kept for restore.

    Deleting an already-deleted event is a no-op.
    """
    try:
        event = lifecycle.delete(guid, actor, reason=request.reason if request else None)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"delete event {guid}", e)


@router.post(
    "/{guid}/restore",
    response_model=EventResponse,
    summary="Restore deleted event",
)
async def restore_event(
    guid: str,
    request: Optional[OptionalReasonRequest] = Body(default=None),
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.restore(guid, actor, reason=request.reason if request else None)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"restore event {guid}", e)


# ============================================================================
# Edit Requests
# ============================================================================


@router.post(
    "/{guid}/edit-request",
    response_model=EventResponse,
    summary="Request an edit to an approved event",
)
async def request_event_edit(
    guid: str,
    request: EditRequestCreate,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    """
    Propose changes to an approved event. At most one request may be
    pending per event.
    """
    try:
        event = lifecycle.request_edit(guid, actor, request.changes, request.reason)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"request edit for event {guid}", e)


@router.post(
    "/{guid}/edit-request/approve",
    response_model=EventResponse,
    summary="Approve pending edit request",
)
def approve_event_edit(
    guid: str,
    request: Optional[OptionalReasonRequest] = Body(default=None),
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.approve_edit(guid, actor, notes=request.reason if request else None)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"approve edit for event {guid}", e)


@router.post(
    "/{guid}/edit-request/reject",
    response_model=EventResponse,
    summary="Reject pending edit request",
)
async def reject_event_edit(
    guid: str,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> EventResponse:
    try:
        event = lifecycle.reject_edit(guid, actor, request.reason)
        return EventResponse(**lifecycle.events.build_event_response(event))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"reject edit for event {guid}", e)
