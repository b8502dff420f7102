"""
Locations API endpoints for the location registry.

Provides endpoints for:
- Listing locations (by status, search, reservable flag) and pending proposals
- Creating, updating, approving locations and replacing aliases
- Unassigned location strings with advisory suggestions
- Assigning a string to a location, merging and deleting locations
- Delete/merge progress and per-location event counts

Design:
- Uses dependency injection for services
- Service exceptions are translated to HTTP status codes (see api/errors.py)
- Rewrites that touch events drop cached snapshots
- All endpoints use GUID format (loc_xxx) for identifiers
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.src.api.dependencies import get_location_service, get_snapshot_cache
from backend.src.api.errors import to_http_exception
from backend.src.middleware.identity import get_actor
from backend.src.schemas.location import (
    AssignStringRequest,
    AssignStringResponse,
    DeleteProgressResponse,
    LocationAliasesUpdate,
    LocationApproveRequest,
    LocationCreate,
    LocationDeleteResponse,
    LocationEventCountResponse,
    LocationListResponse,
    LocationResponse,
    LocationStatsResponse,
    LocationUpdate,
    MergeItemResult,
    MergeRequest,
    MergeResponse,
    UnassignedStringResponse,
    location_response,
)
from backend.src.services.exceptions import ServiceError
from backend.src.services.location_service import LocationService
from backend.src.services.permissions import Actor
from backend.src.utils.logging_config import get_logger
from backend.src.utils.snapshot_cache import SnapshotCache


logger = get_logger("api")

router = APIRouter(
    prefix="/locations",
    tags=["Locations"],
)


def _unexpected(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error trying to {action}: {str(e)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


def _drop_snapshots(cache: SnapshotCache, events_updated: int) -> None:
    if events_updated:
        removed = cache.clear()
        logger.info(f"Location rewrite updated {events_updated} event(s); dropped {removed} snapshot(s)")


# ============================================================================
# Collection Endpoints
# ============================================================================


@router.get(
    "",
    response_model=LocationListResponse,
    summary="List locations",
)
async def list_locations(
    status_filter: Optional[str] = Query(None, alias="status", description="pending | approved | merged | deleted"),
    search: Optional[str] = Query(None, description="Substring of name or display name"),
    reservable_only: bool = Query(False),
    location_service: LocationService = Depends(get_location_service),
) -> LocationListResponse:
    try:
        locations = location_service.list(
            status=status_filter,
            search=search,
            reservable_only=reservable_only,
        )
        items = [location_response(location) for location in locations]
        return LocationListResponse(items=items, total=len(items))

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("list locations", e)


@router.get(
    "/stats",
    response_model=LocationStatsResponse,
    summary="Get location statistics",
)
async def get_location_stats(
    location_service: LocationService = Depends(get_location_service),
) -> LocationStatsResponse:
    try:
        return LocationStatsResponse(**location_service.get_stats())
    except Exception as e:
        raise _unexpected("get location statistics", e)


@router.get(
    "/pending",
    response_model=LocationListResponse,
    summary="List locations awaiting review",
)
async def list_pending_locations(
    location_service: LocationService = Depends(get_location_service),
) -> LocationListResponse:
    try:
        items = [location_response(location) for location in location_service.list_pending()]
        return LocationListResponse(items=items, total=len(items))
    except Exception as e:
        raise _unexpected("list pending locations", e)


@router.get(
    "/unassigned",
    response_model=List[UnassignedStringResponse],
    summary="List unassigned location strings",
    description="Location strings used by events that resolve to no approved location",
)
async def list_unassigned_strings(
    include_suggestions: bool = Query(True, description="Attach advisory matches"),
    location_service: LocationService = Depends(get_location_service),
) -> List[UnassignedStringResponse]:
    """
    List unresolved location strings, most used first.

    Suggestions are advisory only; nothing is assigned until POST /assign.
    """
    try:
        return [
            UnassignedStringResponse(**item)
            for item in location_service.list_unassigned(include_suggestions=include_suggestions)
        ]
    except Exception as e:
        raise _unexpected("list unassigned location strings", e)


@router.post(
    "/assign",
    response_model=AssignStringResponse,
    summary="Assign a location string to a location",
)
async def assign_location_string(
    request: AssignStringRequest,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> AssignStringResponse:
    """
    Record the string as an alias of the location and link every event
    using it. Repeating the assignment changes nothing.
    """
    try:
        result = location_service.assign_string(request.raw_string, request.location_guid, actor)
        _drop_snapshots(cache, result["events_updated"])
        return AssignStringResponse(
            location=location_response(result["location"]),
            alias_added=result["alias_added"],
            events_updated=result["events_updated"],
        )

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("assign location string", e)


@router.post(
    "/merge",
    response_model=MergeResponse,
    summary="Merge locations",
    description="Merge source locations into a target; each source succeeds or fails on its own",
)
def merge_locations(
    request: MergeRequest,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> MergeResponse:
    try:
        results = location_service.merge(
            request.source_guids,
            request.target_guid,
            actor,
            merge_aliases=request.merge_aliases,
        )
        _drop_snapshots(cache, sum(r["events_updated"] for r in results))
        target = location_service.get_by_guid(request.target_guid)
        return MergeResponse(
            target=location_response(target),
            results=[MergeItemResult(**r) for r in results],
        )

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("merge locations", e)


@router.post(
    "",
    response_model=LocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create location",
    description="Approvers create approved locations; requesters propose pending ones",
)
async def create_location(
    location_create: LocationCreate,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
) -> LocationResponse:
    try:
        data = location_create.model_dump()
        location = location_service.create(
            actor,
            name=data.pop("name"),
            parent_guid=data.pop("parent_guid"),
            aliases=data.pop("aliases"),
            **data,
        )
        return location_response(location)

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected("create location", e)


# ============================================================================
# Item Endpoints
# ============================================================================


@router.get(
    "/{guid}",
    response_model=LocationResponse,
    summary="Get location details",
)
async def get_location(
    guid: str,
    location_service: LocationService = Depends(get_location_service),
) -> LocationResponse:
    try:
        return location_response(location_service.get_by_guid(guid))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"get location {guid}", e)


@router.patch(
    "/{guid}",
    response_model=LocationResponse,
    summary="Update location",
)
async def update_location(
    guid: str,
    location_update: LocationUpdate,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
) -> LocationResponse:
    try:
        changes = location_update.model_dump(exclude_unset=True)
        return location_response(location_service.update(guid, actor, **changes))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"update location {guid}", e)


@router.put(
    "/{guid}/aliases",
    response_model=LocationResponse,
    summary="Replace location aliases",
)
async def update_location_aliases(
    guid: str,
    request: LocationAliasesUpdate,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
) -> LocationResponse:
    try:
        return location_response(location_service.update_aliases(guid, request.aliases, actor))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"update aliases of location {guid}", e)


@router.post(
    "/{guid}/approve",
    response_model=LocationResponse,
    summary="Approve proposed location",
)
async def approve_location(
    guid: str,
    request: Optional[LocationApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
) -> LocationResponse:
    try:
        notes = request.notes if request else None
        return location_response(location_service.approve(guid, actor, notes=notes))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"approve location {guid}", e)


@router.delete(
    "/{guid}",
    response_model=LocationDeleteResponse,
    summary="Delete location",
    description="Soft-deletes the location and removes it from referencing events in batches",
)
def delete_location(
    guid: str,
    actor: Actor = Depends(get_actor),
    location_service: LocationService = Depends(get_location_service),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> LocationDeleteResponse:
    """
    Delete a location.

    Progress can be polled at GET /{guid}/delete-progress. Repeating the
    request on a deleted location finishes any cleanup left behind.
    """
    try:
        result = location_service.delete(guid, actor)
        _drop_snapshots(cache, result["events_updated"])
        return LocationDeleteResponse(
            location=location_response(result["location"]),
            events_updated=result["events_updated"],
        )

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"delete location {guid}", e)


@router.get(
    "/{guid}/delete-progress",
    response_model=DeleteProgressResponse,
    summary="Get delete/merge progress",
)
async def get_delete_progress(
    guid: str,
    location_service: LocationService = Depends(get_location_service),
) -> DeleteProgressResponse:
    try:
        return DeleteProgressResponse(**location_service.get_delete_progress(guid))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"get progress for location {guid}", e)


@router.get(
    "/{guid}/event-count",
    response_model=LocationEventCountResponse,
    summary="Count events referencing location",
)
async def get_location_event_count(
    guid: str,
    location_service: LocationService = Depends(get_location_service),
) -> LocationEventCountResponse:
    try:
        return LocationEventCountResponse(**location_service.get_event_count(guid))
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(f"count events for location {guid}", e)
