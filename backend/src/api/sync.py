"""
Sync API endpoints for external calendar reconciliation and the snapshot cache.

Provides endpoints for:
- Reconciling calendars over a window
- Cache-first loading of a calendar window
- Snapshot invalidation and cache statistics

Design:
- Reconciliation and loads run synchronously in the request (threadpool)
- timeout_seconds bounds a run cooperatively; partial work stays committed
- Missing calendar ids fall back to the configured default calendar
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.src.api.dependencies import (
    get_calendar_source,
    get_event_cache_service,
    get_sync_service,
)
from backend.src.api.errors import to_http_exception
from backend.src.config.settings import AppSettings, get_settings
from backend.src.middleware.identity import get_actor
from backend.src.schemas.event import EventResponse
from backend.src.schemas.sync import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    CacheStatsResponse,
    CachedEventsResponse,
    ReconcileRequest,
    SyncResultResponse,
    sync_result_response,
)
from backend.src.services.calendar_source import CalendarSource
from backend.src.services.event_cache_service import EventCacheService
from backend.src.services.exceptions import ServiceError
from backend.src.services.permissions import Actor, require_role
from backend.src.services.sync_service import SyncService
from backend.src.utils.cancellation import CancellationToken
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/sync",
    tags=["Sync"],
)


# ============================================================================
# Dependencies
# ============================================================================

def require_calendar_source(
    calendar_source: Optional[CalendarSource] = Depends(get_calendar_source),
) -> CalendarSource:
    """Fail with 503 when no external calendar source is configured."""
    if calendar_source is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No external calendar source is configured",
        )
    return calendar_source


def _calendar_ids(requested: List[str], settings: AppSettings) -> List[str]:
    calendar_ids = [c for c in requested if c]
    if not calendar_ids and settings.default_calendar_id:
        calendar_ids = [settings.default_calendar_id]
    return calendar_ids


def _token(timeout_seconds: Optional[float]) -> Optional[CancellationToken]:
    if timeout_seconds is None:
        return None
    return CancellationToken.with_timeout(timeout_seconds)


# ============================================================================
# API Endpoints
# ============================================================================


@router.post(
    "/reconcile",
    response_model=SyncResultResponse,
    summary="Reconcile external calendars",
    description="Pull external events in the window and create/update local records",
)
def reconcile(
    request: ReconcileRequest,
    actor: Actor = Depends(get_actor),
    _source: CalendarSource = Depends(require_calendar_source),
    sync_service: SyncService = Depends(get_sync_service),
    settings: AppSettings = Depends(get_settings),
) -> SyncResultResponse:
    """
    Reconcile calendars over [start, end).

    Running the same reconcile twice without external changes creates and
    updates nothing the second time.

    Example:
        POST /api/sync/reconcile
        {"start": "2026-03-01T00:00:00Z", "end": "2026-04-01T00:00:00Z", "calendar_ids": ["cal-main"]}
    """
    try:
        require_role(actor, "approver", "reconcile calendars")
        result = sync_service.reconcile(
            request.start,
            request.end,
            _calendar_ids(request.calendar_ids, settings),
            force_refresh=request.force_refresh,
            cancel_token=_token(request.timeout_seconds),
        )
        return sync_result_response(result)

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error reconciling calendars: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reconcile calendars",
        )


@router.get(
    "/events",
    response_model=CachedEventsResponse,
    summary="Load calendar events (cache first)",
)
def load_events(
    start: datetime = Query(..., description="Window start (inclusive)"),
    end: datetime = Query(..., description="Window end (exclusive)"),
    calendar_id: Optional[str] = Query(None, description="Defaults to the configured calendar"),
    force_refresh: bool = Query(False, description="Bypass cached snapshots"),
    timeout_seconds: Optional[float] = Query(None, gt=0),
    _source: CalendarSource = Depends(require_calendar_source),
    loader: EventCacheService = Depends(get_event_cache_service),
    settings: AppSettings = Depends(get_settings),
) -> CachedEventsResponse:
    """
    Load non-deleted events of a calendar overlapping [start, end).

    source is "cache" when a fresh snapshot answered, "regular_load" after a
    complete reconcile, and "graph_fallback" when the reconcile was partial
    (the result is then not cached).
    """
    try:
        calendar_ids = _calendar_ids([calendar_id] if calendar_id else [], settings)
        if not calendar_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="calendar_id is required when no default calendar is configured",
            )

        result = loader.load(
            calendar_ids[0],
            start,
            end,
            force_refresh=force_refresh,
            cancel_token=_token(timeout_seconds),
        )
        return CachedEventsResponse(
            source=result.source,
            cached=result.cached,
            calendar_id=calendar_ids[0],
            start=start,
            end=end,
            events=[EventResponse(**event) for event in result.events],
            sync=sync_result_response(result.sync) if result.sync else None,
        )

    except HTTPException:
        raise
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error loading events: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load events",
        )


@router.post(
    "/cache/invalidate",
    response_model=CacheInvalidateResponse,
    summary="Invalidate cached snapshots",
)
async def invalidate_cache(
    request: CacheInvalidateRequest,
    actor: Actor = Depends(get_actor),
    loader: EventCacheService = Depends(get_event_cache_service),
) -> CacheInvalidateResponse:
    try:
        removed = loader.invalidate(
            calendar_id=request.calendar_id,
            event_guids=request.event_guids,
        )
        logger.info(f"Cache invalidated by {actor.user_id}: {removed} snapshot(s)")
        return CacheInvalidateResponse(removed=removed)

    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error invalidating cache: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to invalidate cache",
        )


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    summary="Get snapshot cache statistics",
)
async def get_cache_stats(
    loader: EventCacheService = Depends(get_event_cache_service),
) -> CacheStatsResponse:
    return CacheStatsResponse(**loader.stats())
