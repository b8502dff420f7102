"""
Shared FastAPI dependencies for the events, locations and sync routers.

Process-wide collaborators (snapshot cache, calendar source, claim
registry, progress tracker, retry policy) live on application state and
are created by init_app_state() in main.py. Services are request-scoped
and built around the request's database session.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import get_db
from backend.src.services.calendar_source import CalendarSource
from backend.src.services.event_cache_service import EventCacheService
from backend.src.services.event_service import EventService
from backend.src.services.lifecycle_service import LifecycleService
from backend.src.services.location_service import LocationService
from backend.src.services.sync_service import SyncService
from backend.src.utils.claims import ClaimRegistry
from backend.src.utils.progress import OperationProgressTracker
from backend.src.utils.retry import RetryPolicy
from backend.src.utils.snapshot_cache import SnapshotCache


# ============================================================================
# Application state
# ============================================================================

def get_snapshot_cache(request: Request) -> SnapshotCache:
    """Get snapshot cache from application state."""
    return request.app.state.snapshot_cache


def get_calendar_source(request: Request) -> Optional[CalendarSource]:
    """Get external calendar source from application state."""
    return request.app.state.calendar_source


def get_claims(request: Request) -> ClaimRegistry:
    """Get approval claim registry from application state."""
    return request.app.state.claims


def get_progress_tracker(request: Request) -> OperationProgressTracker:
    """Get location operation progress tracker from application state."""
    return request.app.state.progress_tracker


def get_retry_policy(request: Request) -> RetryPolicy:
    """Get sync page retry policy from application state."""
    return request.app.state.retry_policy


# ============================================================================
# Services
# ============================================================================

def get_location_service(
    db: Session = Depends(get_db),
    progress: OperationProgressTracker = Depends(get_progress_tracker),
) -> LocationService:
    """Create LocationService instance with the shared progress tracker."""
    return LocationService(db=db, progress=progress)


def get_event_service(
    db: Session = Depends(get_db),
    location_service: LocationService = Depends(get_location_service),
) -> EventService:
    """Create EventService instance with database session."""
    return EventService(db=db, location_service=location_service)


def get_lifecycle_service(
    db: Session = Depends(get_db),
    calendar_source: Optional[CalendarSource] = Depends(get_calendar_source),
    claims: ClaimRegistry = Depends(get_claims),
    cache: SnapshotCache = Depends(get_snapshot_cache),
    location_service: LocationService = Depends(get_location_service),
    settings: AppSettings = Depends(get_settings),
) -> LifecycleService:
    """Create LifecycleService instance wired to shared state."""
    return LifecycleService(
        db=db,
        calendar_source=calendar_source,
        claims=claims,
        cache=cache,
        default_calendar_id=settings.default_calendar_id or None,
        location_service=location_service,
    )


def get_sync_service(
    db: Session = Depends(get_db),
    calendar_source: Optional[CalendarSource] = Depends(get_calendar_source),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> SyncService:
    """Create SyncService instance wired to shared state."""
    return SyncService(
        db=db,
        calendar_source=calendar_source,
        retry_policy=retry_policy,
        cache=cache,
    )


def get_event_cache_service(
    db: Session = Depends(get_db),
    cache: SnapshotCache = Depends(get_snapshot_cache),
    sync_service: SyncService = Depends(get_sync_service),
) -> EventCacheService:
    """Create EventCacheService instance."""
    return EventCacheService(db=db, cache=cache, sync_service=sync_service)
