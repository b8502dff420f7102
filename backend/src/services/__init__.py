"""
Service layer for business logic.

This module exports all service classes for use in API endpoints.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ConflictError,
    ValidationError,
    PermissionDeniedError,
    ExternalSourceError,
    OperationCancelledError,
)
from backend.src.services.permissions import Actor
from backend.src.services.event_service import EventService
from backend.src.services.location_service import LocationService
from backend.src.services.lifecycle_service import LifecycleService
from backend.src.services.calendar_source import (
    CalendarSource,
    ExternalEvent,
    ExternalEventPage,
    GraphCalendarSource,
    InMemoryCalendarSource,
)
from backend.src.services.sync_service import SyncService, SyncResult
from backend.src.services.event_cache_service import EventCacheService, CacheLoadResult

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PermissionDeniedError",
    "ExternalSourceError",
    "OperationCancelledError",
    "Actor",
    "EventService",
    "LocationService",
    "LifecycleService",
    "CalendarSource",
    "ExternalEvent",
    "ExternalEventPage",
    "GraphCalendarSource",
    "InMemoryCalendarSource",
    "SyncService",
    "SyncResult",
    "EventCacheService",
    "CacheLoadResult",
]
