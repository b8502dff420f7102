"""
Event cache service: cache-first loading of calendar windows.

load() serves a fresh snapshot covering the requested window when one
exists. Otherwise it reconciles the window against the external calendar,
reads the resulting events from the store and caches them, but only when
the reconciliation was complete. A complete run with no events caches an
empty snapshot; an incomplete run is never cached so the next load retries.

Sources reported to callers:
- cache: served from a fresh snapshot
- regular_load: reconciled and cached
- graph_fallback: reconciled with errors or cancellation; not cached
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.src.services.event_service import EventService
from backend.src.services.exceptions import ValidationError
from backend.src.services.sync_service import SyncResult, SyncService
from backend.src.utils.cancellation import CancellationToken
from backend.src.utils.logging_config import get_logger
from backend.src.utils.snapshot_cache import SnapshotCache


logger = get_logger("services")

SOURCE_CACHE = "cache"
SOURCE_REGULAR_LOAD = "regular_load"
SOURCE_GRAPH_FALLBACK = "graph_fallback"


@dataclass
class CacheLoadResult:
    """
    Events returned by a cache-first load.

    Attributes:
        source: cache | regular_load | graph_fallback
        cached: True if the events now sit in (or came from) the cache
        events: Serialized events overlapping the requested window
        sync: Reconciliation result when one ran
    """
    source: str
    cached: bool
    events: List[Dict[str, Any]] = field(default_factory=list)
    sync: Optional[SyncResult] = None


def _in_window(event: Dict[str, Any], start: datetime, end: datetime) -> bool:
    return event["start_at"] < end and start < event["end_at"]


class EventCacheService:
    """
    Cache-first loader over the snapshot cache and sync reconciler.

    Usage:
        >>> loader = EventCacheService(db, cache, sync_service)
        >>> result = loader.load("cal-main", start, end)
        >>> result.source
        'regular_load'
    """

    def __init__(self, db: Session, cache: SnapshotCache, sync_service: SyncService):
        self.db = db
        self.cache = cache
        self.sync = sync_service
        self.events = EventService(db)

    def load(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        force_refresh: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CacheLoadResult:
        """
        Load non-deleted events of a calendar overlapping [start, end).

        Raises:
            ValidationError: If the window is empty or inverted
        """
        if end <= start:
            raise ValidationError("Window end must be after start", field="end")

        if not force_refresh:
            snapshot = self.cache.get(calendar_id, start, end)
            if snapshot is not None:
                events = [e for e in snapshot.events if _in_window(e, start, end)]
                logger.debug(f"Cache hit for {calendar_id} ({len(events)} events)")
                return CacheLoadResult(source=SOURCE_CACHE, cached=True, events=events)

        sync_result = self.sync.reconcile(
            start,
            end,
            [calendar_id],
            force_refresh=force_refresh,
            cancel_token=cancel_token,
        )
        events = self.events.build_event_responses(
            self.events.list(calendar_id=calendar_id, start=start, end=end, is_deleted=False)
        )

        if sync_result.complete:
            self.cache.put(calendar_id, start, end, events)
            logger.info(f"Cached {len(events)} event(s) for {calendar_id}")
            return CacheLoadResult(source=SOURCE_REGULAR_LOAD, cached=True, events=events, sync=sync_result)

        logger.warning(
            f"Reconcile of {calendar_id} incomplete ({len(sync_result.errors)} error(s), "
            f"cancelled={sync_result.cancelled}); serving store contents uncached"
        )
        return CacheLoadResult(source=SOURCE_GRAPH_FALLBACK, cached=False, events=events, sync=sync_result)

    def invalidate(
        self,
        calendar_id: Optional[str] = None,
        event_guids: Optional[List[str]] = None,
    ) -> int:
        """
        Invalidate snapshots by calendar, by event GUIDs, or all when neither is given.

        Returns:
            Number of snapshots removed
        """
        removed = 0
        if calendar_id:
            removed += self.cache.invalidate_calendar(calendar_id)
        if event_guids:
            removed += self.cache.invalidate_events(event_guids)
        if not calendar_id and not event_guids:
            removed += self.cache.clear()
        logger.info(f"Invalidated {removed} snapshot(s)")
        return removed

    def stats(self) -> Dict[str, Any]:
        return self.cache.stats()
