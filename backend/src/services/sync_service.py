"""
Sync service: reconciles the external calendar into the event store.

For each calendar the reconciler pages through the external listing for
a time window and upserts every main event:

- Lookup by external id, falling back to the internal event id marker
  for reservations that were published but not yet linked locally
- Externally owned fields are overwritten; lifecycle fields, history,
  pending edit requests and enrichment are left alone
- Location text is re-resolved on every run and usage counts rebalanced
- Linked registration (setup/teardown) events set setup_minutes and
  teardown_minutes on their main event; registrations are not imported
- Nothing is written when the effective values are unchanged, so running
  twice over the same window is a no-op

Failures are isolated: a page that still fails after retries ends that
calendar's pagination, an item that fails is skipped, and everything
applied before stays committed. The run reports partial success.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.src.models import Event, EventStatus, HistoryAction
from backend.src.models.types import utcnow
from backend.src.services.calendar_source import CalendarSource, ExternalEvent
from backend.src.services.event_service import EventService, generate_event_id, history_entry
from backend.src.services.exceptions import ExternalSourceError, ValidationError
from backend.src.services.location_service import (
    LocationMatchIndex,
    LocationService,
    adjust_usage_counts,
)
from backend.src.services.permissions import SYSTEM_USER_ID, system_actor
from backend.src.utils.cancellation import CancellationToken, is_cancelled
from backend.src.utils.logging_config import get_logger
from backend.src.utils.retry import RetryPolicy
from backend.src.utils.snapshot_cache import SnapshotCache


logger = get_logger("sync")


@dataclass
class SyncResult:
    """
    Outcome of one reconciliation run.

    Attributes:
        calendar_ids: Calendars reconciled
        created / updated / unchanged / skipped: Item counts
        errors: [{external_id, calendar_id, error}] for failed pages and items
        pages: Pages fetched successfully
        cancelled: True if the run stopped at a cancellation point
        complete: True only if every page and item was applied
    """
    calendar_ids: List[str] = field(default_factory=list)
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    cancelled: bool = False
    touched_event_guids: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors and not self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calendar_ids": self.calendar_ids,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": self.errors,
            "pages": self.pages,
            "cancelled": self.cancelled,
            "complete": self.complete,
        }


class SyncService:
    """
    Reconciler between a CalendarSource and the event store.

    Usage:
        >>> sync = SyncService(db, source, retry_policy=RetryPolicy(3, 0.5))
        >>> result = sync.reconcile(start, end, ["cal-main"])
        >>> result.complete
        True
    """

    def __init__(
        self,
        db: Session,
        calendar_source: CalendarSource,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[SnapshotCache] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize sync service.

        Args:
            db: SQLAlchemy database session
            calendar_source: External calendar to read
            retry_policy: Per-page retry policy
            cache: Snapshot cache, invalidated for touched events and for
                reconciled windows that gained or changed events
            sleep: Sleep function used between retries
        """
        self.db = db
        self.source = calendar_source
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache
        self.sleep = sleep
        self.locations = LocationService(db)
        self.events = EventService(db, location_service=self.locations)

    def reconcile(
        self,
        start: datetime,
        end: datetime,
        calendar_ids: List[str],
        force_refresh: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """
        Reconcile calendars over the half-open window [start, end).

        Args:
            start / end: Window bounds (aware datetimes)
            calendar_ids: Calendars to reconcile
            force_refresh: Drop cached snapshots of these calendars first
            cancel_token: Cooperative cancellation; checked between items

        Raises:
            ValidationError: If the window or calendar list is invalid
        """
        if end <= start:
            raise ValidationError("Window end must be after start", field="end")
        if not calendar_ids:
            raise ValidationError("At least one calendar is required", field="calendar_ids")

        result = SyncResult(calendar_ids=list(calendar_ids), window_start=start, window_end=end)
        if force_refresh and self.cache is not None:
            for calendar_id in calendar_ids:
                self.cache.invalidate_calendar(calendar_id)

        logger.info(f"Reconciling {len(calendar_ids)} calendar(s) for {start.isoformat()} - {end.isoformat()}")
        index = self.locations.build_index()

        for calendar_id in calendar_ids:
            if result.cancelled:
                break
            changed_before = result.created + result.updated
            self._reconcile_calendar(calendar_id, start, end, index, result, cancel_token)
            # New or moved events are not in any snapshot covering this window yet
            if self.cache is not None and result.created + result.updated > changed_before:
                self.cache.invalidate_window(calendar_id, start, end)

        if self.cache is not None and result.touched_event_guids:
            self.cache.invalidate_events(result.touched_event_guids)

        logger.info(
            f"Reconcile finished: created={result.created}, updated={result.updated}, "
            f"unchanged={result.unchanged}, skipped={result.skipped}, pages={result.pages}, "
            f"errors={len(result.errors)}, cancelled={result.cancelled}"
        )
        return result

    # =========================================================================
    # Paging
    # =========================================================================

    def _reconcile_calendar(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        index: LocationMatchIndex,
        result: SyncResult,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        page_token: Optional[str] = None
        while True:
            if is_cancelled(cancel_token):
                result.cancelled = True
                logger.warning(f"Reconcile of {calendar_id} cancelled after {result.pages} page(s)")
                return

            try:
                page = self.retry_policy.run(
                    lambda: self.source.list_events(calendar_id, start, end, page_token),
                    retry_on=(ExternalSourceError,),
                    sleep=self.sleep,
                    description=f"Fetching page of {calendar_id}",
                )
            except ExternalSourceError as e:
                logger.error(f"Giving up on calendar {calendar_id}: {e}")
                result.errors.append({"external_id": None, "calendar_id": calendar_id, "error": str(e)})
                return
            result.pages += 1

            registrations = {e.external_id: e for e in page.events if e.is_registration}
            for external in page.events:
                if external.is_registration:
                    continue
                if is_cancelled(cancel_token):
                    result.cancelled = True
                    logger.warning(f"Reconcile of {calendar_id} cancelled mid-page")
                    return
                self._apply_item(external, registrations, index, result)

            if not page.next_page_token:
                return
            page_token = page.next_page_token

    # =========================================================================
    # Items
    # =========================================================================

    def _apply_item(
        self,
        external: ExternalEvent,
        registrations: Dict[str, ExternalEvent],
        index: LocationMatchIndex,
        result: SyncResult,
    ) -> None:
        try:
            desired = self._desired_values(external, registrations, index)
            event = self._find_existing(external)
            if event is None:
                event = self._create(external, desired)
                result.created += 1
            elif self._update(event, external, desired):
                result.updated += 1
            else:
                result.unchanged += 1
                return
            self.db.commit()
            result.touched_event_guids.append(event.guid)
        except Exception as e:
            self.db.rollback()
            result.skipped += 1
            result.errors.append({
                "external_id": external.external_id,
                "calendar_id": external.calendar_id,
                "error": str(e),
            })
            logger.warning(f"Skipped external event {external.external_id}: {e}")

    def _find_existing(self, external: ExternalEvent) -> Optional[Event]:
        event = self.events.find_by_external_id(external.external_id)
        if event is None and external.internal_event_id:
            event = self.events.find_unlinked_by_event_id(external.internal_event_id)
        return event

    def _desired_values(
        self,
        external: ExternalEvent,
        registrations: Dict[str, ExternalEvent],
        index: LocationMatchIndex,
    ) -> Dict[str, Any]:
        if external.start is None or external.end is None:
            raise ValueError("External event has no start or end")

        categories = list(external.categories or [])
        values: Dict[str, Any] = {
            "title": external.title or "(untitled)",
            "description": external.description,
            "start_at": external.start,
            "end_at": external.end,
            "start_timezone": external.start_timezone,
            "end_timezone": external.end_timezone,
            "is_all_day": bool(external.is_all_day),
            "location_text": external.location_text,
            "categories": categories,
            "category": categories[0] if categories else None,
            "extensions": dict(external.extensions or {}),
            "location_ids": index.resolve(external.location_text).location_ids,
        }

        if external.linked_event_id:
            registration = registrations.get(external.linked_event_id)
            if registration is None:
                registration = self.source.get_event(external.calendar_id, external.linked_event_id)
            if registration is not None:
                values["registration_event_id"] = registration.external_id
                values["setup_minutes"] = max(
                    0, int((external.start - registration.start).total_seconds() // 60)
                )
                values["teardown_minutes"] = max(
                    0, int((registration.end - external.end).total_seconds() // 60)
                )
        return values

    def _create(self, external: ExternalEvent, desired: Dict[str, Any]) -> Event:
        actor = system_actor()
        event = Event(
            event_id=external.internal_event_id or generate_event_id(),
            external_id=external.external_id,
            calendar_id=external.calendar_id,
            status=EventStatus.APPROVED.value,
            is_deleted=False,
            status_history=[history_entry(EventStatus.APPROVED, HistoryAction.SYNCED, actor)],
            created_by=SYSTEM_USER_ID,
            version=1,
            last_synced_at=utcnow(),
            **desired,
        )
        self.db.add(event)
        self.db.flush()
        adjust_usage_counts(self.db, added_ids=desired["location_ids"])
        logger.info(f"Imported external event {external.external_id} as {event.guid}")
        return event

    def _update(self, event: Event, external: ExternalEvent, desired: Dict[str, Any]) -> bool:
        changed = {
            key: value for key, value in desired.items()
            if not self._same(key, getattr(event, key), value)
        }
        link = {}
        if event.external_id != external.external_id:
            link["external_id"] = external.external_id
        if event.calendar_id != external.calendar_id:
            link["calendar_id"] = external.calendar_id
        if not changed and not link:
            return False

        old_ids = list(event.location_ids or [])
        for key, value in {**changed, **link}.items():
            setattr(event, key, value)
        event.version = (event.version or 1) + 1
        event.last_synced_at = utcnow()
        if "location_ids" in changed and not event.is_deleted:
            adjust_usage_counts(self.db, old_ids, changed["location_ids"])

        logger.info(f"Updated event {event.guid} from {external.external_id}: {sorted({**changed, **link})}")
        return True

    @staticmethod
    def _same(key: str, current: Any, desired: Any) -> bool:
        if key in ("categories", "location_ids"):
            return list(current or []) == list(desired or [])
        if key == "extensions":
            return dict(current or {}) == dict(desired or {})
        if isinstance(desired, str) or desired is None:
            return (current or None) == (desired or None)
        return current == desired
