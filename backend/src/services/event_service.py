"""
Event service: the persistent record store for reservations and mirrored
calendar events.

Provides lookup, listing, statistics, draft creation/update and the
version-checked conditional update every lifecycle transition goes through.

Design:
- Events are never physically removed; deletion is a status change
- status_history is append-only; entries are written in the same UPDATE
  as the status they record
- conditional_update is a single UPDATE keyed by id and version (and
  optionally the expected status); losing the race raises ConflictError
  carrying the current state
- location_ids hold Location primary keys; GUIDs are used at the API edge
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from backend.src.models import Event, EventStatus, HistoryAction
from backend.src.models.event import EDITABLE_FIELDS
from backend.src.models.types import utcnow
from backend.src.services.exceptions import ConflictError, NotFoundError, ValidationError
from backend.src.services.guid import GuidService
from backend.src.services.location_service import LocationService, adjust_usage_counts
from backend.src.services.permissions import Actor, require_owner, require_role
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")

DATETIME_FIELDS = ("start_at", "end_at")
INTEGER_FIELDS = ("attendee_count", "setup_minutes", "teardown_minutes")


def generate_event_id() -> str:
    """Human-readable event id assigned at creation (evt-xxxxxxxxxxxx)."""
    return f"evt-{uuid.uuid4().hex[:12]}"


def history_entry(
    status: EventStatus,
    action: HistoryAction,
    actor: Actor,
    reason: Optional[str] = None,
    changed_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build one status history entry."""
    return {
        "status": status.value,
        "action": action.value,
        "changed_at": (changed_at or utcnow()).isoformat(),
        "changed_by": actor.user_id,
        "changed_by_email": actor.email,
        "reason": reason,
    }


def parse_datetime(value: Any, field_name: str) -> datetime:
    """
    Parse an API/JSON datetime value into an aware UTC datetime.

    Naive values are taken as UTC.

    Raises:
        ValidationError: If the value is not a datetime or ISO string
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid datetime for {field_name}: {value}", field=field_name)
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid datetime for {field_name}", field=field_name)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _comparable(field_name: str, value: Any) -> Any:
    # Empty strings/lists compare equal to None; numeric strings compare as numbers
    if value in ("", [], None):
        return None
    if field_name in DATETIME_FIELDS:
        return parse_datetime(value, field_name)
    if field_name in INTEGER_FIELDS and isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return value
    if isinstance(value, str):
        return value.strip()
    return value


class EventService:
    """
    Service for the event record store.

    Usage:
        >>> service = EventService(db_session)
        >>> draft = service.create_draft(actor, title="Board meeting",
        ...                              start_at=start, end_at=end)
    """

    def __init__(self, db: Session, location_service: Optional[LocationService] = None):
        """
        Initialize event service.

        Args:
            db: SQLAlchemy database session
            location_service: Location service used to resolve location GUIDs
        """
        self.db = db
        self.location_service = location_service or LocationService(db)

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_by_guid(self, guid: str) -> Event:
        """
        Get an event by GUID. Deleted events are returned too.

        Raises:
            NotFoundError: If the GUID is malformed or no event matches
        """
        if not GuidService.validate_guid(guid, "evt"):
            raise NotFoundError("Event", guid)
        try:
            uuid_value = GuidService.parse_guid(guid, "evt")
        except ValueError:
            raise NotFoundError("Event", guid)

        event = self.db.query(Event).filter(Event.uuid == uuid_value).first()
        if not event:
            raise NotFoundError("Event", guid)
        return event

    def get_by_id(self, event_pk: int) -> Event:
        event = self.db.query(Event).filter(Event.id == event_pk).first()
        if not event:
            raise NotFoundError("Event", event_pk)
        return event

    def find_by_external_id(self, external_id: str) -> Optional[Event]:
        return self.db.query(Event).filter(Event.external_id == external_id).first()

    def find_unlinked_by_event_id(self, event_id: str) -> Optional[Event]:
        """Find an event by its internal event id that has no external id yet."""
        return (
            self.db.query(Event)
            .filter(Event.event_id == event_id, Event.external_id.is_(None))
            .first()
        )

    def list(
        self,
        status: Optional[str] = None,
        is_deleted: Optional[bool] = False,
        calendar_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        created_by: Optional[str] = None,
        has_pending_edit: Optional[bool] = None,
    ) -> List[Event]:
        """
        List events with optional filtering.

        Args:
            status: Lifecycle status filter
            is_deleted: True/False to filter by deletion; None for both
            calendar_id: Calendar filter
            start / end: Events overlapping the half-open window [start, end)
            created_by: Owner user id
            has_pending_edit: Filter on an outstanding edit request

        Returns:
            Events ordered by start time
        """
        query = self.db.query(Event)
        if status:
            if status not in {s.value for s in EventStatus}:
                raise ValidationError(f"Invalid event status: {status}", field="status")
            query = query.filter(Event.status == status)
        if is_deleted is not None and status is None:
            query = query.filter(Event.is_deleted.is_(is_deleted))
        if calendar_id:
            query = query.filter(Event.calendar_id == calendar_id)
        if start:
            query = query.filter(Event.end_at > start)
        if end:
            query = query.filter(Event.start_at < end)
        if created_by:
            query = query.filter(Event.created_by == created_by)
        if has_pending_edit is True:
            query = query.filter(Event.pending_edit_request.isnot(None))

        events = query.order_by(Event.start_at.asc(), Event.id.asc()).all()
        if has_pending_edit is not None:
            # JSON null vs SQL NULL differs per backend; settle it in Python
            events = [e for e in events if e.has_pending_edit == has_pending_edit]
        return events

    def get_stats(self) -> Dict[str, Any]:
        """
        Event statistics.

        Returns:
            Dictionary with total_count, by_status, deleted_count,
            pending_edit_count and last_synced_at
        """
        rows = self.db.query(Event.status, func.count(Event.id)).group_by(Event.status).all()
        by_status = {s.value: 0 for s in EventStatus}
        by_status.update({status: count for status, count in rows})

        last_synced_at = self.db.query(func.max(Event.last_synced_at)).scalar()
        if last_synced_at is not None and last_synced_at.tzinfo is None:
            last_synced_at = last_synced_at.replace(tzinfo=timezone.utc)

        return {
            "total_count": sum(by_status.values()),
            "by_status": by_status,
            "deleted_count": by_status[EventStatus.DELETED.value],
            "pending_edit_count": len(self.list(has_pending_edit=True)),
            "last_synced_at": last_synced_at,
        }

    # =========================================================================
    # Drafts
    # =========================================================================

    def create_draft(
        self,
        actor: Actor,
        title: str,
        start_at: Any,
        end_at: Any,
        location_guids: Optional[List[str]] = None,
        **fields: Any,
    ) -> Event:
        """
        Create a draft reservation owned by the actor.

        Raises:
            ValidationError: If title/start/end are missing or end <= start
        """
        require_role(actor, "requester", "create reservations")
        values = self.coerce_changes({"title": title, "start_at": start_at, "end_at": end_at, **fields})
        self._validate_core(values.get("title"), values.get("start_at"), values.get("end_at"))
        values.pop("location_ids", None)

        locations = self.location_service.get_approved_by_guids(location_guids or [])
        location_ids = [location.id for location in locations]
        if locations and not values.get("location_text"):
            values["location_text"] = "; ".join(location.label for location in locations)

        categories = values.pop("categories", None) or ([values["category"]] if values.get("category") else [])
        event = Event(
            event_id=generate_event_id(),
            calendar_id=values.pop("calendar_id", None),
            categories=categories,
            category=categories[0] if categories else None,
            location_ids=location_ids,
            status=EventStatus.DRAFT.value,
            is_deleted=False,
            status_history=[history_entry(EventStatus.DRAFT, HistoryAction.CREATED, actor)],
            created_by=actor.user_id,
            created_by_email=actor.email,
            version=1,
            extensions={},
            **{k: v for k, v in values.items() if k not in ("category",)},
        )
        self.db.add(event)
        adjust_usage_counts(self.db, added_ids=location_ids)
        self.db.commit()
        self.db.refresh(event)

        logger.info(f"Created draft event: {event.event_id} ({event.guid}) by {actor.user_id}")
        return event

    def update_draft(
        self,
        guid: str,
        actor: Actor,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Event:
        """
        Update fields of the actor's own draft.

        Raises:
            PermissionDeniedError: If the actor is not the owner
            ConflictError: If the event is no longer a draft or the version moved
        """
        event = self.get_by_guid(guid)
        require_owner(actor, event.created_by, "edit this draft")
        if event.status != EventStatus.DRAFT.value:
            raise ConflictError(
                "Only drafts can be edited directly; request an edit instead",
                current_status=event.status,
                current_version=event.version,
            )

        changes = dict(changes)
        location_guids = changes.pop("location_guids", None)
        values = self.coerce_changes(changes)
        if location_guids is not None:
            locations = self.location_service.get_approved_by_guids(location_guids)
            values["location_ids"] = [location.id for location in locations]
            if "location_text" not in values:
                values["location_text"] = "; ".join(location.label for location in locations) or None
        if "categories" in values:
            values["category"] = values["categories"][0] if values["categories"] else None

        self._validate_core(
            values.get("title", event.title),
            values.get("start_at", event.start_at),
            values.get("end_at", event.end_at),
        )
        if not values:
            return event

        old_ids = list(event.location_ids or [])
        updated = self.conditional_update(
            event,
            values,
            expected_status=EventStatus.DRAFT,
            expected_version=expected_version,
            commit=False,
        )
        if "location_ids" in values:
            adjust_usage_counts(self.db, old_ids, values["location_ids"])
        self.db.commit()
        self.db.refresh(updated)

        logger.info(f"Updated draft event {updated.guid}: {sorted(values)}")
        return updated

    # =========================================================================
    # Conditional update
    # =========================================================================

    def conditional_update(
        self,
        event: Event,
        values: Dict[str, Any],
        expected_status: Optional[EventStatus] = None,
        expected_version: Optional[int] = None,
        commit: bool = True,
        criteria: Iterable[Any] = (),
    ) -> Event:
        """
        Apply ``values`` with a single optimistic UPDATE.

        The UPDATE matches on id and version (the event's loaded version
        unless ``expected_version`` is given) and, when set, on status and
        any additional ``criteria``. Version is incremented in the same
        statement.

        Raises:
            ConflictError: If the row changed underneath (carries current state)
            NotFoundError: If the row no longer exists
        """
        version = expected_version if expected_version is not None else event.version
        query = self.db.query(Event).filter(Event.id == event.id, Event.version == version)
        if expected_status is not None:
            query = query.filter(Event.status == expected_status.value)
        for criterion in criteria:
            query = query.filter(criterion)

        row_values = {getattr(Event, key): value for key, value in values.items()}
        row_values[Event.version] = Event.version + 1
        row_values[Event.updated_at] = utcnow()

        matched = query.update(row_values, synchronize_session=False)
        if matched == 0:
            current = (
                self.db.query(Event.status, Event.version)
                .filter(Event.id == event.id)
                .first()
            )
            if current is None:
                raise NotFoundError("Event", event.guid)
            current_status, current_version = current
            if expected_status is not None and current_status != expected_status.value:
                message = f"Event is {current_status}, expected {expected_status.value}"
            else:
                message = "Event was modified by another request"
            raise ConflictError(message, current_status=current_status, current_version=current_version)

        if commit:
            self.db.commit()
        self.db.refresh(event)
        return event

    # =========================================================================
    # Approval lease
    # =========================================================================

    def claim_for_approval(self, event: Event, token: str, stale_before: datetime) -> Event:
        """
        Record an approval lease on a pending event and commit it.

        The UPDATE matches on id, version, status=pending and an empty (or
        expired) lease, so of any number of concurrent approvals, in any
        process, exactly one succeeds. Version is left unchanged: the lease
        is not a change to the reservation.

        Raises:
            ConflictError: If the event is no longer pending at this version
                or another approval holds a live lease
        """
        matched = (
            self.db.query(Event)
            .filter(
                Event.id == event.id,
                Event.version == event.version,
                Event.status == EventStatus.PENDING.value,
                or_(Event.approval_claim.is_(None), Event.approval_claimed_at < stale_before),
            )
            .update(
                {Event.approval_claim: token, Event.approval_claimed_at: utcnow()},
                synchronize_session=False,
            )
        )
        if matched == 0:
            self.db.rollback()
            self.db.refresh(event)
            if event.status != EventStatus.PENDING.value:
                message = f"Event is {event.status}, expected {EventStatus.PENDING.value}"
            else:
                message = "Event is already being approved by another request"
            raise ConflictError(message, current_status=event.status, current_version=event.version)

        self.db.commit()
        self.db.refresh(event)
        return event

    def release_approval_claim(self, event: Event, token: str) -> bool:
        """
        Clear an approval lease if it is still held with ``token``.

        Returns:
            True if the lease was released
        """
        released = (
            self.db.query(Event)
            .filter(Event.id == event.id, Event.approval_claim == token)
            .update(
                {Event.approval_claim: None, Event.approval_claimed_at: None},
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(event)
        return released > 0

    # =========================================================================
    # Change handling
    # =========================================================================

    def coerce_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate field names and convert values to column types.

        Raises:
            ValidationError: For unknown fields or malformed values
        """
        allowed = set(EDITABLE_FIELDS) | {"categories", "calendar_id"}
        values = {}
        for key, value in changes.items():
            if key not in allowed:
                raise ValidationError(f"Field '{key}' cannot be changed", field=key)
            if key in DATETIME_FIELDS:
                value = parse_datetime(value, key) if value is not None else None
            elif key in INTEGER_FIELDS and value is not None:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"{key} must be an integer", field=key)
                if key != "attendee_count" and value < 0:
                    raise ValidationError(f"{key} cannot be negative", field=key)
            elif key == "categories":
                value = [str(c) for c in (value or [])]
            values[key] = value
        return values

    def detect_changes(self, event: Event, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        List the requested changes that differ from the event's current values.

        ``changes`` must already be coerced. Empty strings and lists are
        treated like null.

        Returns:
            List of {field, old_value, new_value}
        """
        detected = []
        for key, new_value in changes.items():
            old_value = getattr(event, key)
            if key == "location_ids":
                differs = list(old_value or []) != list(new_value or [])
            else:
                differs = _comparable(key, old_value) != _comparable(key, new_value)
            if differs:
                detected.append({"field": key, "old_value": old_value, "new_value": new_value})
        return detected

    def serialize_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """JSON-safe copy of coerced changes (datetimes as ISO, location ids as GUIDs)."""
        serialized = {}
        for key, value in changes.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif key == "location_ids":
                key = "location_guids"
                value = self.location_service.guids_for_ids(value or [])
            serialized[key] = value
        return serialized

    def deserialize_changes(self, stored: Dict[str, Any]) -> Dict[str, Any]:
        """Inverse of serialize_changes."""
        stored = dict(stored)
        location_guids = stored.pop("location_guids", None)
        values = self.coerce_changes(stored)
        if location_guids is not None:
            values["location_ids"] = [
                location.id for location in self.location_service.get_approved_by_guids(location_guids)
            ]
        return values

    # =========================================================================
    # Responses
    # =========================================================================

    def build_event_response(self, event: Event) -> Dict[str, Any]:
        """
        Build a response dict for an event (used by the API and snapshot cache).
        """
        return {
            "guid": event.guid,
            "event_id": event.event_id,
            "external_id": event.external_id,
            "calendar_id": event.calendar_id,
            "title": event.title,
            "description": event.description,
            "category": event.category,
            "categories": list(event.categories or []),
            "start_at": event.start_at,
            "end_at": event.end_at,
            "start_timezone": event.start_timezone,
            "end_timezone": event.end_timezone,
            "is_all_day": bool(event.is_all_day),
            "location_text": event.location_text,
            "location_guids": self.location_service.guids_for_ids(event.location_ids or []),
            "attendee_count": event.attendee_count,
            "status": event.status,
            "is_deleted": bool(event.is_deleted),
            "previous_status": event.previous_status,
            "pending_edit_request": event.pending_edit_request,
            "status_history": list(event.status_history or []),
            "submitted_at": event.submitted_at,
            "deleted_at": event.deleted_at,
            "deleted_by": event.deleted_by,
            "setup_minutes": event.setup_minutes or 0,
            "teardown_minutes": event.teardown_minutes or 0,
            "assigned_to": event.assigned_to,
            "internal_notes": event.internal_notes,
            "registration_event_id": event.registration_event_id,
            "extensions": dict(event.extensions or {}),
            "created_by": event.created_by,
            "created_by_email": event.created_by_email,
            "version": event.version,
            "last_synced_at": event.last_synced_at,
            "created_at": event.created_at,
            "updated_at": event.updated_at,
        }

    def build_event_responses(self, events: Iterable[Event]) -> List[Dict[str, Any]]:
        return [self.build_event_response(event) for event in events]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate_core(title: Optional[str], start_at: Optional[datetime], end_at: Optional[datetime]) -> None:
        if not title or not str(title).strip():
            raise ValidationError("Title is required", field="title")
        if start_at is None:
            raise ValidationError("Start time is required", field="start_at")
        if end_at is None:
            raise ValidationError("End time is required", field="end_at")
        if end_at <= start_at:
            raise ValidationError("End time must be after start time", field="end_at")
