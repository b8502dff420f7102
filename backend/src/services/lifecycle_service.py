"""
Event lifecycle service.

Enforces the reservation state machine and appends one status history
entry per transition:

    draft --submit--> pending --approve--> approved
                      pending --reject---> rejected
    draft|pending|approved|rejected --delete--> deleted --restore--> previous status
    approved --request-edit / approve-edit / reject-edit--> approved

Design:
- Guards run before any mutation: validation, then permission, then state
- Every transition is one conditional UPDATE (status + history + fields)
  matched on the expected status and version
- Approval commits a lease on the row (matched on status, version and
  an empty or expired lease) before calling the external calendar, and
  never holds a database lock across that call; the in-process claim
  registry only short-circuits duplicates within one worker
- The final approval write is matched on the lease; if it loses, the
  external event just created is deleted again
- Deleting an already-deleted event is a no-op success
"""

import secrets
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from backend.src.models import Event, EventStatus, HistoryAction
from backend.src.models.event import EXTERNAL_FIELDS
from backend.src.models.types import utcnow
from backend.src.services.calendar_source import CalendarSource
from backend.src.services.event_service import EventService, history_entry
from backend.src.services.exceptions import (
    ConflictError,
    ExternalSourceError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from backend.src.services.location_service import LocationService, adjust_usage_counts
from backend.src.services.permissions import (
    Actor,
    require_owner,
    require_owner_or_approver,
    require_role,
)
from backend.src.utils.claims import ClaimRegistry, ClaimUnavailableError
from backend.src.utils.logging_config import get_logger
from backend.src.utils.snapshot_cache import SnapshotCache


logger = get_logger("services")

DELETABLE_STATUSES = (
    EventStatus.DRAFT,
    EventStatus.PENDING,
    EventStatus.APPROVED,
    EventStatus.REJECTED,
)

# Approval leases older than this are treated as abandoned
APPROVAL_LEASE_TIMEOUT = timedelta(minutes=5)


def external_payload(values: Dict[str, Any], internal_event_id: Optional[str]) -> Dict[str, Any]:
    """
    Build a calendar source write payload from event field values.

    Only the externally owned fields present in ``values`` are included.
    """
    payload: Dict[str, Any] = {"internal_event_id": internal_event_id}
    renames = {"start_at": "start", "end_at": "end"}
    for key in EXTERNAL_FIELDS:
        if key not in values or key == "category":
            continue
        payload[renames.get(key, key)] = values[key]
    if "categories" not in values and "category" in values:
        payload["categories"] = [values["category"]] if values["category"] else []
    return payload


def _require_reason(reason: Optional[str], action: str) -> str:
    if not reason or not reason.strip():
        raise ValidationError(f"A reason is required to {action}", field="reason")
    return reason.strip()


class LifecycleService:
    """
    Service applying lifecycle transitions to events.

    Usage:
        >>> lifecycle = LifecycleService(db, calendar_source=source, claims=claims)
        >>> lifecycle.submit(draft.guid, owner)
        >>> lifecycle.approve(draft.guid, approver)
    """

    def __init__(
        self,
        db: Session,
        calendar_source: Optional[CalendarSource] = None,
        claims: Optional[ClaimRegistry] = None,
        cache: Optional[SnapshotCache] = None,
        default_calendar_id: Optional[str] = None,
        location_service: Optional[LocationService] = None,
    ):
        """
        Initialize lifecycle service.

        Args:
            db: SQLAlchemy database session
            calendar_source: External calendar written on approval
            claims: Claim registry shared by all requests of the process
            cache: Snapshot cache invalidated after each transition
            default_calendar_id: Calendar used when an event has none
            location_service: Location service (created when omitted)
        """
        self.db = db
        self.calendar_source = calendar_source
        self.claims = claims or ClaimRegistry()
        self.cache = cache
        self.default_calendar_id = default_calendar_id
        self.locations = location_service or LocationService(db)
        self.events = EventService(db, location_service=self.locations)

    # =========================================================================
    # Drafts
    # =========================================================================

    def create_draft(self, actor: Actor, **fields: Any) -> Event:
        event = self.events.create_draft(actor, **fields)
        self._invalidate(event)
        return event

    def update_draft(
        self,
        guid: str,
        actor: Actor,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Event:
        event = self.events.update_draft(guid, actor, changes, expected_version=expected_version)
        self._invalidate(event)
        return event

    def submit(self, guid: str, actor: Actor) -> Event:
        """
        Submit a draft for approval.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor approver
            ConflictError: If the event is not a draft
        """
        event = self.events.get_by_guid(guid)
        require_owner_or_approver(actor, event.created_by, "submit this reservation")
        self._require_status(event, EventStatus.DRAFT, "submit")

        event = self._transition(
            event,
            EventStatus.DRAFT,
            EventStatus.PENDING,
            HistoryAction.SUBMITTED,
            actor,
            extra={"submitted_at": utcnow()},
        )
        self._log_transition(event, HistoryAction.SUBMITTED, actor)
        return event

    # =========================================================================
    # Approval
    # =========================================================================

    def approve(self, guid: str, actor: Actor, calendar_id: Optional[str] = None) -> Event:
        """
        Approve a pending reservation and publish it to the external calendar.

        An approval lease is committed on the row before the external call,
        so only one approval (across processes) ever writes to the external
        calendar. The external event is created (or refreshed, when the
        event already has an external id) and the final write is matched on
        the lease. If the external write fails the lease is released and
        nothing else changes. If the final write loses to a reject or
        delete, a just-created external event is deleted again.

        Raises:
            PermissionDeniedError: If the actor is not an approver
            ConflictError: If the event is not pending or is being approved
                by another request
            ValidationError: If no calendar can be determined
            ExternalSourceError: If the external write fails
        """
        event = self.events.get_by_guid(guid)
        require_role(actor, "approver", "approve reservations")
        self._require_status(event, EventStatus.PENDING, "approve")

        if self.calendar_source is None:
            raise ExternalSourceError("No calendar source is configured", operation="create_event")
        target_calendar = event.calendar_id or calendar_id or self.default_calendar_id
        if not target_calendar:
            raise ValidationError("A calendar is required to approve this event", field="calendar_id")

        try:
            with self.claims.hold(event.event_id):
                event = self._approve_claimed(event, actor, target_calendar)
        except ClaimUnavailableError:
            raise ConflictError(
                "Event is already being approved by another request",
                current_status=event.status,
                current_version=event.version,
            )

        self._log_transition(event, HistoryAction.APPROVED, actor)
        return event

    def _approve_claimed(self, event: Event, actor: Actor, target_calendar: str) -> Event:
        token = secrets.token_hex(16)
        event = self.events.claim_for_approval(
            event, token, stale_before=utcnow() - APPROVAL_LEASE_TIMEOUT
        )

        # The lease leaves the version alone; the final write checks both
        expected_version = event.version
        existing_external_id = event.external_id
        payload = external_payload(
            {key: getattr(event, key) for key in EXTERNAL_FIELDS},
            event.event_id,
        )

        try:
            if existing_external_id:
                self.calendar_source.update_event(target_calendar, existing_external_id, payload)
                external_id = existing_external_id
            else:
                external_id = self.calendar_source.create_event(target_calendar, payload)
        except Exception:
            self.events.release_approval_claim(event, token)
            raise

        try:
            return self._transition(
                event,
                EventStatus.PENDING,
                EventStatus.APPROVED,
                HistoryAction.APPROVED,
                actor,
                extra={
                    "external_id": external_id,
                    "calendar_id": target_calendar,
                    "approval_claim": None,
                    "approval_claimed_at": None,
                },
                expected_version=expected_version,
                criteria=[Event.approval_claim == token],
            )
        except (ConflictError, NotFoundError):
            self.db.rollback()
            if not existing_external_id:
                self._compensate_create(target_calendar, external_id)
            self.events.release_approval_claim(event, token)
            raise

    def _compensate_create(self, calendar_id: str, external_id: str) -> None:
        logger.warning(f"Approval lost the final write; deleting external event {external_id}")
        try:
            self.calendar_source.delete_event(calendar_id, external_id)
        except ExternalSourceError as e:
            logger.error(f"Failed to delete orphaned external event {external_id}: {e}")

    def bulk_approve(
        self,
        guids: List[str],
        actor: Actor,
        calendar_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Approve several events; each succeeds or fails on its own.

        Returns:
            Per-event results: {guid, status: ok|error, external_id, error, error_type}
        """
        require_role(actor, "approver", "approve reservations")
        results = []
        for guid in guids:
            try:
                event = self.approve(guid, actor, calendar_id=calendar_id)
                results.append({
                    "guid": guid,
                    "status": "ok",
                    "external_id": event.external_id,
                    "error": None,
                    "error_type": None,
                })
            except ServiceError as e:
                self.db.rollback()
                logger.warning(f"Bulk approve of {guid} failed: {e}")
                results.append({
                    "guid": guid,
                    "status": "error",
                    "external_id": None,
                    "error": str(e),
                    "error_type": type(e).__name__,
                })
        approved = sum(1 for r in results if r["status"] == "ok")
        logger.info(f"Bulk approve by {actor.user_id}: {approved}/{len(guids)} approved")
        return results

    def reject(self, guid: str, actor: Actor, reason: Optional[str]) -> Event:
        """
        Reject a pending reservation.

        Raises:
            ValidationError: If the reason is empty
            PermissionDeniedError: If the actor is not an approver
            ConflictError: If the event is not pending
        """
        reason = _require_reason(reason, "reject a reservation")
        event = self.events.get_by_guid(guid)
        require_role(actor, "approver", "reject reservations")
        self._require_status(event, EventStatus.PENDING, "reject")

        event = self._transition(
            event,
            EventStatus.PENDING,
            EventStatus.REJECTED,
            HistoryAction.REJECTED,
            actor,
            reason=reason,
        )
        self._log_transition(event, HistoryAction.REJECTED, actor)
        return event

    # =========================================================================
    # Delete / restore
    # =========================================================================

    def delete(self, guid: str, actor: Actor, reason: Optional[str] = None) -> Event:
        """
        Soft-delete an event.

        Owners may delete their own drafts, pending and rejected events;
        approved events need an approver. Deleting an already-deleted event
        returns it unchanged.
        """
        event = self.events.get_by_guid(guid)
        require_owner_or_approver(actor, event.created_by, "delete this event")
        if event.status == EventStatus.DELETED.value:
            logger.info(f"Event {event.guid} already deleted; nothing to do")
            return event
        if event.status == EventStatus.APPROVED.value:
            require_role(actor, "approver", "delete approved events")
        return self._soft_delete(event, actor, reason)

    def delete_draft(self, guid: str, actor: Actor) -> Event:
        """Delete the actor's own draft."""
        event = self.events.get_by_guid(guid)
        require_owner(actor, event.created_by, "delete this draft")
        if event.status == EventStatus.DELETED.value:
            return event
        self._require_status(event, EventStatus.DRAFT, "delete as a draft")
        return self._soft_delete(event, actor, None)

    def _soft_delete(self, event: Event, actor: Actor, reason: Optional[str]) -> Event:
        current = EventStatus(event.status)
        if current not in DELETABLE_STATUSES:
            raise ConflictError(
                f"Event in status {event.status} cannot be deleted",
                current_status=event.status,
                current_version=event.version,
            )
        location_ids = list(event.location_ids or [])

        event = self._transition(
            event,
            current,
            EventStatus.DELETED,
            HistoryAction.DELETED,
            actor,
            reason=reason,
            extra={
                "previous_status": current.value,
                "deleted_at": utcnow(),
                "deleted_by": actor.email or actor.user_id,
                "pending_edit_request": None,
            },
            commit=False,
        )
        adjust_usage_counts(self.db, removed_ids=location_ids)
        self._commit(event)
        self._log_transition(event, HistoryAction.DELETED, actor)
        return event

    def restore(self, guid: str, actor: Actor, reason: Optional[str] = None) -> Event:
        """
        Restore a deleted event to the status it had before deletion.

        Events deleted without a recorded previous status return to draft.

        Raises:
            PermissionDeniedError: If the actor is not an approver
            ConflictError: If the event is not deleted
        """
        event = self.events.get_by_guid(guid)
        require_role(actor, "approver", "restore events")
        self._require_status(event, EventStatus.DELETED, "restore")

        target = EventStatus.DRAFT
        if event.previous_status and event.previous_status != EventStatus.DELETED.value:
            target = EventStatus(event.previous_status)
        location_ids = list(event.location_ids or [])

        event = self._transition(
            event,
            EventStatus.DELETED,
            target,
            HistoryAction.RESTORED,
            actor,
            reason=reason,
            extra={"previous_status": None, "deleted_at": None, "deleted_by": None},
            commit=False,
        )
        adjust_usage_counts(self.db, added_ids=location_ids)
        self._commit(event)
        self._log_transition(event, HistoryAction.RESTORED, actor)
        return event

    # =========================================================================
    # Edit requests
    # =========================================================================

    def request_edit(
        self,
        guid: str,
        actor: Actor,
        changes: Dict[str, Any],
        reason: Optional[str],
    ) -> Event:
        """
        Record a proposed change to an approved event.

        Raises:
            ValidationError: If the reason is empty or no field would change
            PermissionDeniedError: If the actor is not the owner
            ConflictError: If the event is not approved or already has a
                pending edit request
        """
        reason = _require_reason(reason, "request an edit")
        event = self.events.get_by_guid(guid)
        require_owner(actor, event.created_by, "request an edit")
        self._require_status(event, EventStatus.APPROVED, "request an edit for")
        if event.has_pending_edit:
            raise ConflictError(
                "An edit request is already pending for this event",
                current_status=event.status,
                current_version=event.version,
            )

        values = self._requested_values(changes)
        detected = self.events.detect_changes(event, values)
        if not detected:
            raise ValidationError("The requested changes do not differ from the event", field="changes")
        values = {item["field"]: item["new_value"] for item in detected}
        self._validate_times(event, values)

        request = {
            "requested_changes": self.events.serialize_changes(values),
            "changed_fields": [item["field"] for item in detected],
            "reason": reason,
            "requested_by": actor.user_id,
            "requested_by_email": actor.email,
            "requested_at": utcnow().isoformat(),
        }
        event = self._transition(
            event,
            EventStatus.APPROVED,
            EventStatus.APPROVED,
            HistoryAction.EDIT_REQUESTED,
            actor,
            reason=reason,
            extra={"pending_edit_request": request},
        )
        self._log_transition(event, HistoryAction.EDIT_REQUESTED, actor)
        return event

    def approve_edit(self, guid: str, actor: Actor, notes: Optional[str] = None) -> Event:
        """
        Apply a pending edit request.

        Externally owned changes are pushed to the external calendar first
        when the event is published; a failed push leaves the request pending.

        Raises:
            PermissionDeniedError: If the actor is not an approver
            ConflictError: If no edit request is pending
            ExternalSourceError: If pushing the change fails
        """
        event = self.events.get_by_guid(guid)
        require_role(actor, "approver", "approve edit requests")
        self._require_pending_edit(event)

        expected_version = event.version
        values = self.events.deserialize_changes(event.pending_edit_request["requested_changes"])
        if "location_ids" in values and "location_text" not in values:
            labels = [self.locations.get_by_id(i).label for i in values["location_ids"]]
            values["location_text"] = "; ".join(labels) or None
        if "categories" in values:
            values["category"] = values["categories"][0] if values["categories"] else None
        self._validate_times(event, values)

        external_changes = {key: value for key, value in values.items() if key in EXTERNAL_FIELDS}
        if event.external_id and external_changes and self.calendar_source is not None:
            self.calendar_source.update_event(
                event.calendar_id or self.default_calendar_id,
                event.external_id,
                external_payload(external_changes, event.event_id),
            )

        old_ids = list(event.location_ids or [])
        extra = dict(values)
        extra["pending_edit_request"] = None
        event = self._transition(
            event,
            EventStatus.APPROVED,
            EventStatus.APPROVED,
            HistoryAction.EDIT_APPROVED,
            actor,
            reason=notes,
            extra=extra,
            expected_version=expected_version,
            commit=False,
        )
        if "location_ids" in values:
            adjust_usage_counts(self.db, old_ids, values["location_ids"])
        self._commit(event)
        self._log_transition(event, HistoryAction.EDIT_APPROVED, actor)
        return event

    def reject_edit(self, guid: str, actor: Actor, reason: Optional[str]) -> Event:
        """
        Discard a pending edit request.

        Raises:
            ValidationError: If the reason is empty
            PermissionDeniedError: If the actor is not an approver
            ConflictError: If no edit request is pending
        """
        reason = _require_reason(reason, "reject an edit request")
        event = self.events.get_by_guid(guid)
        require_role(actor, "approver", "reject edit requests")
        self._require_pending_edit(event)

        event = self._transition(
            event,
            EventStatus.APPROVED,
            EventStatus.APPROVED,
            HistoryAction.EDIT_REJECTED,
            actor,
            reason=reason,
            extra={"pending_edit_request": None},
        )
        self._log_transition(event, HistoryAction.EDIT_REJECTED, actor)
        return event

    # =========================================================================
    # Helpers
    # =========================================================================

    def _transition(
        self,
        event: Event,
        expected: EventStatus,
        target: EventStatus,
        action: HistoryAction,
        actor: Actor,
        reason: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        expected_version: Optional[int] = None,
        commit: bool = True,
        criteria: Iterable[Any] = (),
    ) -> Event:
        values = dict(extra or {})
        values["status"] = target.value
        values["is_deleted"] = target == EventStatus.DELETED
        values["status_history"] = list(event.status_history or []) + [
            history_entry(target, action, actor, reason)
        ]
        event = self.events.conditional_update(
            event,
            values,
            expected_status=expected,
            expected_version=expected_version,
            commit=commit,
            criteria=criteria,
        )
        if commit:
            self._invalidate(event)
        return event

    def _commit(self, event: Event) -> None:
        self.db.commit()
        self.db.refresh(event)
        self._invalidate(event)

    def _invalidate(self, event: Event) -> None:
        if self.cache is None:
            return
        self.cache.invalidate_events([event.guid])
        if event.calendar_id:
            self.cache.invalidate_window(event.calendar_id, event.start_at, event.end_at)

    def _requested_values(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        if not changes:
            raise ValidationError("No changes requested", field="changes")
        changes = dict(changes)
        location_guids = changes.pop("location_guids", None)
        values = self.events.coerce_changes(changes)
        if location_guids is not None:
            values["location_ids"] = [
                location.id for location in self.locations.get_approved_by_guids(location_guids)
            ]
        return values

    @staticmethod
    def _validate_times(event: Event, values: Dict[str, Any]) -> None:
        start_at = values.get("start_at", event.start_at)
        end_at = values.get("end_at", event.end_at)
        if start_at is None or end_at is None or end_at <= start_at:
            raise ValidationError("End time must be after start time", field="end_at")
        if "title" in values and not (values["title"] or "").strip():
            raise ValidationError("Title is required", field="title")

    @staticmethod
    def _require_status(event: Event, expected: EventStatus, action: str) -> None:
        if event.status != expected.value:
            raise ConflictError(
                f"Cannot {action} an event that is {event.status}",
                current_status=event.status,
                current_version=event.version,
            )

    @staticmethod
    def _require_pending_edit(event: Event) -> None:
        if event.status != EventStatus.APPROVED.value or not event.has_pending_edit:
            raise ConflictError(
                "No edit request is pending for this event",
                current_status=event.status,
                current_version=event.version,
            )

    @staticmethod
    def _log_transition(event: Event, action: HistoryAction, actor: Actor) -> None:
        logger.info(
            f"Event {event.guid} {action.value} by {actor.user_id} "
            f"(status={event.status}, version={event.version})"
        )
