"""
Event model for reservations and mirrored calendar events.

An Event is either a reservation created internally (starting as a draft)
or an entry imported from the external calendar source. Its fields fall in
two ownership groups:

- Externally owned (title, description, times, raw location text,
  categories, all-day flag) are overwritten by every reconciliation.
- Internally owned (lifecycle status, status history, pending edit request,
  setup/teardown minutes, assignment, notes) change only through the
  lifecycle service.

Design Rationale:
- Soft delete only: status 'deleted' plus a denormalized is_deleted flag
  for cheap filtering; previous_status is captured for restore
- status_history is an append-only JSON list written in the same UPDATE
  as the status it records
- version is bumped by every write and checked by conditional updates
- location_ids is an ordered JSON list of Location primary keys; integrity
  is maintained by the location services, not by foreign keys
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Index
)

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType, UTCDateTime, utcnow


class EventStatus(enum.Enum):
    """Lifecycle status of an event."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELETED = "deleted"


class HistoryAction(enum.Enum):
    """Step recorded by a status history entry."""
    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELETED = "deleted"
    RESTORED = "restored"
    EDIT_REQUESTED = "edit_requested"
    EDIT_APPROVED = "edit_approved"
    EDIT_REJECTED = "edit_rejected"
    SYNCED = "synced"


# Fields the external calendar owns; overwritten on every reconciliation
EXTERNAL_FIELDS = (
    "title",
    "description",
    "start_at",
    "end_at",
    "start_timezone",
    "end_timezone",
    "is_all_day",
    "location_text",
    "categories",
    "category",
)

# Fields an edit request may change
EDITABLE_FIELDS = (
    "title",
    "description",
    "start_at",
    "end_at",
    "start_timezone",
    "end_timezone",
    "is_all_day",
    "location_text",
    "location_ids",
    "category",
    "attendee_count",
    "setup_minutes",
    "teardown_minutes",
    "assigned_to",
    "internal_notes",
)


class Event(Base, GuidMixin):
    """
    Reservation / calendar event model.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 (inherited from GuidMixin)
        guid: GUID string property (evt_xxx, inherited from GuidMixin)

        Identity:
            event_id: Human-readable id assigned at creation (evt-xxxxxxxxxxxx)
            external_id: Id in the external calendar once synced/published
            calendar_id: External calendar holding the event

        Externally Owned:
            title, description, category, categories
            start_at / end_at: UTC instants
            start_timezone / end_timezone: Original zone names for display
            is_all_day, location_text

        Lifecycle:
            status: draft | pending | approved | rejected | deleted
            is_deleted: True iff status == deleted
            previous_status: Status captured at delete time
            pending_edit_request: {requested_changes, reason, requested_by,
                requested_by_email, requested_at} or NULL
            status_history: [{status, action, changed_at, changed_by,
                changed_by_email, reason}]
            approval_claim / approval_claimed_at: Lease token of the approval
                currently publishing the event, or NULL

        Enrichment (internally owned):
            setup_minutes, teardown_minutes, assigned_to, internal_notes,
            registration_event_id, extensions
    """

    __tablename__ = "events"

    GUID_PREFIX = "evt"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    event_id = Column(String(64), nullable=False, unique=True, index=True)
    external_id = Column(String(512), nullable=True, unique=True, index=True)
    calendar_id = Column(String(512), nullable=True, index=True)

    # Externally owned fields
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(255), nullable=True)
    categories = Column(JSONBType, nullable=False, default=list)
    start_at = Column(UTCDateTime, nullable=False, index=True)
    end_at = Column(UTCDateTime, nullable=False, index=True)
    start_timezone = Column(String(64), nullable=True)
    end_timezone = Column(String(64), nullable=True)
    is_all_day = Column(Boolean, default=False, nullable=False)
    location_text = Column(Text, nullable=True)

    # Location references (Location.id values, ordered)
    location_ids = Column(JSONBType, nullable=False, default=list)
    attendee_count = Column(Integer, nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=EventStatus.DRAFT.value, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    previous_status = Column(String(20), nullable=True)
    pending_edit_request = Column(JSONBType, nullable=True)
    status_history = Column(JSONBType, nullable=False, default=list)
    submitted_at = Column(UTCDateTime, nullable=True)
    deleted_at = Column(UTCDateTime, nullable=True)
    deleted_by = Column(String(255), nullable=True)

    # Approval lease taken before the external calendar write
    approval_claim = Column(String(64), nullable=True)
    approval_claimed_at = Column(UTCDateTime, nullable=True)

    # Enrichment (internally owned)
    setup_minutes = Column(Integer, nullable=False, default=0)
    teardown_minutes = Column(Integer, nullable=False, default=0)
    assigned_to = Column(String(255), nullable=True)
    internal_notes = Column(Text, nullable=True)
    registration_event_id = Column(String(512), nullable=True)
    extensions = Column(JSONBType, nullable=False, default=dict)

    # Ownership
    created_by = Column(String(255), nullable=True, index=True)
    created_by_email = Column(String(255), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    last_synced_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_events_calendar_start", "calendar_id", "start_at"),
        Index("idx_events_status_deleted", "status", "is_deleted"),
    )

    @property
    def last_history_entry(self):
        """Most recent status history entry, or None."""
        if not self.status_history:
            return None
        return self.status_history[-1]

    @property
    def has_pending_edit(self) -> bool:
        """Check if an edit request is outstanding."""
        return self.pending_edit_request is not None

    def __repr__(self) -> str:
        return (
            f"<Event("
            f"id={self.id}, "
            f"event_id='{self.event_id}', "
            f"status={self.status}, "
            f"version={self.version}"
            f")>"
        )

    def __str__(self) -> str:
        return f"{self.title} - {self.start_at}"
