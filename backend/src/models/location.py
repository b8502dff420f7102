"""
Location model for canonical rooms and spaces.

Locations are the canonical records that free-text event location strings
resolve to. Each carries the aliases learned from manual assignment and a
usage counter kept in step with the events that reference it.

Design Rationale:
- Only approved locations take part in matching and selection
- Merged and deleted locations are retained for audit with who/when metadata
- usage_count is maintained procedurally by the location services
- parent_location_id groups sub-spaces under a reservable parent
"""

import enum
from typing import List

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType, UTCDateTime, utcnow


class LocationStatus(enum.Enum):
    """Registry status of a location."""
    PENDING = "pending"
    APPROVED = "approved"
    MERGED = "merged"
    DELETED = "deleted"


class Location(Base, GuidMixin):
    """
    Canonical location model.

    Attributes:
        id: Primary key (internal, never exposed)
        guid: GUID string property (loc_xxx, inherited from GuidMixin)
        name: Canonical name
        display_name: Optional name shown in calendars
        location_code: Optional short code (e.g. room number)
        aliases: Alternate strings resolving to this location
        usage_count: Number of non-deleted events referencing it
        building, floor, capacity, features, accessibility: Descriptive attributes
        is_reservable: Selectable in the public reservation flow
        parent_location_id: Parent space for hierarchical grouping
        status: pending | approved | merged | deleted
        merged_into_id / merged_by / merged_at: Set when merged
        deleted_by / deleted_at: Set when deleted
        reviewed_by / reviewed_at / review_notes: Set when approved
    """

    __tablename__ = "locations"

    GUID_PREFIX = "loc"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=True)
    location_code = Column(String(50), nullable=True)

    # Matching data
    aliases = Column(JSONBType, nullable=False, default=list)
    usage_count = Column(Integer, nullable=False, default=0)

    # Attributes
    building = Column(String(255), nullable=True)
    floor = Column(String(50), nullable=True)
    capacity = Column(Integer, nullable=True)
    features = Column(JSONBType, nullable=False, default=list)
    accessibility = Column(JSONBType, nullable=False, default=list)
    is_reservable = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    parent_location_id = Column(
        Integer,
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Status
    status = Column(String(20), nullable=False, default=LocationStatus.APPROVED.value, index=True)
    merged_into_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    merged_by = Column(String(255), nullable=True)
    merged_at = Column(UTCDateTime, nullable=True)
    deleted_by = Column(String(255), nullable=True)
    deleted_at = Column(UTCDateTime, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    review_notes = Column(Text, nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    parent = relationship(
        "Location",
        remote_side=[id],
        foreign_keys=[parent_location_id],
    )
    merged_into = relationship(
        "Location",
        remote_side=[id],
        foreign_keys=[merged_into_id],
    )

    __table_args__ = (
        Index("idx_locations_status_name", "status", "name"),
    )

    @property
    def is_active(self) -> bool:
        """Approved locations are the only ones that match and can be selected."""
        return self.status == LocationStatus.APPROVED.value

    @property
    def label(self) -> str:
        """Name used when rendering the location in event text."""
        return self.display_name or self.name

    @property
    def parent_guid(self):
        return self.parent.guid if self.parent else None

    @property
    def merged_into_guid(self):
        return self.merged_into.guid if self.merged_into else None

    @property
    def match_strings(self) -> List[str]:
        """Canonical name, display name and aliases."""
        strings = [self.name]
        if self.display_name:
            strings.append(self.display_name)
        strings.extend(self.aliases or [])
        return strings

    def __repr__(self) -> str:
        return (
            f"<Location("
            f"id={self.id}, "
            f"name='{self.name}', "
            f"status={self.status}, "
            f"usage_count={self.usage_count}"
            f")>"
        )

    def __str__(self) -> str:
        if self.building:
            return f"{self.name} ({self.building})"
        return self.name
