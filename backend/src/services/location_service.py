"""
Location service for the canonical location registry and resolver.

Provides business logic for managing canonical locations and for
resolving free-text event location strings against them.

Design:
- Only approved locations take part in matching and selection
- Raw strings are split into segments; each segment resolves on exact
  normalized equality with a location name, display name or alias
- Unresolved segments are aggregated across events for manual assignment;
  assigning a string is the only way aliases are learned
- Suggestions for unresolved strings are advisory and never applied
- usage_count tracks non-deleted events referencing a location and is
  rebalanced by every operation that rewrites event references
- Merge and delete rewrite referencing events; both report progress and
  honor a cancellation token
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.src.models import Event, Location, LocationStatus
from backend.src.models.types import utcnow
from backend.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from backend.src.services.guid import GuidService
from backend.src.services.location_matching import (
    normalize_location,
    split_location_string,
    suggest_locations,
)
from backend.src.services.permissions import Actor, require_role
from backend.src.utils.cancellation import CancellationToken, is_cancelled
from backend.src.utils.logging_config import get_logger
from backend.src.utils.progress import OperationProgressTracker


logger = get_logger("services")

# Events rewritten per commit during location delete
REWRITE_BATCH_SIZE = 100

# Descriptive attributes accepted by create/update
LOCATION_ATTRIBUTES = (
    "display_name",
    "location_code",
    "building",
    "floor",
    "capacity",
    "features",
    "accessibility",
    "is_reservable",
    "notes",
)


@dataclass
class ResolvedLocations:
    """
    Result of resolving one raw location string.

    Attributes:
        location_ids: Matched location ids, in segment order, deduplicated
        unresolved: Segments that matched nothing (raw text)
    """
    location_ids: List[int] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class LocationMatchIndex:
    """
    Lookup from normalized string to approved location id.

    Built once per resolve pass so bulk callers (sync, unassigned scans)
    do not query locations per segment.
    """

    def __init__(self, locations: Iterable[Location]):
        self._by_key: Dict[str, int] = {}
        self._strings: Dict[int, List[str]] = {}
        for location in locations:
            self._strings[location.id] = location.match_strings
            for string in location.match_strings:
                key = normalize_location(string)
                if key:
                    self._by_key.setdefault(key, location.id)

    def match(self, segment: str) -> Optional[int]:
        return self._by_key.get(normalize_location(segment))

    def owner_of(self, normalized: str) -> Optional[int]:
        return self._by_key.get(normalized)

    def resolve(self, raw: Optional[str]) -> ResolvedLocations:
        result = ResolvedLocations()
        for segment in split_location_string(raw):
            location_id = self.match(segment)
            if location_id is None:
                result.unresolved.append(segment)
            elif location_id not in result.location_ids:
                result.location_ids.append(location_id)
        return result

    def suggest(self, normalized: str) -> List[Dict[str, Any]]:
        return suggest_locations(normalized, self._strings.items())


def adjust_usage_counts(
    db: Session,
    removed_ids: Iterable[int] = (),
    added_ids: Iterable[int] = (),
) -> None:
    """
    Rebalance usage_count for a change in one event's location references.

    Only the difference is applied: ids present in both lists are untouched.
    Counts never drop below zero. The caller owns the transaction.
    """
    removed = set(removed_ids or ())
    added = set(added_ids or ())
    deltas = {location_id: -1 for location_id in removed - added}
    deltas.update({location_id: 1 for location_id in added - removed})
    if not deltas:
        return

    for location in db.query(Location).filter(Location.id.in_(deltas.keys())).all():
        location.usage_count = max(0, (location.usage_count or 0) + deltas[location.id])


class LocationService:
    """
    Service for the location registry and resolver.

    Usage:
        >>> service = LocationService(db_session, progress=tracker)
        >>> resolved = service.resolve("Main Chapel, Room 402")
        >>> resolved.unresolved
        ['Main Chapel', 'Room 402']
    """

    def __init__(
        self,
        db: Session,
        progress: Optional[OperationProgressTracker] = None,
    ):
        """
        Initialize location service.

        Args:
            db: SQLAlchemy database session
            progress: Tracker for delete/merge progress (a private one is
                created when omitted)
        """
        self.db = db
        self.progress = progress or OperationProgressTracker()

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_by_guid(self, guid: str) -> Location:
        """
        Get a location by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or no location matches
        """
        if not GuidService.validate_guid(guid, "loc"):
            raise NotFoundError("Location", guid)
        try:
            uuid_value = GuidService.parse_guid(guid, "loc")
        except ValueError:
            raise NotFoundError("Location", guid)

        location = self.db.query(Location).filter(Location.uuid == uuid_value).first()
        if not location:
            raise NotFoundError("Location", guid)
        return location

    def get_by_id(self, location_id: int) -> Location:
        location = self.db.query(Location).filter(Location.id == location_id).first()
        if not location:
            raise NotFoundError("Location", location_id)
        return location

    def get_approved_by_guids(self, guids: Iterable[str]) -> List[Location]:
        """
        Resolve GUIDs to approved locations, preserving order.

        Raises:
            NotFoundError: If a GUID does not resolve
            ValidationError: If a location is not approved
        """
        locations = []
        for guid in guids:
            location = self.get_by_guid(guid)
            if not location.is_active:
                raise ValidationError(
                    f"Location '{location.name}' is {location.status} and cannot be selected",
                    field="location_guids",
                )
            if location not in locations:
                locations.append(location)
        return locations

    def guids_for_ids(self, location_ids: Iterable[int]) -> List[str]:
        """Map location ids to GUIDs, preserving order and skipping unknown ids."""
        ids = list(location_ids or [])
        if not ids:
            return []
        by_id = {
            location.id: location.guid
            for location in self.db.query(Location).filter(Location.id.in_(ids)).all()
        }
        return [by_id[location_id] for location_id in ids if location_id in by_id]

    def list(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        reservable_only: bool = False,
    ) -> List[Location]:
        """
        List locations with optional filtering.

        Args:
            status: pending | approved | merged | deleted (all when omitted)
            search: Case-insensitive substring of name or display name
            reservable_only: Only locations selectable in the reservation flow
        """
        query = self.db.query(Location)
        if status:
            if status not in {s.value for s in LocationStatus}:
                raise ValidationError(f"Invalid location status: {status}", field="status")
            query = query.filter(Location.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                func.lower(Location.name).like(pattern)
                | func.lower(func.coalesce(Location.display_name, "")).like(pattern)
            )
        if reservable_only:
            query = query.filter(Location.is_reservable.is_(True))
        return query.order_by(Location.name.asc()).all()

    def list_pending(self) -> List[Location]:
        return self.list(status=LocationStatus.PENDING.value)

    def build_index(self) -> LocationMatchIndex:
        """Build a match index over approved locations."""
        approved = (
            self.db.query(Location)
            .filter(Location.status == LocationStatus.APPROVED.value)
            .order_by(Location.id.asc())
            .all()
        )
        return LocationMatchIndex(approved)

    def resolve(self, raw: Optional[str], index: Optional[LocationMatchIndex] = None) -> ResolvedLocations:
        """Resolve a raw location string to approved location ids."""
        return (index or self.build_index()).resolve(raw)

    # =========================================================================
    # Create / update / approve
    # =========================================================================

    def create(
        self,
        actor: Actor,
        name: str,
        parent_guid: Optional[str] = None,
        aliases: Optional[List[str]] = None,
        **attributes: Any,
    ) -> Location:
        """
        Create a location.

        Approvers create approved locations; other requesters propose
        pending ones for review.

        Raises:
            ValidationError: If the name is empty or the parent is invalid
            ConflictError: If the name already resolves to an approved location
        """
        require_role(actor, "requester", "propose locations")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required", field="name")

        index = self.build_index()
        existing_id = index.owner_of(normalize_location(name))
        if existing_id is not None:
            existing = self.get_by_id(existing_id)
            raise ConflictError(f"'{name}' already resolves to location '{existing.name}'")

        parent_id = self._resolve_parent(parent_guid) if parent_guid else None
        status = LocationStatus.APPROVED if actor.is_approver else LocationStatus.PENDING

        location = Location(
            name=name,
            aliases=self._clean_aliases(aliases or [], exclude=[name]),
            usage_count=0,
            parent_location_id=parent_id,
            status=status.value,
            created_by=actor.email or actor.user_id,
            **self._pick_attributes(attributes),
        )
        try:
            self.db.add(location)
            self.db.commit()
            self.db.refresh(location)
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Failed to create location '{name}': {e}")
            raise ValidationError("Failed to create location: database constraint violation")

        logger.info(f"Created location: {location.name} ({location.guid}, status={location.status})")
        return location

    def update(self, guid: str, actor: Actor, **changes: Any) -> Location:
        """
        Partially update a location's name, parent or descriptive attributes.

        Raises:
            NotFoundError: If location not found
            ConflictError: If the new name collides with another location
            ValidationError: If the parent would create a cycle
        """
        require_role(actor, "approver", "update locations")
        location = self.get_by_guid(guid)
        if location.status in (LocationStatus.MERGED.value, LocationStatus.DELETED.value):
            raise ConflictError(
                f"Location '{location.name}' is {location.status} and cannot be updated",
                current_status=location.status,
            )

        if "name" in changes and changes["name"] is not None:
            name = changes["name"].strip()
            if not name:
                raise ValidationError("Location name is required", field="name")
            owner = self.build_index().owner_of(normalize_location(name))
            if owner is not None and owner != location.id:
                raise ConflictError(f"'{name}' already resolves to another location")
            location.name = name

        if "parent_guid" in changes:
            parent_guid = changes["parent_guid"]
            location.parent_location_id = (
                self._resolve_parent(parent_guid, child=location) if parent_guid else None
            )

        for key, value in self._pick_attributes(changes).items():
            setattr(location, key, value)

        self.db.commit()
        self.db.refresh(location)
        logger.info(f"Updated location: {location.name} ({location.guid})")
        return location

    def approve(self, guid: str, actor: Actor, notes: Optional[str] = None) -> Location:
        """
        Approve a pending location so it takes part in matching.

        Raises:
            ConflictError: If the location is not pending
        """
        require_role(actor, "approver", "approve locations")
        location = self.get_by_guid(guid)
        if location.status != LocationStatus.PENDING.value:
            raise ConflictError(
                f"Location '{location.name}' is {location.status}, not pending",
                current_status=location.status,
            )

        location.status = LocationStatus.APPROVED.value
        location.reviewed_by = actor.email or actor.user_id
        location.reviewed_at = utcnow()
        location.review_notes = notes
        self.db.commit()
        self.db.refresh(location)

        logger.info(f"Approved location: {location.name} ({location.guid})")
        return location

    def update_aliases(self, guid: str, aliases: List[str], actor: Actor) -> Location:
        """
        Replace a location's alias list.

        Aliases are deduplicated by normalized form; an alias already
        resolving to a different approved location is rejected.
        """
        require_role(actor, "approver", "edit location aliases")
        location = self.get_by_guid(guid)
        cleaned = self._clean_aliases(aliases, exclude=[location.name])

        index = self.build_index()
        for alias in cleaned:
            owner = index.owner_of(normalize_location(alias))
            if owner is not None and owner != location.id:
                other = self.get_by_id(owner)
                raise ConflictError(f"Alias '{alias}' already resolves to location '{other.name}'")

        location.aliases = cleaned
        self.db.commit()
        self.db.refresh(location)
        logger.info(f"Updated aliases for location {location.guid}: {len(cleaned)} alias(es)")
        return location

    # =========================================================================
    # Unassigned strings and manual assignment
    # =========================================================================

    def list_unassigned(self, include_suggestions: bool = True) -> List[Dict[str, Any]]:
        """
        Aggregate location segments that resolve to no approved location.

        Returns:
            List of {raw, normalized, event_count, suggestions} sorted by
            event_count descending. ``raw`` is the most common spelling.
        """
        index = self.build_index()
        counts: Dict[str, int] = {}
        spellings: Dict[str, Counter] = {}

        events = (
            self.db.query(Event)
            .filter(Event.is_deleted.is_(False), Event.location_text.isnot(None))
            .all()
        )
        for event in events:
            seen = set()
            for segment in index.resolve(event.location_text).unresolved:
                normalized = normalize_location(segment)
                if not normalized:
                    continue
                spellings.setdefault(normalized, Counter())[segment] += 1
                if normalized not in seen:
                    counts[normalized] = counts.get(normalized, 0) + 1
                    seen.add(normalized)

        guid_by_id = {}
        results = []
        for normalized, event_count in counts.items():
            suggestions = []
            if include_suggestions:
                for suggestion in index.suggest(normalized):
                    location_id = suggestion["location_id"]
                    if location_id not in guid_by_id:
                        guid_by_id[location_id] = self.get_by_id(location_id).guid
                    suggestions.append({
                        "location_guid": guid_by_id[location_id],
                        "matched": suggestion["matched"],
                        "confidence": suggestion["confidence"],
                    })
            results.append({
                "raw": spellings[normalized].most_common(1)[0][0],
                "normalized": normalized,
                "event_count": event_count,
                "suggestions": suggestions,
            })

        results.sort(key=lambda r: (-r["event_count"], r["normalized"]))
        return results

    def assign_string(self, raw_string: str, location_guid: str, actor: Actor) -> Dict[str, Any]:
        """
        Assign an unresolved location string to a location.

        Adds the string as an alias (unless already present) and adds the
        location to every non-deleted event with a segment that normalizes
        to the same value. Re-assigning the same pair is a no-op.

        Returns:
            {location, alias_added, events_updated}

        Raises:
            ValidationError: If the string is empty or contains separators
            ConflictError: If the string already resolves to another location
        """
        require_role(actor, "approver", "assign location strings")
        raw_string = (raw_string or "").strip()
        normalized = normalize_location(raw_string)
        if not normalized:
            raise ValidationError("Location string is required", field="raw_string")
        if len(split_location_string(raw_string)) != 1:
            raise ValidationError(
                "Assign each segment of a multi-location string separately",
                field="raw_string",
            )

        location = self.get_by_guid(location_guid)
        if not location.is_active:
            raise ConflictError(
                f"Location '{location.name}' is {location.status}",
                current_status=location.status,
            )

        index = self.build_index()
        owner = index.owner_of(normalized)
        if owner is not None and owner != location.id:
            other = self.get_by_id(owner)
            raise ConflictError(f"'{raw_string}' already resolves to location '{other.name}'")

        alias_added = False
        known = {normalize_location(s) for s in location.match_strings}
        if normalized not in known:
            location.aliases = list(location.aliases or []) + [raw_string]
            alias_added = True

        events_updated = 0
        events = (
            self.db.query(Event)
            .filter(Event.is_deleted.is_(False), Event.location_text.isnot(None))
            .all()
        )
        for event in events:
            segments = {normalize_location(s) for s in split_location_string(event.location_text)}
            if normalized not in segments:
                continue
            ids = list(event.location_ids or [])
            if location.id in ids:
                continue
            event.location_ids = ids + [location.id]
            event.version = (event.version or 1) + 1
            events_updated += 1

        location.usage_count = (location.usage_count or 0) + events_updated
        self.db.commit()
        self.db.refresh(location)

        logger.info(
            f"Assigned '{raw_string}' to location {location.guid} "
            f"(alias_added={alias_added}, events_updated={events_updated})"
        )
        return {
            "location": location,
            "alias_added": alias_added,
            "events_updated": events_updated,
        }

    # =========================================================================
    # Merge / delete
    # =========================================================================

    def merge(
        self,
        source_guids: List[str],
        target_guid: str,
        actor: Actor,
        merge_aliases: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        """
        Merge one or more source locations into a target.

        Each source is merged in its own transaction; a failing source is
        reported and does not undo earlier merges.

        Returns:
            Per-source results: {source_guid, status: ok|error, events_updated, error}

        Raises:
            NotFoundError: If the target does not exist
            OperationCancelledError: If cancelled between sources, or while
                rewriting the events of a source (that source is rolled back
                and left unmerged)
        """
        require_role(actor, "approver", "merge locations")
        if not source_guids:
            raise ValidationError("At least one source location is required", field="source_guids")
        target = self.get_by_guid(target_guid)

        results = []
        for position, source_guid in enumerate(source_guids):
            if is_cancelled(cancel_token):
                logger.warning(
                    f"Merge into {target.guid} cancelled after {position}/{len(source_guids)} sources"
                )
                raise OperationCancelledError("merge", position, len(source_guids))
            try:
                updated = self._merge_one(source_guid, target, actor, merge_aliases, cancel_token)
                results.append({
                    "source_guid": source_guid,
                    "status": "ok",
                    "events_updated": updated,
                    "error": None,
                })
            except (NotFoundError, ConflictError, ValidationError) as e:
                self.db.rollback()
                logger.warning(f"Merge of {source_guid} into {target.guid} failed: {e}")
                results.append({
                    "source_guid": source_guid,
                    "status": "error",
                    "events_updated": 0,
                    "error": str(e),
                })
        return results

    def _merge_one(
        self,
        source_guid: str,
        target: Location,
        actor: Actor,
        merge_aliases: bool,
        cancel_token: Optional[CancellationToken] = None,
    ) -> int:
        source = self.get_by_guid(source_guid)
        self.db.refresh(target)
        if source.id == target.id:
            raise ValidationError("Cannot merge a location into itself", field="source_guids")
        for location in (source, target):
            if not location.is_active:
                raise ConflictError(
                    f"Location '{location.name}' is {location.status}, not approved",
                    current_status=location.status,
                )

        referencing = self._events_referencing(source.id)
        self.progress.start(source.guid, "merge", len(referencing))

        overlap = 0
        for processed, event in enumerate(referencing, start=1):
            if is_cancelled(cancel_token):
                self.db.rollback()
                self.progress.cancel(source.guid)
                logger.warning(
                    f"Merge of {source.guid} into {target.guid} cancelled at {processed - 1}/{len(referencing)} events"
                )
                raise OperationCancelledError("merge", processed - 1, len(referencing))
            ids = list(event.location_ids or [])
            if target.id in ids and not event.is_deleted:
                overlap += 1
            event.location_ids = list(OrderedDict.fromkeys(
                target.id if location_id == source.id else location_id for location_id in ids
            ))
            event.version = (event.version or 1) + 1
            self.progress.advance(source.guid, processed)

        if merge_aliases:
            target.aliases = self._clean_aliases(
                list(target.aliases or []) + source.match_strings,
                exclude=[target.name],
            )

        target.usage_count = (target.usage_count or 0) + (source.usage_count or 0) - overlap
        source.status = LocationStatus.MERGED.value
        source.merged_into_id = target.id
        source.merged_by = actor.email or actor.user_id
        source.merged_at = utcnow()

        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.progress.fail(source.guid, str(e))
            raise
        self.progress.complete(source.guid)

        logger.info(
            f"Merged location {source.guid} into {target.guid} "
            f"(events={len(referencing)}, merge_aliases={merge_aliases})"
        )
        return len(referencing)

    def delete(
        self,
        guid: str,
        actor: Actor,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Soft-delete a location and remove it from referencing events.

        The location is marked deleted first, then referencing events are
        rewritten in committed batches. Calling delete again on a deleted
        location resumes the cleanup of any references left behind.

        Returns:
            {location, events_updated}

        Raises:
            ConflictError: If the location was merged
            OperationCancelledError: If cancelled between batches
        """
        require_role(actor, "approver", "delete locations")
        location = self.get_by_guid(guid)
        if location.status == LocationStatus.MERGED.value:
            raise ConflictError(
                f"Location '{location.name}' was merged and cannot be deleted",
                current_status=location.status,
            )

        if location.status != LocationStatus.DELETED.value:
            location.status = LocationStatus.DELETED.value
            location.deleted_by = actor.email or actor.user_id
            location.deleted_at = utcnow()
            for child in self.db.query(Location).filter(Location.parent_location_id == location.id).all():
                child.parent_location_id = None
            self.db.commit()

        referencing = self._events_referencing(location.id)
        total = len(referencing)
        self.progress.start(location.guid, "delete", total)

        processed = 0
        try:
            for batch_start in range(0, total, REWRITE_BATCH_SIZE):
                if is_cancelled(cancel_token):
                    self.progress.cancel(location.guid)
                    logger.warning(f"Delete of location {location.guid} cancelled at {processed}/{total}")
                    raise OperationCancelledError("delete", processed, total)

                for event in referencing[batch_start:batch_start + REWRITE_BATCH_SIZE]:
                    event.location_ids = [i for i in (event.location_ids or []) if i != location.id]
                    event.version = (event.version or 1) + 1
                    if not event.is_deleted:
                        location.usage_count = max(0, (location.usage_count or 0) - 1)
                    processed += 1

                self.db.commit()
                self.progress.advance(location.guid, processed)
        except OperationCancelledError:
            raise
        except Exception as e:
            self.db.rollback()
            self.progress.fail(location.guid, str(e))
            logger.error(f"Delete of location {location.guid} failed at {processed}/{total}: {e}", exc_info=True)
            raise

        self.progress.complete(location.guid)
        self.db.refresh(location)
        logger.info(f"Deleted location: {location.name} ({location.guid}, events_updated={processed})")
        return {"location": location, "events_updated": processed}

    def get_delete_progress(self, guid: str) -> Dict[str, Any]:
        """
        Get progress of the latest delete/merge rewrite for a location.

        Raises:
            NotFoundError: If no operation is tracked for the location
        """
        progress = self.progress.get(guid)
        if progress is None:
            raise NotFoundError("Location operation", guid)
        return progress.to_dict()

    # =========================================================================
    # Counts and statistics
    # =========================================================================

    def get_event_count(self, guid: str) -> Dict[str, Any]:
        """Count non-deleted events currently referencing a location."""
        location = self.get_by_guid(guid)
        events = self._events_referencing(location.id)
        active = sum(1 for event in events if not event.is_deleted)
        return {
            "location_guid": location.guid,
            "event_count": active,
            "deleted_event_count": len(events) - active,
            "usage_count": location.usage_count,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Counts of locations by status plus the number of unassigned strings."""
        rows = (
            self.db.query(Location.status, func.count(Location.id))
            .group_by(Location.status)
            .all()
        )
        by_status = {s.value: 0 for s in LocationStatus}
        by_status.update({status: count for status, count in rows})
        return {
            "total_count": sum(by_status.values()),
            "by_status": by_status,
            "reservable_count": (
                self.db.query(func.count(Location.id))
                .filter(
                    Location.status == LocationStatus.APPROVED.value,
                    Location.is_reservable.is_(True),
                )
                .scalar() or 0
            ),
            "unassigned_string_count": len(self.list_unassigned(include_suggestions=False)),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _events_referencing(self, location_id: int) -> List[Event]:
        # location_ids is a JSON list, filtered in Python for portability
        events = self.db.query(Event).order_by(Event.id.asc()).all()
        return [event for event in events if location_id in (event.location_ids or [])]

    def _resolve_parent(self, parent_guid: str, child: Optional[Location] = None) -> int:
        parent = self.get_by_guid(parent_guid)
        if parent.status in (LocationStatus.MERGED.value, LocationStatus.DELETED.value):
            raise ValidationError(
                f"Parent location '{parent.name}' is {parent.status}",
                field="parent_guid",
            )
        if child is not None:
            node: Optional[Location] = parent
            while node is not None:
                if node.id == child.id:
                    raise ValidationError(
                        "Parent location would create a cycle",
                        field="parent_guid",
                    )
                node = node.parent
        return parent.id

    @staticmethod
    def _clean_aliases(aliases: Iterable[str], exclude: Iterable[str] = ()) -> List[str]:
        seen = {normalize_location(value) for value in exclude}
        cleaned = []
        for alias in aliases:
            alias = (alias or "").strip()
            key = normalize_location(alias)
            if not key or key in seen:
                continue
            seen.add(key)
            cleaned.append(alias)
        return cleaned

    @staticmethod
    def _pick_attributes(values: Dict[str, Any]) -> Dict[str, Any]:
        picked = {}
        for key in LOCATION_ATTRIBUTES:
            if key in values and values[key] is not None:
                picked[key] = values[key]
        for key in ("features", "accessibility"):
            if key in picked:
                picked[key] = list(picked[key])
        return picked
