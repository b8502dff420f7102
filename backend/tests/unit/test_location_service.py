"""
Unit tests for LocationService.

Tests the location registry and resolver: create/approve, alias handling,
string resolution, unassigned string aggregation, manual assignment,
merge and delete with progress and cancellation.
"""

import itertools

import pytest

from backend.src.models import EventStatus, LocationStatus
from backend.src.services.exceptions import (
    ConflictError,
    OperationCancelledError,
    PermissionDeniedError,
    ValidationError,
)
from backend.src.services.location_service import LocationService
from backend.src.utils.cancellation import CancellationToken


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def location_service(test_db_session, progress_tracker):
    """Create a LocationService instance for testing."""
    return LocationService(test_db_session, progress=progress_tracker)


@pytest.fixture
def cancelled_token():
    token = CancellationToken()
    token.cancel()
    return token


# ============================================================================
# Create / update / approve
# ============================================================================


class TestLocationServiceCreate:
    """Tests for location creation."""

    def test_approver_creates_approved_location(self, location_service, approver):
        """Test that approvers create locations that match immediately."""
        location = location_service.create(
            approver, "Social Hall", aliases=["Kiddush Room"], capacity=200, is_reservable=True
        )

        assert location.status == LocationStatus.APPROVED.value
        assert location.aliases == ["Kiddush Room"]
        assert location.capacity == 200
        assert location.guid.startswith("loc_")
        assert location_service.resolve("kiddush room").location_ids == [location.id]

    def test_requester_proposes_pending_location(self, location_service, requester):
        """Test that requesters create pending locations that do not match."""
        location = location_service.create(requester, "Roof Deck")

        assert location.status == LocationStatus.PENDING.value
        assert location_service.resolve("Roof Deck").location_ids == []

    def test_create_duplicate_normalized_name(self, location_service, approver, sample_location):
        """Test that a name resolving to an existing location is rejected."""
        sample_location(name="Main Chapel")

        with pytest.raises(ConflictError):
            location_service.create(approver, "  main   chapel ")

    def test_create_requires_name(self, location_service, approver):
        with pytest.raises(ValidationError):
            location_service.create(approver, "   ")

    def test_create_drops_duplicate_aliases(self, location_service, approver):
        location = location_service.create(
            approver, "Conference Room 402", aliases=["Conf 402", "Boardroom", "boardroom"]
        )

        assert location.aliases == ["Boardroom"]

    def test_viewer_cannot_create(self, location_service, viewer):
        with pytest.raises(PermissionDeniedError):
            location_service.create(viewer, "Library")


class TestLocationServiceUpdate:
    """Tests for update, approve and alias replacement."""

    def test_approve_pending(self, location_service, approver, sample_location):
        pending = sample_location(name="Roof Deck", status=LocationStatus.PENDING.value)

        location = location_service.approve(pending.guid, approver, notes="Opened in spring")

        assert location.status == LocationStatus.APPROVED.value
        assert location.reviewed_by == approver.email
        assert location.review_notes == "Opened in spring"

    def test_approve_already_approved(self, location_service, approver, sample_location):
        location = sample_location()

        with pytest.raises(ConflictError):
            location_service.approve(location.guid, approver)

    def test_update_name_collision(self, location_service, approver, sample_location):
        sample_location(name="Library")
        other = sample_location(name="Youth Lounge")

        with pytest.raises(ConflictError):
            location_service.update(other.guid, approver, name="LIBRARY")

    def test_update_parent_cycle(self, location_service, approver, sample_location):
        building = sample_location(name="Community House")
        floor = sample_location(name="Second Floor", parent_location_id=building.id)

        with pytest.raises(ValidationError):
            location_service.update(building.guid, approver, parent_guid=floor.guid)

    def test_update_aliases_conflict(self, location_service, approver, sample_location):
        sample_location(name="Library", aliases=["Reading Room"])
        chapel = sample_location(name="Main Chapel")

        with pytest.raises(ConflictError):
            location_service.update_aliases(chapel.guid, ["Sanctuary", "reading room"], approver)

    def test_update_aliases_replaces_list(self, location_service, approver, sample_location):
        chapel = sample_location(name="Main Chapel", aliases=["Old Alias"])

        location = location_service.update_aliases(chapel.guid, ["Sanctuary", " sanctuary "], approver)

        assert location.aliases == ["Sanctuary"]
        assert location_service.resolve("Old Alias").location_ids == []


# ============================================================================
# Resolution and assignment
# ============================================================================


class TestLocationResolution:
    """Tests for resolving raw strings."""

    def test_resolve_segments(self, location_service, sample_location):
        chapel = sample_location(name="Main Chapel", aliases=["Sanctuary"])

        resolved = location_service.resolve("Sanctuary, Room 402; main chapel")

        assert resolved.location_ids == [chapel.id]
        assert resolved.unresolved == ["Room 402"]

    def test_resolve_display_name(self, location_service, sample_location):
        library = sample_location(name="Library", display_name="Temple Library")

        assert location_service.resolve("temple library").location_ids == [library.id]

    def test_list_unassigned_counts_events(self, location_service, sample_location, sample_event):
        sample_location(name="Main Chapel")
        sample_event(location_text="Main Chapel; Room 402")
        sample_event(location_text="room 402")
        sample_event(location_text="Youth Lounge")
        sample_event(location_text="Room 402", status=EventStatus.DELETED.value)

        unassigned = location_service.list_unassigned(include_suggestions=False)

        assert [(u["normalized"], u["event_count"]) for u in unassigned] == [
            ("402", 2),
            ("youth lounge", 1),
        ]

    def test_list_unassigned_suggestions(self, location_service, sample_location, sample_event):
        chapel = sample_location(name="Main Chapel")
        sample_event(location_text="Chapel")

        unassigned = location_service.list_unassigned()

        assert unassigned[0]["suggestions"][0]["location_guid"] == chapel.guid
        assert unassigned[0]["suggestions"][0]["confidence"] >= 0.75

    def test_assign_string_adds_alias_and_references(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        boardroom = sample_location(name="Boardroom")
        first = sample_event(location_text="Main Chapel, Room 402")
        second = sample_event(location_text="rm 402")
        untouched = sample_event(location_text="Library")

        result = location_service.assign_string("Room 402", boardroom.guid, approver)

        assert result["alias_added"] is True
        assert result["events_updated"] == 2
        assert result["location"].aliases == ["Room 402"]
        assert result["location"].usage_count == 2
        for event in (first, second, untouched):
            test_db_session.refresh(event)
        assert first.location_ids == [boardroom.id]
        assert second.location_ids == [boardroom.id]
        assert untouched.location_ids == []

    def test_assign_each_segment_to_its_own_location(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        beit_midrash = sample_location(name="Beit Midrash")
        youth_lounge = sample_location(name="Youth Lounge")
        event = sample_event(location_text="Main Chapel, Room 402")

        first = location_service.assign_string("Main Chapel", beit_midrash.guid, approver)
        second = location_service.assign_string("Room 402", youth_lounge.guid, approver)

        assert first["location"].aliases == ["Main Chapel"]
        assert second["location"].aliases == ["Room 402"]
        assert first["events_updated"] == 1
        assert second["events_updated"] == 1
        test_db_session.refresh(event)
        assert event.location_ids == [beit_midrash.id, youth_lounge.id]
        assert location_service.resolve("Main Chapel, Room 402").location_ids == [
            beit_midrash.id,
            youth_lounge.id,
        ]

    def test_assign_string_twice_is_noop(self, location_service, approver, sample_location, sample_event):
        boardroom = sample_location(name="Boardroom")
        sample_event(location_text="Room 402")
        location_service.assign_string("Room 402", boardroom.guid, approver)

        result = location_service.assign_string("Room 402", boardroom.guid, approver)

        assert result["alias_added"] is False
        assert result["events_updated"] == 0
        assert result["location"].usage_count == 1

    def test_assign_string_owned_by_other_location(self, location_service, approver, sample_location):
        sample_location(name="Library", aliases=["Reading Room"])
        chapel = sample_location(name="Main Chapel")

        with pytest.raises(ConflictError):
            location_service.assign_string("reading room", chapel.guid, approver)

    def test_assign_multi_segment_string(self, location_service, approver, sample_location):
        chapel = sample_location(name="Main Chapel")

        with pytest.raises(ValidationError):
            location_service.assign_string("Chapel, Library", chapel.guid, approver)

    def test_requester_cannot_assign(self, location_service, requester, sample_location):
        chapel = sample_location(name="Main Chapel")

        with pytest.raises(PermissionDeniedError):
            location_service.assign_string("Chapel", chapel.guid, requester)


# ============================================================================
# Merge
# ============================================================================


class TestLocationMerge:
    """Tests for merging locations."""

    def test_merge_moves_references_and_usage(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        target = sample_location(name="Social Hall", usage_count=5)
        source = sample_location(name="Kiddush Room", aliases=["Kiddush Hall"], usage_count=3)
        for _ in range(5):
            sample_event(location_ids=[target.id])
        moved = [sample_event(location_ids=[source.id]) for _ in range(3)]

        results = location_service.merge([source.guid], target.guid, approver)

        assert results == [{
            "source_guid": source.guid,
            "status": "ok",
            "events_updated": 3,
            "error": None,
        }]
        test_db_session.refresh(target)
        test_db_session.refresh(source)
        assert target.usage_count == 8
        assert source.status == LocationStatus.MERGED.value
        assert source.merged_into_id == target.id
        assert source.merged_by == approver.email
        assert set(target.aliases) == {"Kiddush Room", "Kiddush Hall"}
        for event in moved:
            test_db_session.refresh(event)
            assert event.location_ids == [target.id]

    def test_merge_overlap_counted_once(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        target = sample_location(name="Social Hall", usage_count=2)
        source = sample_location(name="Kiddush Room", usage_count=2)
        sample_event(location_ids=[target.id])
        both = sample_event(location_ids=[source.id, target.id])
        sample_event(location_ids=[source.id])

        location_service.merge([source.guid], target.guid, approver)

        test_db_session.refresh(target)
        test_db_session.refresh(both)
        assert target.usage_count == 3
        assert both.location_ids == [target.id]

    def test_merge_without_aliases(self, location_service, approver, sample_location):
        target = sample_location(name="Social Hall")
        source = sample_location(name="Kiddush Room")

        location_service.merge([source.guid], target.guid, approver, merge_aliases=False)

        assert location_service.resolve("Kiddush Room").location_ids == []

    def test_merge_reports_per_source(self, location_service, approver, sample_location):
        target = sample_location(name="Social Hall")
        good = sample_location(name="Kiddush Room")
        pending = sample_location(name="Roof Deck", status=LocationStatus.PENDING.value)

        results = location_service.merge([pending.guid, good.guid], target.guid, approver)

        assert [r["status"] for r in results] == ["error", "ok"]
        assert location_service.get_by_guid(good.guid).status == LocationStatus.MERGED.value
        assert location_service.get_by_guid(pending.guid).status == LocationStatus.PENDING.value

    def test_merge_into_itself(self, location_service, approver, sample_location):
        target = sample_location(name="Social Hall")

        results = location_service.merge([target.guid], target.guid, approver)

        assert results[0]["status"] == "error"

    def test_merge_cancelled(self, location_service, approver, sample_location, cancelled_token):
        target = sample_location(name="Social Hall")
        source = sample_location(name="Kiddush Room")

        with pytest.raises(OperationCancelledError) as exc_info:
            location_service.merge([source.guid], target.guid, approver, cancel_token=cancelled_token)

        assert exc_info.value.processed == 0
        assert exc_info.value.total == 1
        assert location_service.get_by_guid(source.guid).status == LocationStatus.APPROVED.value

    def test_merge_cancelled_mid_rewrite_rolls_back_source(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        target = sample_location(name="Social Hall", usage_count=0)
        source = sample_location(name="Kiddush Room", usage_count=2)
        events = [sample_event(location_ids=[source.id]) for _ in range(2)]
        # Clock reads: 1 before the source, 2 before the first event, 3 before the second
        token = CancellationToken(deadline=3, clock=itertools.count(1).__next__)

        with pytest.raises(OperationCancelledError) as exc_info:
            location_service.merge([source.guid], target.guid, approver, cancel_token=token)

        assert exc_info.value.processed == 1
        assert exc_info.value.total == 2
        assert location_service.get_delete_progress(source.guid)["status"] == "cancelled"

        test_db_session.refresh(source)
        test_db_session.refresh(target)
        assert source.status == LocationStatus.APPROVED.value
        assert target.usage_count == 0
        for event in events:
            test_db_session.refresh(event)
            assert event.location_ids == [source.id]


# ============================================================================
# Delete
# ============================================================================


class TestLocationDelete:
    """Tests for deleting locations."""

    def test_delete_rewrites_references(
        self, location_service, approver, sample_location, sample_event, test_db_session
    ):
        chapel = sample_location(name="Main Chapel", usage_count=2)
        library = sample_location(name="Library", usage_count=1)
        events = [
            sample_event(location_ids=[chapel.id, library.id]),
            sample_event(location_ids=[chapel.id]),
            sample_event(location_ids=[chapel.id], status=EventStatus.DELETED.value),
        ]

        result = location_service.delete(chapel.guid, approver)

        assert result["events_updated"] == 3
        assert result["location"].status == LocationStatus.DELETED.value
        assert result["location"].usage_count == 0
        for event in events:
            test_db_session.refresh(event)
        assert events[0].location_ids == [library.id]
        assert events[1].location_ids == []
        assert events[2].location_ids == []

        progress = location_service.get_delete_progress(chapel.guid)
        assert progress["status"] == "completed"
        assert progress["processed"] == 3
        assert progress["percent"] == 100

    def test_delete_cancelled_then_resumed(
        self, location_service, approver, sample_location, sample_event, cancelled_token
    ):
        chapel = sample_location(name="Main Chapel", usage_count=2)
        sample_event(location_ids=[chapel.id])
        sample_event(location_ids=[chapel.id])

        with pytest.raises(OperationCancelledError):
            location_service.delete(chapel.guid, approver, cancel_token=cancelled_token)

        assert location_service.get_by_guid(chapel.guid).status == LocationStatus.DELETED.value
        assert location_service.get_delete_progress(chapel.guid)["status"] == "cancelled"
        assert location_service.get_event_count(chapel.guid)["event_count"] == 2

        result = location_service.delete(chapel.guid, approver)

        assert result["events_updated"] == 2
        assert location_service.get_event_count(chapel.guid)["event_count"] == 0

    def test_delete_detaches_children(self, location_service, approver, sample_location, test_db_session):
        building = sample_location(name="Community House")
        floor = sample_location(name="Second Floor", parent_location_id=building.id)

        location_service.delete(building.guid, approver)

        test_db_session.refresh(floor)
        assert floor.parent_location_id is None

    def test_delete_merged_location(self, location_service, approver, sample_location):
        target = sample_location(name="Social Hall")
        source = sample_location(name="Kiddush Room")
        location_service.merge([source.guid], target.guid, approver)

        with pytest.raises(ConflictError):
            location_service.delete(source.guid, approver)

    def test_event_count(self, location_service, sample_location, sample_event):
        chapel = sample_location(name="Main Chapel", usage_count=1)
        sample_event(location_ids=[chapel.id])
        sample_event(location_ids=[chapel.id], status=EventStatus.DELETED.value)

        counts = location_service.get_event_count(chapel.guid)

        assert counts["event_count"] == 1
        assert counts["deleted_event_count"] == 1
        assert counts["usage_count"] == 1

    def test_stats(self, location_service, sample_location, sample_event):
        sample_location(name="Main Chapel")
        sample_location(name="Roof Deck", status=LocationStatus.PENDING.value, is_reservable=False)
        sample_event(location_text="Youth Lounge")

        stats = location_service.get_stats()

        assert stats["total_count"] == 2
        assert stats["by_status"]["approved"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["reservable_count"] == 1
        assert stats["unassigned_string_count"] == 1
