"""
Unit tests for SyncService.

Tests reconciliation of the external calendar into the event store:
idempotence, field ownership, registration (setup/teardown) events,
location resolution, page retries and partial failure, cancellation.
"""

import itertools
from dataclasses import replace
from datetime import timedelta

import pytest

from backend.src.models import Event, EventStatus
from backend.src.services.exceptions import ValidationError
from backend.src.services.permissions import SYSTEM_USER_ID
from backend.src.services.sync_service import SyncService
from backend.src.utils.cancellation import CancellationToken


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def sync_service(test_db_session, calendar_source, no_wait_retry, snapshot_cache, sleeps):
    """SyncService over the in-memory calendar without retry delays."""
    return SyncService(
        test_db_session,
        calendar_source,
        retry_policy=no_wait_retry,
        cache=snapshot_cache,
        sleep=sleeps.append,
    )


@pytest.fixture
def window(base_time):
    return base_time - timedelta(days=1), base_time + timedelta(days=30)


def _reconcile(sync_service, window, **kwargs):
    start, end = window
    return sync_service.reconcile(start, end, ["cal-main"], **kwargs)


def _events(test_db_session):
    return test_db_session.query(Event).order_by(Event.start_at.asc()).all()


# ============================================================================
# Reconcile
# ============================================================================


class TestReconcile:
    """Tests for basic create/update behaviour."""

    def test_creates_approved_events(self, sync_service, calendar_source, external_event, window, test_db_session):
        for title in ("Shabbat Morning Service", "Hebrew School", "Choir Rehearsal"):
            calendar_source.add_event(external_event(title=title))

        result = _reconcile(sync_service, window)

        assert result.created == 3
        assert result.pages == 2
        assert result.complete is True
        events = _events(test_db_session)
        assert [e.title for e in events] == ["Shabbat Morning Service", "Hebrew School", "Choir Rehearsal"]
        for event in events:
            assert event.status == EventStatus.APPROVED.value
            assert event.created_by == SYSTEM_USER_ID
            assert event.calendar_id == "cal-main"
            assert event.last_synced_at is not None
            assert [h["action"] for h in event.status_history] == ["synced"]

    def test_second_run_is_noop(self, sync_service, calendar_source, external_event, window, test_db_session):
        calendar_source.add_event(external_event(location_text="Main Chapel", categories=["Worship"]))
        calendar_source.add_event(external_event())
        _reconcile(sync_service, window)
        versions = [e.version for e in _events(test_db_session)]

        result = _reconcile(sync_service, window)

        assert result.created == 0
        assert result.updated == 0
        assert result.unchanged == 2
        assert result.touched_event_guids == []
        assert [e.version for e in _events(test_db_session)] == versions

    def test_title_change_updates_only_owned_fields(
        self, sync_service, calendar_source, external_event, window, test_db_session
    ):
        original = calendar_source.add_event(external_event(title="Board Meeting"))
        _reconcile(sync_service, window)
        event = _events(test_db_session)[0]
        event.internal_notes = "Bring the budget binder"
        event.assigned_to = "facilities@example.org"
        event.pending_edit_request = {"requested_changes": {"title": "Board Meeting (Zoom)"}}
        test_db_session.commit()
        history = list(event.status_history)

        calendar_source.add_event(replace(original, title="Board Meeting (Annual)"))
        result = _reconcile(sync_service, window)

        assert result.updated == 1
        test_db_session.refresh(event)
        assert event.title == "Board Meeting (Annual)"
        assert event.status == EventStatus.APPROVED.value
        assert event.status_history == history
        assert event.internal_notes == "Bring the budget binder"
        assert event.assigned_to == "facilities@example.org"
        assert event.has_pending_edit

    def test_links_published_reservation_by_internal_id(
        self, sync_service, calendar_source, external_event, sample_event, window, test_db_session
    ):
        local = sample_event(
            title="Bat Mitzvah Rehearsal",
            status=EventStatus.APPROVED.value,
            event_id="evt-0123456789ab",
            calendar_id=None,
        )
        calendar_source.add_event(external_event(
            title="Bat Mitzvah Rehearsal",
            external_id="ext-published",
            internal_event_id="evt-0123456789ab",
        ))

        result = _reconcile(sync_service, window)

        assert result.created == 0
        assert result.updated == 1
        test_db_session.refresh(local)
        assert local.external_id == "ext-published"
        assert local.calendar_id == "cal-main"
        assert local.created_by == "user-rachel"
        assert test_db_session.query(Event).count() == 1

    def test_invalid_window(self, sync_service, base_time):
        with pytest.raises(ValidationError):
            sync_service.reconcile(base_time, base_time, ["cal-main"])

    def test_requires_calendar(self, sync_service, window):
        with pytest.raises(ValidationError):
            sync_service.reconcile(window[0], window[1], [])


class TestRegistrationEvents:
    """Tests for linked setup/teardown registration events."""

    def test_registration_sets_setup_and_teardown(
        self, sync_service, calendar_source, external_event, base_time, window, test_db_session
    ):
        main_start = base_time + timedelta(days=2, hours=2)
        main_end = main_start + timedelta(hours=3)
        registration = calendar_source.add_event(external_event(
            title="Gala [setup/teardown]",
            external_id="ext-reg",
            start=main_start - timedelta(minutes=90),
            end=main_end + timedelta(minutes=45),
            event_type="registration",
        ))
        calendar_source.add_event(external_event(
            title="Spring Gala",
            external_id="ext-main",
            start=main_start,
            end=main_end,
            linked_event_id=registration.external_id,
        ))

        result = _reconcile(sync_service, window)

        assert result.created == 1
        events = _events(test_db_session)
        assert len(events) == 1
        assert events[0].title == "Spring Gala"
        assert events[0].setup_minutes == 90
        assert events[0].teardown_minutes == 45
        assert events[0].registration_event_id == "ext-reg"

    def test_registration_on_other_page_is_fetched(
        self, sync_service, calendar_source, external_event, base_time, window, test_db_session
    ):
        main_start = base_time + timedelta(days=5)
        # Page size is 2: the filler and the registration fill the first page
        calendar_source.add_event(external_event(title="Filler", start=base_time + timedelta(days=1)))
        calendar_source.add_event(external_event(
            title="Gala [setup/teardown]",
            external_id="ext-reg-late",
            start=main_start - timedelta(minutes=30),
            end=main_start + timedelta(hours=2, minutes=15),
            event_type="registration",
        ))
        calendar_source.add_event(external_event(
            title="Spring Gala",
            external_id="ext-main",
            start=main_start,
            end=main_start + timedelta(hours=2),
            linked_event_id="ext-reg-late",
        ))

        _reconcile(sync_service, window)

        event = test_db_session.query(Event).filter(Event.external_id == "ext-main").one()
        assert event.setup_minutes == 30
        assert event.teardown_minutes == 15
        assert ("get_event", "cal-main", "ext-reg-late") in calendar_source.calls


class TestLocationResolution:
    """Tests for resolving location text during reconciliation."""

    def test_resolves_and_counts_usage(
        self, sync_service, calendar_source, external_event, sample_location, window, test_db_session
    ):
        chapel = sample_location(name="Main Chapel", aliases=["Sanctuary"])
        calendar_source.add_event(external_event(location_text="Sanctuary; Room 402"))

        _reconcile(sync_service, window)
        _reconcile(sync_service, window)

        event = _events(test_db_session)[0]
        assert event.location_ids == [chapel.id]
        assert event.location_text == "Sanctuary; Room 402"
        test_db_session.refresh(chapel)
        assert chapel.usage_count == 1

    def test_location_change_rebalances_usage(
        self, sync_service, calendar_source, external_event, sample_location, window, test_db_session
    ):
        chapel = sample_location(name="Main Chapel")
        library = sample_location(name="Library")
        original = calendar_source.add_event(external_event(location_text="Main Chapel"))
        _reconcile(sync_service, window)

        calendar_source.add_event(replace(original, location_text="Library"))
        _reconcile(sync_service, window)

        test_db_session.refresh(chapel)
        test_db_session.refresh(library)
        assert chapel.usage_count == 0
        assert library.usage_count == 1


class TestPartialFailure:
    """Tests for page retries, page failures and skipped items."""

    def test_page_retried_then_succeeds(
        self, sync_service, calendar_source, external_event, window, sleeps
    ):
        for _ in range(3):
            calendar_source.add_event(external_event())
        calendar_source.fail_page("cal-main", 1, times=2)

        result = _reconcile(sync_service, window)

        assert result.created == 3
        assert result.complete is True
        assert len(sleeps) == 2

    def test_page_exhausting_retries_keeps_earlier_pages(
        self, sync_service, calendar_source, external_event, window, test_db_session
    ):
        for _ in range(3):
            calendar_source.add_event(external_event())
        calendar_source.fail_page("cal-main", 1, times=3)

        result = _reconcile(sync_service, window)

        assert result.created == 2
        assert result.pages == 1
        assert result.complete is False
        assert result.errors[0]["calendar_id"] == "cal-main"
        assert result.errors[0]["external_id"] is None
        assert test_db_session.query(Event).count() == 2

    def test_failing_item_is_skipped(
        self, sync_service, calendar_source, external_event, window, test_db_session
    ):
        calendar_source.add_event(external_event(title="First", internal_event_id="evt-duplicate1"))
        calendar_source.add_event(external_event(title="Second", internal_event_id="evt-duplicate1"))
        calendar_source.add_event(external_event(title="Third"))

        result = _reconcile(sync_service, window)

        assert result.created == 2
        assert result.skipped == 1
        assert result.errors[0]["external_id"] == "ext-0002"
        assert result.complete is False
        assert [e.title for e in _events(test_db_session)] == ["First", "Third"]

    def test_other_calendars_continue_after_failure(
        self, sync_service, calendar_source, external_event, window
    ):
        calendar_source.add_event(external_event(calendar_id="cal-main"))
        calendar_source.add_event(external_event(calendar_id="cal-youth"))
        calendar_source.fail_page("cal-main", 0, times=3)

        result = sync_service.reconcile(window[0], window[1], ["cal-main", "cal-youth"])

        assert result.created == 1
        assert len(result.errors) == 1


class TestCancellationAndCache:
    """Tests for cancellation and snapshot invalidation."""

    def test_cancellation_keeps_applied_items(
        self, sync_service, calendar_source, external_event, window, test_db_session
    ):
        for _ in range(3):
            calendar_source.add_event(external_event())
        # Each check of the token advances the clock by one tick:
        # page check (0), first item (1), second item (2 -> cancelled)
        ticks = itertools.count()
        token = CancellationToken(deadline=2, clock=lambda: next(ticks))

        result = _reconcile(sync_service, window, cancel_token=token)

        assert result.cancelled is True
        assert result.complete is False
        assert result.created == 1
        assert test_db_session.query(Event).count() == 1

    def test_touched_events_invalidate_snapshots(
        self, sync_service, calendar_source, external_event, window, snapshot_cache, test_db_session
    ):
        original = calendar_source.add_event(external_event(title="Board Meeting"))
        _reconcile(sync_service, window)
        event = _events(test_db_session)[0]
        snapshot_cache.put("cal-main", window[0], window[1], [
            {"guid": event.guid, "start_at": event.start_at, "end_at": event.end_at},
        ])

        calendar_source.add_event(replace(original, title="Board Meeting (moved)"))
        _reconcile(sync_service, window)

        assert len(snapshot_cache) == 0

    def test_force_refresh_drops_calendar_snapshots(self, sync_service, window, snapshot_cache):
        snapshot_cache.put("cal-main", window[0], window[1], [])
        snapshot_cache.put("cal-youth", window[0], window[1], [])

        _reconcile(sync_service, window, force_refresh=True)

        assert snapshot_cache.get("cal-main", window[0], window[1]) is None
        assert snapshot_cache.get("cal-youth", window[0], window[1]) is not None
