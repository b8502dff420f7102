"""
Unit tests for calendar source adapters.

GraphCalendarSource is exercised against httpx.MockTransport; the
in-memory source is checked for paging and failure injection.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from backend.src.services.calendar_source import (
    EVENT_TYPE_PROPERTY,
    INTERNAL_EVENT_ID_PROPERTY,
    LINKED_EVENT_ID_PROPERTY,
    GraphCalendarSource,
)
from backend.src.services.exceptions import ExternalSourceError


BASE_URL = "https://graph.example.test/v1.0"


def graph_item(external_id, subject, start, end, **extra):
    item = {
        "id": external_id,
        "subject": subject,
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
        "isAllDay": False,
        "location": {"displayName": "Main Chapel"},
        "categories": ["Worship"],
        "lastModifiedDateTime": "2026-02-20T10:00:00Z",
    }
    item.update(extra)
    return item


@pytest.fixture
def requests():
    return []


@pytest.fixture
def make_source(requests):
    """Factory for a Graph source answering through a handler function."""

    def _create(handler):
        def record(request):
            requests.append(request)
            return handler(request)

        return GraphCalendarSource(
            base_url=BASE_URL,
            access_token="token-123",
            mailbox="events@example.org",
            transport=httpx.MockTransport(record),
        )

    return _create


class TestGraphReads:
    """Tests for listing and fetching events."""

    def test_list_events_maps_items(self, make_source, requests):
        def handler(request):
            return httpx.Response(200, json={"value": [
                graph_item(
                    "AAA=",
                    "Spring Gala",
                    "2026-03-05T18:00:00.0000000",
                    "2026-03-05T21:00:00.0000000",
                    singleValueExtendedProperties=[
                        {"id": LINKED_EVENT_ID_PROPERTY, "value": "BBB="},
                        {"id": INTERNAL_EVENT_ID_PROPERTY, "value": "evt-0123456789ab"},
                    ],
                    body={"content": "<p>Black tie</p>"},
                ),
            ]})

        source = make_source(handler)
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)

        page = source.list_events("cal-main", start, start + timedelta(days=30))

        assert page.next_page_token is None
        event = page.events[0]
        assert event.external_id == "AAA="
        assert event.title == "Spring Gala"
        assert event.start == datetime(2026, 3, 5, 18, 0, tzinfo=timezone.utc)
        assert event.end == datetime(2026, 3, 5, 21, 0, tzinfo=timezone.utc)
        assert event.location_text == "Main Chapel"
        assert event.categories == ["Worship"]
        assert event.description == "<p>Black tie</p>"
        assert event.linked_event_id == "BBB="
        assert event.internal_event_id == "evt-0123456789ab"
        assert event.is_registration is False

        request = requests[0]
        assert request.url.path == "/v1.0/users/events@example.org/calendars/cal-main/calendarView"
        assert request.url.params["startDateTime"] == "2026-03-01T00:00:00+00:00"
        assert request.headers["Authorization"] == "Bearer token-123"
        assert request.headers["Prefer"] == 'outlook.timezone="UTC"'

    def test_list_events_follows_next_link(self, make_source, requests):
        next_link = f"{BASE_URL}/users/events@example.org/calendars/cal-main/calendarView?$skiptoken=abc"

        def handler(request):
            if "skiptoken" in str(request.url):
                return httpx.Response(200, json={"value": []})
            return httpx.Response(200, json={"value": [], "@odata.nextLink": next_link})

        source = make_source(handler)
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)

        first = source.list_events("cal-main", start, start + timedelta(days=1))
        second = source.list_events("cal-main", start, start + timedelta(days=1), first.next_page_token)

        assert first.next_page_token == next_link
        assert second.next_page_token is None
        assert "skiptoken=abc" in str(requests[1].url)

    def test_registration_event(self, make_source):
        def handler(request):
            return httpx.Response(200, json=graph_item(
                "BBB=",
                "Gala [setup/teardown]",
                "2026-03-05T16:30:00",
                "2026-03-05T22:00:00",
                singleValueExtendedProperties=[
                    {"id": EVENT_TYPE_PROPERTY, "value": "registration"},
                    {"id": LINKED_EVENT_ID_PROPERTY, "value": "AAA="},
                    {"id": "String {other} Name custom", "value": "kept"},
                ],
            ))

        event = make_source(handler).get_event("cal-main", "BBB=")

        assert event.is_registration
        assert event.linked_event_id is None
        assert event.extensions == {"String {other} Name custom": "kept"}

    def test_get_event_not_found(self, make_source):
        source = make_source(lambda request: httpx.Response(404, json={"error": {"code": "ErrorItemNotFound"}}))

        assert source.get_event("cal-main", "missing") is None

    def test_server_error_raises(self, make_source):
        source = make_source(lambda request: httpx.Response(503, text="Service Unavailable"))
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)

        with pytest.raises(ExternalSourceError) as exc_info:
            source.list_events("cal-main", start, start + timedelta(days=1))

        assert exc_info.value.operation == "list_events"
        assert "503" in exc_info.value.message

    def test_transport_error_raises(self, make_source):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = make_source(handler)

        with pytest.raises(ExternalSourceError):
            source.create_event("cal-main", {"title": "x"})


class TestGraphWrites:
    """Tests for create/update/delete."""

    def test_create_event_body(self, make_source, requests):
        source = make_source(lambda request: httpx.Response(201, json={"id": "NEW="}))
        start = datetime(2026, 3, 5, 13, 0, tzinfo=timezone(timedelta(hours=-5)))

        external_id = source.create_event("cal-main", {
            "title": "Board Meeting",
            "description": None,
            "start": start,
            "end": start + timedelta(hours=2),
            "is_all_day": False,
            "location_text": "Library",
            "categories": ["Governance"],
            "internal_event_id": "evt-0123456789ab",
        })

        assert external_id == "NEW="
        request = requests[0]
        assert request.method == "POST"
        body = json.loads(request.content)
        assert body["subject"] == "Board Meeting"
        assert body["start"] == {"dateTime": "2026-03-05T18:00:00", "timeZone": "UTC"}
        assert body["end"] == {"dateTime": "2026-03-05T20:00:00", "timeZone": "UTC"}
        assert body["location"] == {"displayName": "Library"}
        assert body["body"]["content"] == ""
        assert body["singleValueExtendedProperties"] == [
            {"id": INTERNAL_EVENT_ID_PROPERTY, "value": "evt-0123456789ab"},
        ]

    def test_create_without_id_raises(self, make_source):
        source = make_source(lambda request: httpx.Response(201, json={}))

        with pytest.raises(ExternalSourceError):
            source.create_event("cal-main", {"title": "Board Meeting"})

    def test_update_sends_only_given_fields(self, make_source, requests):
        source = make_source(lambda request: httpx.Response(200, json={"id": "AAA="}))

        source.update_event("cal-main", "AAA=", {"title": "Renamed"})

        request = requests[0]
        assert request.method == "PATCH"
        assert request.url.path.endswith("/events/AAA=")
        assert json.loads(request.content) == {"subject": "Renamed"}

    def test_delete_missing_event_is_ignored(self, make_source, requests):
        source = make_source(lambda request: httpx.Response(404))

        source.delete_event("cal-main", "gone")

        assert requests[0].method == "DELETE"

    def test_requires_configuration(self):
        with pytest.raises(ValueError):
            GraphCalendarSource(base_url=BASE_URL, access_token="", mailbox="events@example.org")


class TestInMemoryCalendarSource:
    """Tests for the in-memory source used in development and tests."""

    def test_pages_in_start_order(self, calendar_source, external_event, base_time):
        for days in (3, 1, 2):
            calendar_source.add_event(external_event(start=base_time + timedelta(days=days)))

        first = calendar_source.list_events("cal-main", base_time, base_time + timedelta(days=10))
        second = calendar_source.list_events(
            "cal-main", base_time, base_time + timedelta(days=10), first.next_page_token
        )

        assert [e.start for e in first.events] == [base_time + timedelta(days=1), base_time + timedelta(days=2)]
        assert first.next_page_token == "1"
        assert len(second.events) == 1
        assert second.next_page_token is None

    def test_fail_page(self, calendar_source, base_time):
        calendar_source.fail_page("cal-main", 0, times=1)

        with pytest.raises(ExternalSourceError):
            calendar_source.list_events("cal-main", base_time, base_time + timedelta(days=1))
        page = calendar_source.list_events("cal-main", base_time, base_time + timedelta(days=1))

        assert page.events == []

    def test_create_update_delete(self, calendar_source, base_time):
        external_id = calendar_source.create_event("cal-main", {
            "title": "Board Meeting",
            "start": base_time,
            "end": base_time + timedelta(hours=1),
            "internal_event_id": "evt-0123456789ab",
        })

        calendar_source.update_event("cal-main", external_id, {"title": "Board Meeting (Zoom)"})
        updated = calendar_source.get_event("cal-main", external_id)
        assert updated.title == "Board Meeting (Zoom)"
        assert updated.internal_event_id == "evt-0123456789ab"

        calendar_source.delete_event("cal-main", external_id)
        assert calendar_source.get_event("cal-main", external_id) is None

    def test_update_missing_event(self, calendar_source):
        with pytest.raises(ExternalSourceError):
            calendar_source.update_event("cal-main", "ext-missing", {"title": "x"})
