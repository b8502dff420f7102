"""
External calendar source interface and adapters.

The external calendar is the system of record for scheduling. The sync
reconciler reads from it page by page; the lifecycle writes to it when an
event is approved or an approved edit changes externally owned fields.

Adapters:
- GraphCalendarSource: Microsoft Graph over httpx
- InMemoryCalendarSource: dict-backed source for tests and local development

All adapter failures surface as ExternalSourceError.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from backend.src.services.exceptions import ExternalSourceError
from backend.src.utils.logging_config import get_logger


logger = get_logger("sync")


# ============================================================================
# Data types
# ============================================================================


EVENT_TYPE_MAIN = "main"
EVENT_TYPE_REGISTRATION = "registration"


@dataclass
class ExternalEvent:
    """
    Event as reported by the external calendar.

    Attributes:
        external_id: Id assigned by the external calendar
        calendar_id: Calendar holding the event
        title, description, categories, location_text: Externally owned fields
        start / end: Aware datetimes
        start_timezone / end_timezone: Original zone names
        is_all_day: All-day flag
        last_modified: Last modification time reported by the source
        internal_event_id: Internal event id marker set when the event was
            published from a reservation
        linked_event_id: External id of the linked registration (shadow) event
        event_type: 'main' or 'registration'
        extensions: Other extended properties, kept verbatim
    """
    external_id: str
    calendar_id: str
    title: str
    start: datetime
    end: datetime
    start_timezone: Optional[str] = None
    end_timezone: Optional[str] = None
    is_all_day: bool = False
    location_text: Optional[str] = None
    description: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None
    internal_event_id: Optional[str] = None
    linked_event_id: Optional[str] = None
    event_type: str = EVENT_TYPE_MAIN
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_registration(self) -> bool:
        return self.event_type == EVENT_TYPE_REGISTRATION


@dataclass
class ExternalEventPage:
    """One page of a calendar listing plus the continuation token."""
    events: List[ExternalEvent]
    next_page_token: Optional[str] = None


# ============================================================================
# Interface
# ============================================================================


class CalendarSource(ABC):
    """
    Read/write access to an external calendar.

    Write payloads are dicts with the keys: title, description, start, end,
    start_timezone, end_timezone, is_all_day, location_text, categories,
    internal_event_id.
    """

    @abstractmethod
    def list_events(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        page_token: Optional[str] = None,
    ) -> ExternalEventPage:
        """List events overlapping [start, end), one page at a time."""

    @abstractmethod
    def get_event(self, calendar_id: str, external_id: str) -> Optional[ExternalEvent]:
        """Fetch one event, or None if it does not exist."""

    @abstractmethod
    def create_event(self, calendar_id: str, payload: Dict[str, Any]) -> str:
        """Create an event and return its external id."""

    @abstractmethod
    def update_event(self, calendar_id: str, external_id: str, payload: Dict[str, Any]) -> None:
        """Update fields of an existing event."""

    @abstractmethod
    def delete_event(self, calendar_id: str, external_id: str) -> None:
        """Delete an event; deleting a missing event is not an error."""


# ============================================================================
# In-memory adapter
# ============================================================================


class InMemoryCalendarSource(CalendarSource):
    """
    Dict-backed calendar source.

    Supports a fixed page size and failure injection so pagination and
    partial-failure handling can be exercised without a network.
    """

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self._lock = threading.Lock()
        self._events: Dict[str, Dict[str, ExternalEvent]] = {}
        self._list_failures: Dict[tuple, int] = {}
        self.calls: List[tuple] = []
        self.on_create: Optional[Callable[[str, Dict[str, Any]], None]] = None
        self.fail_writes = False

    # Test helpers

    def add_event(self, event: ExternalEvent) -> ExternalEvent:
        with self._lock:
            self._events.setdefault(event.calendar_id, {})[event.external_id] = event
        return event

    def events(self, calendar_id: str) -> List[ExternalEvent]:
        with self._lock:
            return list(self._events.get(calendar_id, {}).values())

    def fail_page(self, calendar_id: str, page_index: int, times: int = 1) -> None:
        """Make listing of a page fail ``times`` times before succeeding."""
        self._list_failures[(calendar_id, page_index)] = times

    # CalendarSource

    def list_events(self, calendar_id, start, end, page_token=None):
        self.calls.append(("list_events", calendar_id, page_token))
        page_index = int(page_token) if page_token else 0

        remaining = self._list_failures.get((calendar_id, page_index), 0)
        if remaining > 0:
            self._list_failures[(calendar_id, page_index)] = remaining - 1
            raise ExternalSourceError(
                f"Simulated failure listing page {page_index} of {calendar_id}",
                operation="list_events",
            )

        with self._lock:
            matching = sorted(
                (e for e in self._events.get(calendar_id, {}).values() if e.start < end and start < e.end),
                key=lambda e: (e.start, e.external_id),
            )
        offset = page_index * self.page_size
        events = [replace(e) for e in matching[offset:offset + self.page_size]]
        has_more = offset + self.page_size < len(matching)
        return ExternalEventPage(events=events, next_page_token=str(page_index + 1) if has_more else None)

    def get_event(self, calendar_id, external_id):
        self.calls.append(("get_event", calendar_id, external_id))
        with self._lock:
            event = self._events.get(calendar_id, {}).get(external_id)
        return replace(event) if event else None

    def create_event(self, calendar_id, payload):
        self.calls.append(("create_event", calendar_id, payload.get("internal_event_id")))
        if self.fail_writes:
            raise ExternalSourceError("Simulated create failure", operation="create_event")
        if self.on_create is not None:
            self.on_create(calendar_id, payload)

        external_id = f"ext-{uuid.uuid4().hex}"
        self.add_event(self._from_payload(calendar_id, external_id, payload))
        return external_id

    def update_event(self, calendar_id, external_id, payload):
        self.calls.append(("update_event", calendar_id, external_id))
        if self.fail_writes:
            raise ExternalSourceError("Simulated update failure", operation="update_event")
        with self._lock:
            existing = self._events.get(calendar_id, {}).get(external_id)
        if existing is None:
            raise ExternalSourceError(f"Event {external_id} not found", operation="update_event")
        merged = {
            "title": existing.title,
            "description": existing.description,
            "start": existing.start,
            "end": existing.end,
            "start_timezone": existing.start_timezone,
            "end_timezone": existing.end_timezone,
            "is_all_day": existing.is_all_day,
            "location_text": existing.location_text,
            "categories": existing.categories,
            "internal_event_id": existing.internal_event_id,
        }
        merged.update(payload)
        updated = self._from_payload(calendar_id, external_id, merged)
        updated.linked_event_id = existing.linked_event_id
        updated.event_type = existing.event_type
        updated.extensions = existing.extensions
        self.add_event(updated)

    def delete_event(self, calendar_id, external_id):
        self.calls.append(("delete_event", calendar_id, external_id))
        with self._lock:
            self._events.get(calendar_id, {}).pop(external_id, None)

    @staticmethod
    def _from_payload(calendar_id: str, external_id: str, payload: Dict[str, Any]) -> ExternalEvent:
        return ExternalEvent(
            external_id=external_id,
            calendar_id=calendar_id,
            title=payload["title"],
            start=payload["start"],
            end=payload["end"],
            start_timezone=payload.get("start_timezone"),
            end_timezone=payload.get("end_timezone"),
            is_all_day=bool(payload.get("is_all_day")),
            location_text=payload.get("location_text"),
            description=payload.get("description"),
            categories=list(payload.get("categories") or []),
            last_modified=datetime.now(timezone.utc),
            internal_event_id=payload.get("internal_event_id"),
        )


# ============================================================================
# Microsoft Graph adapter
# ============================================================================


DEFAULT_TIMEOUT = 30.0  # seconds
PAGE_SIZE = 250
EXTENDED_PROPERTY_NAMESPACE = "Emanuel-Calendar-App"
LINKED_EVENT_ID_PROPERTY = (
    "String {66f5a359-4659-4830-9070-00047ec6ac6e} "
    f"Name {EXTENDED_PROPERTY_NAMESPACE}_linkedEventId"
)
EVENT_TYPE_PROPERTY = (
    "String {66f5a359-4659-4830-9070-00047ec6ac6f} "
    f"Name {EXTENDED_PROPERTY_NAMESPACE}_eventType"
)
INTERNAL_EVENT_ID_PROPERTY = (
    "String {66f5a359-4659-4830-9070-00047ec6ac70} "
    f"Name {EXTENDED_PROPERTY_NAMESPACE}_internalEventId"
)
GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _parse_graph_datetime(value: Optional[Dict[str, str]]) -> Optional[datetime]:
    # Responses are requested in UTC via the Prefer header
    if not value or not value.get("dateTime"):
        return None
    text = value["dateTime"].split(".")[0].rstrip("Z")
    return datetime.strptime(text, GRAPH_DATETIME_FORMAT).replace(tzinfo=timezone.utc)


def _format_graph_datetime(value: datetime) -> Dict[str, str]:
    utc_value = value.astimezone(timezone.utc)
    return {"dateTime": utc_value.strftime(GRAPH_DATETIME_FORMAT), "timeZone": "UTC"}


class GraphCalendarSource(CalendarSource):
    """
    Microsoft Graph calendar adapter.

    Reads calendarView pages (following @odata.nextLink) and writes events
    of a mailbox's calendars. Internal markers travel as single-value
    extended properties.

    Attributes:
        base_url: Graph API root (e.g. https://graph.microsoft.com/v1.0)
        mailbox: User id or e-mail whose calendars are accessed
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        mailbox: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the Graph adapter.

        Args:
            base_url: Graph API root
            access_token: Bearer token with calendar permissions
            mailbox: Mailbox owning the calendars
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)

        Raises:
            ValueError: If base_url, access_token or mailbox is empty
        """
        if not base_url or not access_token or not mailbox:
            raise ValueError("base_url, access_token and mailbox are required")

        self.base_url = base_url.rstrip("/")
        self.mailbox = mailbox
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Prefer": 'outlook.timezone="UTC"',
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_events(self, calendar_id, start, end, page_token=None):
        if page_token:
            url = page_token
            params = None
        else:
            url = f"{self._calendar_path(calendar_id)}/calendarView"
            params = {
                "startDateTime": start.astimezone(timezone.utc).isoformat(),
                "endDateTime": end.astimezone(timezone.utc).isoformat(),
                "$top": str(PAGE_SIZE),
                "$expand": self._expand_clause(),
            }

        data = self._request("GET", url, "list_events", params=params)
        events = [self._to_external_event(calendar_id, item) for item in data.get("value", [])]
        return ExternalEventPage(events=events, next_page_token=data.get("@odata.nextLink"))

    def get_event(self, calendar_id, external_id):
        url = f"{self._calendar_path(calendar_id)}/events/{quote(external_id, safe='')}"
        try:
            data = self._request("GET", url, "get_event", params={"$expand": self._expand_clause()})
        except ExternalSourceError as e:
            if "404" in e.message:
                return None
            raise
        return self._to_external_event(calendar_id, data)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_event(self, calendar_id, payload):
        body = self._to_graph_body(payload)
        data = self._request("POST", f"{self._calendar_path(calendar_id)}/events", "create_event", json=body)
        external_id = data.get("id")
        if not external_id:
            raise ExternalSourceError("Graph did not return an event id", operation="create_event")
        return external_id

    def update_event(self, calendar_id, external_id, payload):
        body = self._to_graph_body(payload)
        url = f"{self._calendar_path(calendar_id)}/events/{quote(external_id, safe='')}"
        self._request("PATCH", url, "update_event", json=body)

    def delete_event(self, calendar_id, external_id):
        url = f"{self._calendar_path(calendar_id)}/events/{quote(external_id, safe='')}"
        try:
            self._request("DELETE", url, "delete_event")
        except ExternalSourceError as e:
            if "404" not in e.message:
                raise

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _calendar_path(self, calendar_id: str) -> str:
        return f"/users/{quote(self.mailbox, safe='@')}/calendars/{quote(calendar_id, safe='')}"

    @staticmethod
    def _expand_clause() -> str:
        ids = " or ".join(
            f"id eq '{prop}'"
            for prop in (LINKED_EVENT_ID_PROPERTY, EVENT_TYPE_PROPERTY, INTERNAL_EVENT_ID_PROPERTY)
        )
        return f"singleValueExtendedProperties($filter={ids})"

    def _request(self, method: str, url: str, operation: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalSourceError(f"Graph request timed out: {e}", operation=operation)
        except httpx.HTTPError as e:
            raise ExternalSourceError(f"Graph request failed: {e}", operation=operation)

        if response.status_code >= 400:
            raise ExternalSourceError(
                f"Graph returned {response.status_code} for {operation}: {response.text[:200]}",
                operation=operation,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _to_external_event(calendar_id: str, item: Dict[str, Any]) -> ExternalEvent:
        properties = {
            prop.get("id"): prop.get("value")
            for prop in item.get("singleValueExtendedProperties") or []
        }
        linked_event_id = properties.pop(LINKED_EVENT_ID_PROPERTY, None)
        event_type = properties.pop(EVENT_TYPE_PROPERTY, None) or EVENT_TYPE_MAIN
        internal_event_id = properties.pop(INTERNAL_EVENT_ID_PROPERTY, None)

        last_modified = None
        if item.get("lastModifiedDateTime"):
            last_modified = datetime.fromisoformat(item["lastModifiedDateTime"].replace("Z", "+00:00"))

        return ExternalEvent(
            external_id=item["id"],
            calendar_id=calendar_id,
            title=item.get("subject") or "",
            start=_parse_graph_datetime(item.get("start")),
            end=_parse_graph_datetime(item.get("end")),
            start_timezone=item.get("originalStartTimeZone"),
            end_timezone=item.get("originalEndTimeZone"),
            is_all_day=bool(item.get("isAllDay")),
            location_text=(item.get("location") or {}).get("displayName") or None,
            description=(item.get("body") or {}).get("content") or item.get("bodyPreview") or None,
            categories=list(item.get("categories") or []),
            last_modified=last_modified,
            internal_event_id=internal_event_id,
            linked_event_id=linked_event_id if event_type != EVENT_TYPE_REGISTRATION else None,
            event_type=event_type,
            extensions=properties,
        )

    @staticmethod
    def _to_graph_body(payload: Dict[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if "title" in payload:
            body["subject"] = payload["title"]
        if "description" in payload:
            body["body"] = {"contentType": "HTML", "content": payload["description"] or ""}
        if "start" in payload:
            body["start"] = _format_graph_datetime(payload["start"])
        if "end" in payload:
            body["end"] = _format_graph_datetime(payload["end"])
        if "is_all_day" in payload:
            body["isAllDay"] = bool(payload["is_all_day"])
        if "location_text" in payload:
            body["location"] = {"displayName": payload["location_text"] or ""}
        if "categories" in payload:
            body["categories"] = list(payload["categories"] or [])
        if payload.get("internal_event_id"):
            body["singleValueExtendedProperties"] = [
                {"id": INTERNAL_EVENT_ID_PROPERTY, "value": payload["internal_event_id"]},
            ]
        return body
