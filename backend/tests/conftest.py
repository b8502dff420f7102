"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- In-memory calendar source and snapshot cache
- Actors for each role
- Sample data factories (locations, events, external events)
- FastAPI test client wired to the test database
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['TEMPLE_EVENTS_DB_URL'] = 'sqlite:///:memory:'
os.environ['TEMPLE_EVENTS_ENV'] = 'development'
os.environ['TEMPLE_EVENTS_DEFAULT_CALENDAR_ID'] = 'cal-main'

from backend.src.models import Base, Event, EventStatus, HistoryAction, Location, LocationStatus
from backend.src.services.calendar_source import ExternalEvent, InMemoryCalendarSource
from backend.src.services.event_service import generate_event_id, history_entry
from backend.src.services.permissions import Actor
from backend.src.utils.claims import ClaimRegistry
from backend.src.utils.progress import OperationProgressTracker
from backend.src.utils.retry import RetryPolicy
from backend.src.utils.snapshot_cache import SnapshotCache


# Reference instant used by factories: Monday 2026-03-02 15:00 UTC
BASE_TIME = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class MutableClock:
    """Callable clock returning a settable aware datetime."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine (for multi-session tests)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def base_time():
    """Reference instant used by the sample factories."""
    return BASE_TIME


@pytest.fixture
def clock():
    """Settable clock for snapshot cache staleness."""
    return MutableClock()


@pytest.fixture
def snapshot_cache(clock):
    """Snapshot cache driven by the test clock."""
    return SnapshotCache(ttl=timedelta(minutes=60), max_entries=50, clock=clock)


@pytest.fixture
def calendar_source():
    """In-memory external calendar with a small page size."""
    return InMemoryCalendarSource(page_size=2)


@pytest.fixture
def claims():
    return ClaimRegistry()


@pytest.fixture
def progress_tracker():
    return OperationProgressTracker()


@pytest.fixture
def no_wait_retry():
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, base_delay=0)


# ============================================================================
# Actor Fixtures
# ============================================================================

@pytest.fixture
def requester():
    return Actor(user_id="user-rachel", email="rachel@example.org", role="requester")


@pytest.fixture
def other_requester():
    return Actor(user_id="user-david", email="david@example.org", role="requester")


@pytest.fixture
def approver():
    return Actor(user_id="user-miriam", email="miriam@example.org", role="approver")


@pytest.fixture
def viewer():
    return Actor(user_id="user-guest", email="guest@example.org", role="viewer")


@pytest.fixture
def headers_for():
    """Build identity headers for API requests made as an actor."""

    def _headers(actor: Actor) -> dict:
        headers = {"X-User-Id": actor.user_id, "X-User-Role": actor.role}
        if actor.email:
            headers["X-User-Email"] = actor.email
        return headers

    return _headers


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_location(test_db_session):
    """Factory for creating sample Location models."""

    def _create(
        name="Main Chapel",
        aliases=None,
        status=LocationStatus.APPROVED.value,
        usage_count=0,
        display_name=None,
        is_reservable=True,
        **kwargs,
    ):
        location = Location(
            name=name,
            aliases=list(aliases or []),
            status=status,
            usage_count=usage_count,
            display_name=display_name,
            is_reservable=is_reservable,
            features=[],
            accessibility=[],
            **kwargs,
        )
        test_db_session.add(location)
        test_db_session.commit()
        test_db_session.refresh(location)
        return location

    return _create


@pytest.fixture
def sample_event(test_db_session):
    """Factory for creating sample Event models directly in the store."""

    def _create(
        title="Sisterhood Board Meeting",
        status=EventStatus.DRAFT.value,
        created_by="user-rachel",
        start_at=None,
        end_at=None,
        location_ids=None,
        location_text=None,
        external_id=None,
        calendar_id="cal-main",
        is_deleted=None,
        **kwargs,
    ):
        start_at = start_at or BASE_TIME
        end_at = end_at or start_at + timedelta(hours=2)
        owner = Actor(user_id=created_by or "system:sync", role="requester")
        event_id = kwargs.pop("event_id", None) or generate_event_id()
        event = Event(
            event_id=event_id,
            title=title,
            status=status,
            is_deleted=is_deleted if is_deleted is not None else status == EventStatus.DELETED.value,
            created_by=created_by,
            start_at=start_at,
            end_at=end_at,
            location_ids=list(location_ids or []),
            location_text=location_text,
            external_id=external_id,
            calendar_id=calendar_id,
            categories=[],
            extensions={},
            status_history=[history_entry(EventStatus(status), HistoryAction.CREATED, owner)],
            version=1,
            **kwargs,
        )
        test_db_session.add(event)
        test_db_session.commit()
        test_db_session.refresh(event)
        return event

    return _create


@pytest.fixture
def external_event():
    """Factory for ExternalEvent values."""
    counter = {"n": 0}

    def _create(
        title="Shabbat Morning Service",
        calendar_id="cal-main",
        start=None,
        end=None,
        external_id=None,
        **kwargs,
    ):
        counter["n"] += 1
        start = start or BASE_TIME + timedelta(days=counter["n"])
        end = end or start + timedelta(hours=1)
        return ExternalEvent(
            external_id=external_id or f"ext-{counter['n']:04d}",
            calendar_id=calendar_id,
            title=title,
            start=start,
            end=end,
            **kwargs,
        )

    return _create


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_db_session, snapshot_cache, calendar_source, progress_tracker, no_wait_retry):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from backend.src.db.database import get_db
    from backend.src.main import app

    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as client:
        # Replace singletons created by the lifespan with test instances
        app.state.snapshot_cache = snapshot_cache
        app.state.calendar_source = calendar_source
        app.state.claims = ClaimRegistry()
        app.state.progress_tracker = progress_tracker
        app.state.retry_policy = no_wait_retry
        yield client

    app.dependency_overrides.clear()
