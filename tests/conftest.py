import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-calendar-tests")
os.environ.setdefault("ENCRYPTION_KEY", "A" * 43 + "=")
os.environ.setdefault("API_BASE_URL", "https://backend.test/mobile-api")
os.environ.setdefault("GOOGLE_CALENDAR_API_URL", "https://calendar.test/v3")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-calendar.db")

from datetime import datetime, timezone

import httpx
import pytest

from core.http_client import set_http_client
from core.storage import MemoryKeyValueStore
from models.calendar import (
    CalendarEvent,
    DateRange,
    GoogleConfig,
    SchoolConfig,
    SchoolFeatures,
    UserProfile,
    UserRole,
)


class FakeClock:
    """Manually advanced clock for TTL and rate-limit windows."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def mock_http():
    """
    Routes the shared HTTP client through a MockTransport. Tests register a
    handler with `mock_http(handler)`; every request is recorded.
    """
    calls: list[httpx.Request] = []

    def install(handler):
        def recording(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        set_http_client(httpx.AsyncClient(transport=httpx.MockTransport(recording)))
        return calls

    yield install
    set_http_client(None)


@pytest.fixture
def school() -> SchoolConfig:
    return SchoolConfig(
        school_id="test_school",
        name="Test School",
        domain="school.test",
        has_google_workspace=True,
        google_config=GoogleConfig(
            client_id="client-id",
            api_key="api-key",
            calendar_ids={"main": "main@school.test", "sports": "sports@school.test"},
            branch_calendars={
                "primary": {
                    "academic": "primary-academic@school.test",
                    "events": "primary-events@school.test",
                }
            },
        ),
        features=SchoolFeatures(google_calendar=True, google_calendar_read_only=True),
    )


@pytest.fixture
def plain_school() -> SchoolConfig:
    return SchoolConfig(school_id="plain", name="Plain School", domain="plain.test")


def make_user(role: UserRole = UserRole.STUDENT, **overrides) -> UserProfile:
    fields = {
        "id": "u1",
        "role": role,
        "school_id": "test_school",
        "branch_id": "primary",
        "class_id": "7A",
        "grade": "7",
        "email": "u1@school.test",
        "auth_token": "auth-code",
    }
    fields.update(overrides)
    return UserProfile(**fields)


def make_event(event_id: str = "e1", start: str = "2025-01-10T09:00:00", **overrides) -> CalendarEvent:
    fields = {
        "id": event_id,
        "title": f"Event {event_id}",
        "start_time": start,
        "end_time": start,
        "source_id": "test",
    }
    fields.update(overrides)
    return CalendarEvent(**fields)


@pytest.fixture
def january() -> DateRange:
    return DateRange(
        start=datetime(2025, 1, 1, tzinfo=timezone.utc),
        end=datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
    )
