import asyncio
from datetime import datetime, timezone

import pytest
from conftest import make_event, make_user

from core.errors import AdapterFetchError, RateLimitExceeded
from core.storage import MemoryKeyValueStore
from integrations.academic import AcademicCalendarAdapter
from integrations.base import SourceAdapter
from integrations.google import GoogleCalendarAdapter
from integrations.google_readonly import ReadOnlyGoogleCalendarAdapter
from integrations.personal import PersonalEventsAdapter
from models.calendar import CalendarMode, EventCategory, SchoolFeatures, UserRole
from services.cache import CachePolicy, EventCache
from services.calendar import CalendarService, build_calendar_service, process_events
from services.rate_limiter import RateLimit, RateLimiter
from services.sample_events import generate_sample_events, visible_sample_categories

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class StubAdapter(SourceAdapter):
    def __init__(self, source_id, events=None, error=None):
        self.source_id = source_id
        self.events = events or []
        self.error = error
        self.calls = []

    async def _fetch(self, user, school, date_range):
        self.calls.append(date_range)
        if self.error:
            raise self.error
        return list(self.events)


def make_service(adapters, user=None, school=None, cache=None, limiter=None, **kwargs):
    store = MemoryKeyValueStore()
    return CalendarService(
        user or make_user(),
        school,
        adapters,
        cache if cache is not None else EventCache(),
        limiter or RateLimiter(store, limits={}),
        now=lambda: NOW,
        **kwargs,
    )


# Purpose: results from all adapters are merged, sorted by start and de-duplicated by id.
@pytest.mark.asyncio
async def test_merge_sort_and_dedup(school, january):
    first = StubAdapter(
        "a",
        [
            make_event("x", "2025-01-20T09:00:00", title="first x"),
            make_event("y", "2025-01-05T09:00:00"),
        ],
    )
    second = StubAdapter(
        "b",
        [
            make_event("x", "2025-01-20T09:00:00", title="second x"),
            make_event("z", "2025-01-10T09:00:00"),
        ],
    )
    service = make_service([first, second], school=school)

    events = await service.get_all_events(january)

    assert [event.id for event in events] == ["y", "z", "x"]
    assert events[2].title == "first x"


# Purpose: a second identical call within the TTL is served from cache with no adapter calls.
@pytest.mark.asyncio
async def test_second_call_served_from_cache(school, january, clock):
    adapter = StubAdapter("a", [make_event("e1")])
    cache = EventCache(CachePolicy(ttl_seconds=300), clock=clock)
    service = make_service([adapter], school=school, cache=cache)

    await service.get_all_events(january)
    await service.get_all_events(january)
    assert len(adapter.calls) == 1

    await service.get_all_events(january, force_refresh=True)
    assert len(adapter.calls) == 2

    clock.advance(301)
    await service.get_all_events(january)
    assert len(adapter.calls) == 3


# Purpose: one failing adapter does not affect the others.
@pytest.mark.asyncio
async def test_partial_failure(school, january):
    ok = StubAdapter("ok", [make_event("e1")])
    broken = StubAdapter("broken", error=AdapterFetchError("broken", "timeout"))
    service = make_service([broken, ok], school=school)

    events = await service.get_all_events(january)

    assert [event.id for event in events] == ["e1"]


# Purpose: when every adapter fails, the last cached result is served regardless of age.
@pytest.mark.asyncio
async def test_total_failure_uses_stale_cache(school, january, clock):
    adapter = StubAdapter("a", [make_event("e1")])
    cache = EventCache(CachePolicy(ttl_seconds=300), clock=clock)
    service = make_service([adapter], school=school, cache=cache)
    await service.get_all_events(january)

    clock.advance(10_000)
    adapter.error = AdapterFetchError("a", "down")

    events = await service.get_all_events(january)

    assert [event.id for event in events] == ["e1"]


@pytest.mark.asyncio
async def test_total_failure_without_cache_is_empty(school, january):
    adapter = StubAdapter("a", error=AdapterFetchError("a", "down"))
    service = make_service([adapter], school=school)

    assert await service.get_all_events(january) == []


# Purpose: the rate limiter rejection is the one error that reaches the caller.
@pytest.mark.asyncio
async def test_rate_limit_propagates(school, january):
    adapter = StubAdapter("a", [make_event("e1")])
    limiter = RateLimiter(
        MemoryKeyValueStore(), limits={"fetch_events": RateLimit(1, 60_000)}
    )
    service = make_service([adapter], school=school, limiter=limiter)

    await service.get_all_events(january)
    with pytest.raises(RateLimitExceeded):
        await service.get_all_events(january, force_refresh=True)
    assert len(adapter.calls) == 1


# Purpose: sample events appear only for demo accounts with no real events.
@pytest.mark.asyncio
async def test_sample_events_only_for_demo(school, january):
    real = make_service([StubAdapter("a")], school=school)
    demo = make_service([StubAdapter("a")], user=make_user(is_demo=True), school=school)

    assert await real.get_all_events(january) == []

    first = await demo.get_all_events(january)
    assert first
    assert all(event.source_id == "sample_data" for event in first)

    again = make_service([StubAdapter("a")], user=make_user(is_demo=True), school=school)
    assert [event.id for event in await again.get_all_events(january)] == [
        event.id for event in first
    ]


@pytest.mark.asyncio
async def test_demo_account_with_real_events_gets_no_samples(school, january):
    service = make_service(
        [StubAdapter("a", [make_event("e1")])], user=make_user(is_demo=True), school=school
    )

    assert [event.id for event in await service.get_all_events(january)] == ["e1"]


def test_process_events_filters_and_sanitizes(school):
    student = make_user(UserRole.STUDENT, id="s1", class_id="7A")
    events = [
        make_event(
            "hw1",
            category=EventCategory.HOMEWORK,
            title="<script>x</script>Read",
            original_data={"class_id": "7A", "password": "p"},
        ),
        make_event("hw2", category=EventCategory.HOMEWORK, original_data={"class_id": "8B"}),
    ]

    result = process_events(events, student, school)

    assert [event.id for event in result] == ["hw1"]
    assert result[0].title == "Read"
    assert "password" not in result[0].original_data
    assert result[0].editable is False


@pytest.mark.asyncio
async def test_monthly_range(school):
    adapter = StubAdapter("a")
    service = make_service([adapter], school=school)

    await service.get_monthly_events(2024, 2)
    await service.get_monthly_events()

    february, current = adapter.calls
    assert february.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert february.end == datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)
    assert current.start == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert current.end == datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_upcoming_range(school):
    adapter = StubAdapter("a")
    service = make_service([adapter], school=school)

    await service.get_upcoming_events(7)

    assert adapter.calls[0].start == NOW
    assert (adapter.calls[0].end - NOW).days == 7


# Purpose: the cutoff rolls over to next year once it has passed.
@pytest.mark.asyncio
async def test_events_until_rolls_over(school):
    adapter = StubAdapter("a")
    service = make_service([adapter], school=school)

    await service.get_events_until(3, 20)
    await service.get_events_until(1, 10)

    this_year, next_year = adapter.calls
    assert this_year.end == datetime(2025, 3, 20, 23, 59, 59, tzinfo=timezone.utc)
    assert next_year.end == datetime(2026, 1, 10, 23, 59, 59, tzinfo=timezone.utc)
    assert this_year.start == NOW


@pytest.mark.asyncio
async def test_clear_cache_forces_refetch(school, january):
    adapter = StubAdapter("a", [make_event("e1")])
    service = make_service([adapter], school=school)

    await service.get_all_events(january)
    assert service.cache_stats()["size"] == 1

    service.clear_cache()
    await service.get_all_events(january)

    assert len(adapter.calls) == 2


def test_build_calendar_service_adapters(school, plain_school):
    store = MemoryKeyValueStore()
    cache = EventCache()

    def kinds(service):
        return [type(adapter) for adapter in service.adapters]

    combined = build_calendar_service(make_user(), school, store, cache)
    assert kinds(combined) == [
        AcademicCalendarAdapter,
        PersonalEventsAdapter,
        ReadOnlyGoogleCalendarAdapter,
    ]

    branch_only = build_calendar_service(
        make_user(), plain_school, store, cache, mode=CalendarMode.BRANCH_ONLY
    )
    assert kinds(branch_only) == [AcademicCalendarAdapter]

    interactive = school.model_copy(
        update={"features": SchoolFeatures(google_calendar=True, google_calendar_read_only=False)}
    )
    service = build_calendar_service(make_user(UserRole.TEACHER), interactive, store, cache)
    assert kinds(service)[-1] is GoogleCalendarAdapter
    assert service.is_google_calendar_available()


class RendezvousAdapter(SourceAdapter):
    """Completes only if the other adapter is running at the same time."""

    def __init__(self, source_id, mine, other):
        self.source_id = source_id
        self.mine = mine
        self.other = other

    async def _fetch(self, user, school, date_range):
        self.mine.set()
        await asyncio.wait_for(self.other.wait(), timeout=0.5)
        return [make_event(self.source_id)]


# Purpose: adapters are launched concurrently, not one after another.
@pytest.mark.asyncio
async def test_adapters_run_concurrently(school, january):
    first_started, second_started = asyncio.Event(), asyncio.Event()
    service = make_service(
        [
            RendezvousAdapter("first", first_started, second_started),
            RendezvousAdapter("second", second_started, first_started),
        ],
        school=school,
    )

    events = await service.get_all_events(january)

    assert sorted(event.id for event in events) == ["first", "second"]


# Purpose: a source with nothing to ask (no Google grant) does not mask a backend outage.
@pytest.mark.asyncio
async def test_skipped_source_does_not_hide_total_failure(school, january, clock):
    backend = StubAdapter("a", [make_event("e1")])
    google = GoogleCalendarAdapter(MemoryKeyValueStore())
    cache = EventCache(CachePolicy(ttl_seconds=300), clock=clock)
    service = make_service([backend, google], school=school, cache=cache)

    assert [event.id for event in await service.get_all_events(january)] == ["e1"]

    clock.advance(301)
    backend.error = AdapterFetchError("a", "down")
    events = await service.get_all_events(january)

    key = cache.make_key("u1", january, service.cache_flags)
    assert [event.id for event in events] == ["e1"]
    assert [event.id for event in cache.get_stale(key)] == ["e1"]


@pytest.mark.asyncio
async def test_only_skipped_sources_is_an_empty_success(school, january):
    google = GoogleCalendarAdapter(MemoryKeyValueStore())
    outcome = await google.fetch_outcome(make_user(), school, january)
    service = make_service([google], school=school)

    assert outcome.skipped and not outcome.failed
    assert await service.get_all_events(january) == []
    assert service.cache_stats()["size"] == 1


# Purpose: Feb 29 is a valid cutoff in every year; common years clamp to Feb 28.
@pytest.mark.asyncio
async def test_events_until_leap_day(school):
    adapter = StubAdapter("a")
    early = make_service([adapter], school=school)
    late = CalendarService(
        make_user(),
        school,
        [adapter],
        EventCache(),
        RateLimiter(MemoryKeyValueStore(), limits={}),
        now=lambda: datetime(2025, 3, 1, tzinfo=timezone.utc),
    )

    await early.get_events_until(2, 29)
    await early.get_events_until(2, 29, year=2028)
    await late.get_events_until(2, 29)

    this_year, leap_year, rolled = adapter.calls
    assert this_year.end == datetime(2025, 2, 28, 23, 59, 59, tzinfo=timezone.utc)
    assert leap_year.end == datetime(2028, 2, 29, 23, 59, 59, tzinfo=timezone.utc)
    assert rolled.end == datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_events_until_rejects_day_that_never_exists(school):
    service = make_service([StubAdapter("a")], school=school)

    with pytest.raises(ValueError):
        await service.get_events_until(2, 30)


# Purpose: every generated sample event passes the permission filter for its demo user.
@pytest.mark.parametrize(
    "role, tenant",
    [
        (UserRole.STUDENT, "school"),
        (UserRole.TEACHER, "school"),
        (UserRole.PARENT, "plain_school"),
    ],
)
def test_sample_events_survive_permission_filter(role, tenant, request, january):
    school = request.getfixturevalue(tenant)
    user = make_user(role, is_demo=True)

    samples = generate_sample_events(user, school, january)

    assert samples
    assert len(process_events(samples, user, school)) == len(samples)


def test_sample_categories_follow_permissions(school, plain_school):
    student = make_user(UserRole.STUDENT, is_demo=True)
    parent = make_user(UserRole.PARENT, is_demo=True)

    assert EventCategory.TIMETABLE in visible_sample_categories(student, school)
    assert visible_sample_categories(parent, plain_school) == [
        EventCategory.ACADEMIC,
        EventCategory.SCHOOL_EVENT,
    ]
