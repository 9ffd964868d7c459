"""
Calendar aggregation for a single authenticated user.

CalendarService fans out to its source adapters concurrently, merges what
comes back, applies the permission filter and sanitizer, and serves the
result through a TTL cache. Adapter failures never fail the call; only a rate
limit rejection (or a policy violation during Google sign-in) reaches the
caller.
"""

import asyncio
import logging
from calendar import monthrange
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.config import settings
from core.errors import DomainViolation, PermissionDenied, TotalFetchFailure
from core.logging_setup import log_security_event, log_step, user_context
from core.storage import KeyValueStore
from integrations.academic import AcademicCalendarAdapter
from integrations.base import SourceAdapter
from integrations.google import GoogleCalendarAdapter
from integrations.google_readonly import ReadOnlyGoogleCalendarAdapter
from integrations.personal import PersonalEventsAdapter
from models.calendar import CalendarEvent, CalendarMode, DateRange, SchoolConfig, UserProfile

from services.cache import EventCache
from services.permissions import (
    annotate_editable,
    can_access_google_calendar,
    filter_events_for_user,
)
from services.rate_limiter import RateLimiter
from services.sample_events import generate_sample_events
from services.sanitizer import sanitize_event

logger = logging.getLogger(__name__)

LOG_STEP = "CALENDAR"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _end_of_day(year: int, month: int, day: int) -> datetime:
    """23:59:59 UTC on the given day; Feb 29 in a common year clamps to Feb 28."""
    # 2000 is a leap year, so this accepts every day that exists in some year
    if not 1 <= day <= monthrange(2000, month)[1]:
        raise ValueError(f"day {day} is out of range for month {month}")
    day = min(day, monthrange(year, month)[1])
    return datetime(year, month, day, 23, 59, 59, tzinfo=timezone.utc)


def process_events(
    events: list[CalendarEvent], user: UserProfile, school: SchoolConfig
) -> list[CalendarEvent]:
    """
    Filter, flag, sanitize, sort by start (stable) and drop duplicate ids,
    keeping the first occurrence.
    """
    visible = filter_events_for_user(events, user, school)
    flagged = annotate_editable(visible, user, school)
    cleaned = [sanitize_event(event) for event in flagged]
    cleaned.sort(key=lambda event: event.start)

    seen: set[str] = set()
    unique: list[CalendarEvent] = []
    for event in cleaned:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


class CalendarService:
    def __init__(
        self,
        user: UserProfile,
        school: SchoolConfig,
        adapters: list[SourceAdapter],
        cache: EventCache,
        rate_limiter: RateLimiter,
        mode: CalendarMode = CalendarMode.COMBINED,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.user = user
        self.school = school
        self.adapters = adapters
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.mode = mode
        self.now = now

    @property
    def cache_flags(self) -> str:
        sources = ",".join(adapter.source_id for adapter in self.adapters)
        return f"{self.mode}:{sources}"

    async def get_all_events(
        self, date_range: DateRange | None = None, force_refresh: bool = False
    ) -> list[CalendarEvent]:
        date_range = date_range or DateRange.next_days(
            settings.DEFAULT_RANGE_DAYS, now=self.now()
        )

        with user_context(self.user.id, self.school.school_id), log_step(LOG_STEP):
            await self.rate_limiter.enforce(self.user.id, "fetch_events")

            key = self.cache.make_key(self.user.id, date_range, self.cache_flags)
            if not force_refresh:
                cached = self.cache.get(key)
                if cached is not None:
                    logger.debug(f"Serving {len(cached)} events from cache.")
                    return cached

            try:
                events = await self._fetch_all(date_range)
            except TotalFetchFailure as e:
                stale = self.cache.get_stale(key)
                if stale is not None:
                    logger.error(f"{e} Serving {len(stale)} cached events.")
                    return stale
                logger.error(f"{e} No cached events available.")
                return []

            if not events and self.user.is_demo:
                events = generate_sample_events(self.user, self.school, date_range)
                logger.info(f"Demo account: added {len(events)} sample events.")

            result = process_events(events, self.user, self.school)
            self.cache.put(key, result)

            log_security_event(
                "calendar_access",
                self.user,
                school_id=self.school.school_id,
                event_count=len(result),
                sources=[adapter.source_id for adapter in self.adapters],
                start=date_range.start_date_str,
                end=date_range.end_date_str,
            )
            logger.info(f"Returning {len(result)} events.")
            return result

    async def _fetch_all(self, date_range: DateRange) -> list[CalendarEvent]:
        outcomes = await asyncio.gather(
            *(
                adapter.fetch_outcome(self.user, self.school, date_range)
                for adapter in self.adapters
            )
        )

        # skipped sources never contacted an upstream
        failed = [outcome.source_id for outcome in outcomes if outcome.failed]
        if failed and all(outcome.failed or outcome.skipped for outcome in outcomes):
            raise TotalFetchFailure(f"All calendar sources failed ({', '.join(failed)}).")

        events: list[CalendarEvent] = []
        for outcome in outcomes:
            events.extend(outcome.events)
        return events

    async def get_upcoming_events(self, days: int = 30) -> list[CalendarEvent]:
        return await self.get_all_events(DateRange.next_days(days, now=self.now()))

    async def get_monthly_events(
        self, year: int | None = None, month: int | None = None
    ) -> list[CalendarEvent]:
        today = self.now()
        year = year or today.year
        month = month or today.month

        start = datetime(year, month, 1, tzinfo=timezone.utc)
        next_month = (start + timedelta(days=32)).replace(day=1)
        end = next_month - timedelta(seconds=1)
        return await self.get_all_events(DateRange(start=start, end=end))

    async def get_events_until(
        self, month: int = 3, day: int = 20, year: int | None = None
    ) -> list[CalendarEvent]:
        """Events from now until the given date; a passed date rolls to next year."""
        now = self.now()
        cutoff = _end_of_day(year or now.year, month, day)
        if cutoff < now:
            if year is not None:
                return []
            cutoff = _end_of_day(cutoff.year + 1, month, day)
        return await self.get_all_events(DateRange(start=now, end=cutoff))

    def is_google_calendar_available(self) -> bool:
        return can_access_google_calendar(self.user, self.school)

    def interactive_google_adapter(self) -> GoogleCalendarAdapter | None:
        for adapter in self.adapters:
            if isinstance(adapter, GoogleCalendarAdapter):
                return adapter
        return None

    async def sign_in_to_google(self, code: str) -> dict:
        with user_context(self.user.id, self.school.school_id), log_step(LOG_STEP):
            if not self.is_google_calendar_available():
                log_security_event(
                    "google_signin_denied", self.user, school_id=self.school.school_id
                )
                raise PermissionDenied("Google Calendar is not available for this account.")

            await self.rate_limiter.enforce(self.user.id, "google_signin")

            adapter = self.interactive_google_adapter()
            if adapter is None:
                raise PermissionDenied("Google sign-in is not enabled for this school.")

            try:
                result = await adapter.sign_in(self.user, self.school, code)
            except DomainViolation as e:
                log_security_event(
                    "google_domain_violation",
                    self.user,
                    school_id=self.school.school_id,
                    email=e.email,
                    expected_domain=e.domain,
                )
                raise

            log_security_event(
                "google_signin_success",
                self.user,
                school_id=self.school.school_id,
                email=result["user"]["email"],
            )
            self.cache.clear(self.user.id)
            return result

    async def sign_out_from_google(self):
        with user_context(self.user.id, self.school.school_id), log_step(LOG_STEP):
            adapter = self.interactive_google_adapter()
            if adapter is not None:
                await adapter.sign_out(self.user)
            self.cache.clear(self.user.id)
            log_security_event("google_signout", self.user, school_id=self.school.school_id)

    def clear_cache(self):
        self.cache.clear(self.user.id)

    def cache_stats(self) -> dict:
        return self.cache.stats()


def build_calendar_service(
    user: UserProfile,
    school: SchoolConfig,
    store: KeyValueStore,
    cache: EventCache,
    mode: CalendarMode = CalendarMode.COMBINED,
    rate_limiter: RateLimiter | None = None,
) -> CalendarService:
    adapters: list[SourceAdapter] = [AcademicCalendarAdapter()]
    if mode == CalendarMode.COMBINED:
        adapters.append(PersonalEventsAdapter())

    if can_access_google_calendar(user, school):
        if school.features.google_calendar_read_only:
            adapters.append(ReadOnlyGoogleCalendarAdapter())
        else:
            adapters.append(GoogleCalendarAdapter(store))

    return CalendarService(
        user,
        school,
        adapters,
        cache,
        rate_limiter or RateLimiter(store),
        mode=mode,
    )
