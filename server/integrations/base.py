import abc
import logging
from dataclasses import dataclass, field

from core.errors import DomainViolation, PermissionDenied
from core.logging_setup import log_step
from models.calendar import CalendarEvent, DateRange, EventCategory, SchoolConfig, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#8E8E93"

CATEGORY_COLORS = {
    EventCategory.GOOGLE_WORKSPACE: "#4285F4",
    EventCategory.ACADEMIC: "#34A853",
    EventCategory.SCHOOL_EVENT: "#2196F3",
    EventCategory.TIMETABLE: "#4CAF50",
    EventCategory.HOMEWORK: "#007AFF",
    EventCategory.EXAM: "#FF9500",
    EventCategory.BIRTHDAY: "#34C759",
    EventCategory.NOTIFICATION: "#9C27B0",
}

SUB_TYPE_COLORS = {
    EventCategory.GOOGLE_WORKSPACE: {
        "main": "#4285F4",
        "academic": "#34A853",
        "sports": "#EA4335",
        "events": "#FBBC04",
        "holidays": "#9C27B0",
        "staff": "#FF5722",
    },
    EventCategory.HOMEWORK: {"assignment": "#FF9500", "reminder": "#FF6B35"},
    EventCategory.SCHOOL_EVENT: {"holiday": "#FF3B30", "announcement": "#5856D6"},
    EventCategory.NOTIFICATION: {
        "emergency": "#FF3B30",
        "important": "#FF9500",
        "health": "#4ECDC4",
    },
}

URGENT_COLORS = {
    EventCategory.HOMEWORK: "#FF3B30",
    EventCategory.EXAM: "#FF9500",
}


def event_color(
    category: EventCategory, sub_type: str | None = None, priority: str | None = None
) -> str:
    """Presentation colour derived from category, optional sub-type and priority."""
    if priority == "high":
        return URGENT_COLORS.get(category, "#FF3B30")
    if sub_type and sub_type in SUB_TYPE_COLORS.get(category, {}):
        return SUB_TYPE_COLORS[category][sub_type]
    return CATEGORY_COLORS.get(category, DEFAULT_COLOR)


def combine_date_time(
    day: str | None, clock: str | None, is_all_day: bool, end: bool = False
) -> str | None:
    """
    Joins the backend's separate date and time fields into one ISO string.
    All-day events keep the bare date.
    """
    if not day:
        return None
    if is_all_day:
        return day
    if not clock:
        clock = "23:59:59" if end else "00:00:00"
    elif clock.count(":") == 1:
        clock = f"{clock}:59" if end else f"{clock}:00"
    return f"{day}T{clock}"


def prefixed_id(prefix: str, raw_id) -> str:
    raw = str(raw_id)
    return raw if raw.startswith(f"{prefix}_") else f"{prefix}_{raw}"


@dataclass
class FetchOutcome:
    source_id: str
    events: list[CalendarEvent] = field(default_factory=list)
    error: Exception | None = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


class SourceAdapter(abc.ABC):
    """
    Fetches events from one upstream and normalizes them into CalendarEvent.

    Upstream failures stay inside the adapter: they are logged and turned
    into an empty result. Policy violations are re-raised. An adapter with
    nothing to ask for this user (no grant, no calendars) returns None from
    _fetch and is reported as skipped.
    """

    source_id: str = "unknown"
    log_step_name: str = "ADAPTER"

    @abc.abstractmethod
    async def _fetch(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent] | None: ...

    async def fetch_outcome(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> FetchOutcome:
        with log_step(self.log_step_name):
            try:
                events = await self._fetch(user, school, date_range)
            except (DomainViolation, PermissionDenied):
                raise
            except Exception as e:
                logger.error(f"{self.source_id} fetch failed: {e}")
                return FetchOutcome(self.source_id, [], e)

            if events is None:
                logger.debug(f"{self.source_id} skipped, no upstream to ask.")
                return FetchOutcome(self.source_id, skipped=True)

            logger.debug(f"{self.source_id} returned {len(events)} events.")
            return FetchOutcome(self.source_id, events)

    async def fetch_events(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent]:
        outcome = await self.fetch_outcome(user, school, date_range)
        return outcome.events
