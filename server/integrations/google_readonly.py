import logging

from core.errors import AdapterFetchError
from models.calendar import CalendarEvent, DateRange, SchoolConfig, UserProfile

from integrations.base import SourceAdapter
from integrations.google import fetch_calendars

logger = logging.getLogger(__name__)


def branch_calendars(user: UserProfile, school: SchoolConfig) -> dict[str, str]:
    """
    Picks the calendar ids a user may read: the school-wide main and
    holiday calendars, their branch's academic and events calendars (or the
    school-wide ones), sports, and the staff calendar for teachers and staff.
    """
    google = school.google_config
    if google is None:
        return {}

    ids = google.calendar_ids
    main = ids.get("main")
    calendars: dict[str, str] = {
        "main": main,
        "holidays": ids.get("holidays") or main,
    }

    branch = google.branch_calendars.get(user.branch_id or "default")
    if branch:
        calendars["academic"] = branch.get("academic")
        calendars["events"] = branch.get("events")
    else:
        calendars["academic"] = ids.get("academic")
        calendars["events"] = ids.get("events")

    calendars["sports"] = ids.get("sports")

    if user.is_staff:
        calendars["staff"] = ids.get("staff") or main

    return {kind: calendar_id for kind, calendar_id in calendars.items() if calendar_id}


class ReadOnlyGoogleCalendarAdapter(SourceAdapter):
    """
    Google Calendar access with the school's static API key; no sign-in.
    Events are read-only and managed by school admins.
    """

    source_id = "google_readonly"
    log_step_name = "INT-GOOGLE-RO"

    def __init__(self, max_results: int = 100):
        self.max_results = max_results

    async def _fetch(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent] | None:
        if not school.google_config or not school.google_config.api_key:
            raise AdapterFetchError(self.source_id, "No Google API key configured")

        calendars = branch_calendars(user, school)
        if not calendars:
            return None

        per_calendar = self.max_results // len(calendars)
        events = await fetch_calendars(
            calendars,
            date_range,
            per_calendar,
            self.source_id,
            branch_id=user.branch_id,
            api_key=school.google_config.api_key,
        )
        logger.info(
            f"Fetched {len(events)} read-only events from {len(calendars)} calendars "
            f"for branch {user.branch_id or 'default'}."
        )
        return events
