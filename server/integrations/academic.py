import logging
from typing import Any

from core.endpoints import build_api_url
from core.errors import AdapterFetchError, PermissionDenied
from core.http_client import request_json
from core.logging_setup import log_step
from models.calendar import (
    CalendarEvent,
    DateRange,
    EventCategory,
    SchoolConfig,
    UserProfile,
    UserRole,
)

from integrations.base import SourceAdapter, combine_date_time, event_color, prefixed_id

logger = logging.getLogger(__name__)

LOG_STEP = "INT-ACADEMIC"

# bucket name -> (category, id prefix, fallback title)
BUCKETS = {
    "google_calendar_events": (EventCategory.GOOGLE_WORKSPACE, "google", "Untitled Event"),
    "local_global_events": (EventCategory.SCHOOL_EVENT, "local_global", "School Event"),
    "academic_calendar_events": (EventCategory.ACADEMIC, "academic", "Academic Event"),
}

PARENT_ROLES = (UserRole.PARENT, UserRole.GUARDIAN)


def transform_bucket_event(
    raw: dict[str, Any], bucket: str, branch_id, source_id: str
) -> CalendarEvent:
    category, prefix, fallback_title = BUCKETS[bucket]
    is_all_day = bool(raw.get("is_all_day"))
    start = combine_date_time(raw.get("start_date"), raw.get("start_time"), is_all_day)
    end = combine_date_time(
        raw.get("end_date") or raw.get("start_date"),
        raw.get("end_time"),
        is_all_day,
        end=True,
    )
    return CalendarEvent(
        id=prefixed_id(prefix, raw.get("id")),
        title=raw.get("title") or fallback_title,
        description=raw.get("description") or "",
        start_time=start,
        end_time=end or start,
        is_all_day=is_all_day,
        location=raw.get("location") or "",
        category=category,
        source_id=source_id,
        color=event_color(category),
        status=raw.get("status") or "confirmed",
        branch_id=None if branch_id is None else str(branch_id),
        original_data=raw,
    )


def transform_branches(payload: dict[str, Any], source_id: str) -> list[CalendarEvent]:
    """
    Flattens the backend's per-branch buckets into normalized events,
    preserving branch order and, within a branch, bucket order.
    """
    events: list[CalendarEvent] = []
    branches = payload.get("branches")
    if not isinstance(branches, list):
        logger.info("No branches data in calendar response.")
        return events

    for branch in branches:
        if not branch or not branch.get("calendar_data"):
            logger.debug("Branch missing calendar_data, skipping.")
            continue

        calendar_data = branch["calendar_data"]
        for bucket in BUCKETS:
            raw_events = calendar_data.get(bucket)
            if not isinstance(raw_events, list):
                continue
            for raw in raw_events:
                if not raw.get("start_date"):
                    logger.debug(f"Skipping {bucket} entry without start_date.")
                    continue
                events.append(
                    transform_bucket_event(raw, bucket, branch.get("branch_id"), source_id)
                )

    return events


class AcademicCalendarAdapter(SourceAdapter):
    """
    School backend calendar: Google Workspace, local/global and academic
    calendar buckets for every branch the user belongs to.
    """

    source_id = "academic"
    log_step_name = LOG_STEP

    async def _fetch(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent]:
        if not user.auth_token:
            raise AdapterFetchError(self.source_id, "No authentication code available")

        endpoint = "parent_calendar_data" if user.role in PARENT_ROLES else "calendar_data"
        url = build_api_url(endpoint)
        data = await request_json(
            url,
            source=self.source_id,
            params={
                "authCode": user.auth_token,
                "start_date": date_range.start_date_str,
                "end_date": date_range.end_date_str,
            },
        )

        if not data.get("success"):
            raise AdapterFetchError(
                self.source_id, data.get("message") or "Failed to fetch calendar data"
            )

        logger.info(
            f"Retrieved calendar data for {data.get('total_branches', 0)} branch(es)."
        )
        return transform_branches(data, self.source_id)

    async def test_connection(self, user: UserProfile, branch_id: str) -> dict:
        """
        Asks the backend which configured calendars of a branch are reachable.
        Staff only.
        """
        with log_step(LOG_STEP):
            if not user.is_staff:
                raise PermissionDenied(
                    "Calendar connection test is only available for staff users"
                )
            if not user.auth_token:
                raise AdapterFetchError(self.source_id, "No authentication code available")

            data = await request_json(
                build_api_url("calendar_test_connection"),
                source=self.source_id,
                params={"authCode": user.auth_token, "branch_id": branch_id},
            )
            if not data.get("success"):
                raise AdapterFetchError(
                    self.source_id,
                    data.get("message") or "Failed to test calendar connection",
                )

            summary = data.get("data") or {}
            logger.info(
                f"Connection test for branch {branch_id}: "
                f"{summary.get('successful_connections', 0)}/"
                f"{summary.get('total_calendars', 0)} calendars accessible."
            )
            return data
