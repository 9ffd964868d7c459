import logging
from typing import Any

from core.endpoints import build_api_url
from core.errors import AdapterFetchError
from core.http_client import request_json
from models.calendar import (
    CalendarEvent,
    DateRange,
    EventCategory,
    SchoolConfig,
    UserProfile,
    UserRole,
)

from integrations.base import SourceAdapter, event_color, prefixed_id

logger = logging.getLogger(__name__)

PERSONAL_CATEGORIES = {
    "homework": EventCategory.HOMEWORK,
    "exam": EventCategory.EXAM,
    "birthday": EventCategory.BIRTHDAY,
}

TITLE_LABELS = {
    EventCategory.HOMEWORK: "Homework",
    EventCategory.EXAM: "Exam",
    EventCategory.BIRTHDAY: "Birthday",
}


def personal_title(category: EventCategory, title: str | None) -> str:
    title = title or "Personal Event"
    label = TITLE_LABELS.get(category)
    return f"{label}: {title}" if label else title


def transform_personal_event(raw: dict[str, Any], source_id: str) -> CalendarEvent:
    category = PERSONAL_CATEGORIES.get(raw.get("category") or "", EventCategory.GENERAL)
    priority = raw.get("priority") or "medium"

    start_day = raw.get("start_date")
    end_day = raw.get("end_date") or start_day
    start = f"{start_day}T{raw.get('start_time') or '00:00:00'}"
    end = f"{end_day}T{raw.get('end_time') or '23:59:59'}"

    return CalendarEvent(
        id=prefixed_id(category.value, raw.get("id")),
        title=personal_title(category, raw.get("title")),
        description=raw.get("description") or "",
        start_time=start,
        end_time=end,
        is_all_day=raw.get("is_all_day", True),
        location=raw.get("location") or "",
        category=category,
        source_id=source_id,
        color=event_color(category, priority=priority),
        priority=priority,
        status=raw.get("status") or "scheduled",
        original_data=raw,
    )


class PersonalEventsAdapter(SourceAdapter):
    """Homework due dates, exam schedules and birthdays for one user."""

    source_id = "personal"
    log_step_name = "INT-PERSONAL"

    async def _fetch(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent]:
        if not user.auth_token:
            raise AdapterFetchError(self.source_id, "No authentication code available")

        endpoint = (
            "parent_calendar_personal"
            if user.role in (UserRole.PARENT, UserRole.GUARDIAN)
            else "calendar_personal"
        )
        data = await request_json(
            build_api_url(endpoint),
            source=self.source_id,
            params={
                "authCode": user.auth_token,
                "start_date": date_range.start_date_str,
                "end_date": date_range.end_date_str,
            },
        )

        if not data.get("success"):
            raise AdapterFetchError(
                self.source_id, data.get("message") or "Failed to fetch personal events"
            )

        raw_events = data.get("personal_events") or []
        logger.info(
            f"Fetched {len(raw_events)} personal events for "
            f"{data.get('user_type') or user.role} user."
        )
        return [
            transform_personal_event(raw, self.source_id)
            for raw in raw_events
            if raw.get("start_date")
        ]
