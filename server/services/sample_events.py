import random
from datetime import datetime, time, timedelta

from integrations.base import event_color
from models.calendar import CalendarEvent, DateRange, EventCategory, SchoolConfig, UserProfile

from services.permissions import is_visible

SOURCE_ID = "sample_data"

SAMPLE_DAYS = 14

SAMPLE_TITLES = {
    EventCategory.ACADEMIC: ["Math Class", "Science Lab", "Literature Workshop", "History Lesson"],
    EventCategory.SCHOOL_EVENT: ["School Assembly", "Parent Meeting", "Cultural Festival", "Sports Day"],
    EventCategory.GOOGLE_WORKSPACE: ["Staff Meeting", "Training Session", "Workshop", "Conference"],
    EventCategory.TIMETABLE: ["Period 1", "Period 2", "Period 3", "Break Time"],
}


def _sample_data(user: UserProfile) -> dict:
    # ties timetable samples to the demo user's own class and lessons
    return {
        "sample": True,
        "class_id": user.class_id,
        "grade": user.grade,
        "teacher_id": user.id,
    }


def _sample_event(
    event_id: str, category: EventCategory, title: str, start: datetime, user: UserProfile
) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        title=title,
        description=f"Sample {category.value} event",
        start_time=start.isoformat(),
        end_time=(start + timedelta(hours=1)).isoformat(),
        location="School Campus",
        category=category,
        source_id=SOURCE_ID,
        color=event_color(category),
        branch_id=user.branch_id or "primary",
        original_data=_sample_data(user),
    )


def visible_sample_categories(user: UserProfile, school: SchoolConfig) -> list[EventCategory]:
    """Sample categories the permission filter would let this user see."""
    template_start = datetime(2000, 1, 1, 9, 0)
    categories = [
        category
        for category in SAMPLE_TITLES
        if is_visible(user, _sample_event("sample", category, "", template_start, user), school)
    ]
    return categories or [EventCategory.SCHOOL_EVENT]


def generate_sample_events(
    user: UserProfile, school: SchoolConfig, date_range: DateRange
) -> list[CalendarEvent]:
    """
    Demo-only placeholder events for the first two weeks of the range.
    Seeded by user and range start, so the same query always yields the same events.
    Only categories the user is allowed to see are generated.
    """
    rng = random.Random(f"{user.id}:{date_range.start_date_str}")
    first_day = date_range.start.date()
    tz = date_range.start.tzinfo
    categories = visible_sample_categories(user, school)
    events: list[CalendarEvent] = []

    for offset in range(SAMPLE_DAYS):
        day = first_day + timedelta(days=offset)
        for slot in range(rng.randint(1, 2)):
            start = datetime.combine(day, time(rng.randint(9, 16), rng.choice((0, 30))), tz)
            if not date_range.contains(start):
                continue
            category = rng.choice(categories)
            events.append(
                _sample_event(
                    f"sample_{day.isoformat()}_{slot}",
                    category,
                    rng.choice(SAMPLE_TITLES[category]),
                    start,
                    user,
                )
            )

    events.sort(key=lambda event: event.start)
    return events
