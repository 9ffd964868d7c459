from datetime import date, datetime, time, timedelta, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EventCategory(StrEnum):
    ACADEMIC = "academic"
    SCHOOL_EVENT = "school_event"
    GOOGLE_WORKSPACE = "google_workspace"
    HOMEWORK = "homework"
    EXAM = "exam"
    BIRTHDAY = "birthday"
    TIMETABLE = "timetable"
    NOTIFICATION = "notification"
    GENERAL = "general"


class UserRole(StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"
    PARENT = "parent"
    GUARDIAN = "guardian"
    ADMIN = "admin"


class CalendarMode(StrEnum):
    COMBINED = "combined"
    BRANCH_ONLY = "branch_only"


def parse_timestamp(value: str | datetime | date) -> datetime:
    """
    Parses an ISO-8601 date or datetime into an aware datetime.
    Naive values are treated as UTC; bare dates as midnight.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CalendarEvent(BaseModel):
    """Normalized event shape produced by every source adapter."""

    id: str
    title: str = ""
    description: str = ""
    start_time: str
    end_time: str
    is_all_day: bool = False
    location: str = ""
    category: EventCategory = EventCategory.GENERAL
    source_id: str
    color: str = "#8E8E93"
    editable: bool = False
    priority: str | None = None
    status: str = "confirmed"
    branch_id: str | None = None
    original_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value):
        if not value:
            return EventCategory.GENERAL
        try:
            return EventCategory(value)
        except ValueError:
            return EventCategory.GENERAL

    @field_validator("title", "description", "location", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @model_validator(mode="after")
    def _ordered_times(self):
        if parse_timestamp(self.end_time) < parse_timestamp(self.start_time):
            self.end_time = self.start_time
        return self

    @property
    def start(self) -> datetime:
        return parse_timestamp(self.start_time)

    @property
    def end(self) -> datetime:
        return parse_timestamp(self.end_time)


class UserProfile(BaseModel):
    """Authenticated user as supplied by the school's auth service."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: UserRole
    school_id: str | None = None
    branch_id: str | None = None
    branch_name: str | None = None
    class_id: str | None = None
    grade: str | None = None
    email: str | None = None
    auth_token: str | None = None
    is_admin: bool = False
    is_demo: bool = False
    permissions: frozenset[str] = frozenset()

    @field_validator("branch_id", "class_id", "grade", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return None if value is None else str(value)

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.TEACHER, UserRole.STAFF)

    @property
    def has_admin_rights(self) -> bool:
        return self.is_admin or self.role == UserRole.ADMIN


class GoogleConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str | None = None
    api_key: str | None = None
    calendar_ids: dict[str, str] = Field(default_factory=dict)
    branch_calendars: dict[str, dict[str, str]] = Field(default_factory=dict)


class SchoolFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    google_calendar: bool = False
    google_calendar_read_only: bool = True
    student_google_calendar: bool = True
    parent_google_calendar: bool = True
    custom_events: bool = False


class SchoolConfig(BaseModel):
    """Per-tenant static configuration, immutable for the length of a session."""

    model_config = ConfigDict(frozen=True)

    school_id: str
    name: str
    domain: str
    has_google_workspace: bool = False
    google_config: GoogleConfig | None = None
    features: SchoolFeatures = Field(default_factory=SchoolFeatures)


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _aware(cls, value):
        return parse_timestamp(value)

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError("DateRange end must not precede start")
        return self

    @classmethod
    def next_days(cls, days: int, now: datetime | None = None) -> "DateRange":
        start = now or datetime.now(timezone.utc)
        return cls(start=start, end=start + timedelta(days=days))

    @property
    def start_date_str(self) -> str:
        return self.start.date().isoformat()

    @property
    def end_date_str(self) -> str:
        return self.end.date().isoformat()

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end
