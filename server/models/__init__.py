from .calendar import (
    CalendarEvent,
    CalendarMode,
    DateRange,
    EventCategory,
    GoogleConfig,
    SchoolConfig,
    SchoolFeatures,
    UserProfile,
    UserRole,
)
from .storage import KeyValueEntry

__all__ = [
    "CalendarEvent",
    "CalendarMode",
    "DateRange",
    "EventCategory",
    "GoogleConfig",
    "KeyValueEntry",
    "SchoolConfig",
    "SchoolFeatures",
    "UserProfile",
    "UserRole",
]
