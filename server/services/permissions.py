"""
Role-based visibility and edit rights for calendar events.

Each event category has its own rule object; categories without a rule fall
back to DefaultRule (visible, not editable).
"""

import logging

from models.calendar import CalendarEvent, EventCategory, SchoolConfig, UserProfile, UserRole

logger = logging.getLogger(__name__)


def _same(value, expected) -> bool:
    return value is not None and expected is not None and str(value) == str(expected)


def can_access_google_calendar(user: UserProfile, school: SchoolConfig) -> bool:
    """Tenant must enable Google Calendar; the role decides the rest."""
    if not school.has_google_workspace or not school.features.google_calendar:
        return False

    if user.is_staff or user.has_admin_rights:
        return True
    if user.role == UserRole.STUDENT:
        return school.features.student_google_calendar
    if user.role in (UserRole.PARENT, UserRole.GUARDIAN):
        return school.features.parent_google_calendar
    return False


def can_create_events(user: UserProfile) -> bool:
    if user.has_admin_rights:
        return True
    if user.is_staff:
        return bool({"can_create_homework", "can_manage_events"} & user.permissions)
    return False


def validate_google_domain(email: str | None, school: SchoolConfig) -> bool:
    if not email or not school.domain:
        return False
    return email.lower().endswith(f"@{school.domain.lower()}")


class PermissionRule:
    """Visible to everyone, editable by no one."""

    def is_visible(self, user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
        return True

    def can_edit(self, user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
        return False

    def can_delete(self, user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
        return self.can_edit(user, event, school)


class DefaultRule(PermissionRule):
    pass


class HomeworkRule(PermissionRule):
    def is_visible(self, user, event, school):
        data = event.original_data
        if user.role == UserRole.STUDENT:
            return (
                _same(data.get("student_id"), user.id)
                or _same(data.get("class_id"), user.class_id)
                or _same(data.get("grade"), user.grade)
            )
        return user.role == UserRole.TEACHER

    def can_edit(self, user, event, school):
        data = event.original_data
        return user.role == UserRole.TEACHER and (
            _same(data.get("teacher_id"), user.id) or _same(data.get("created_by"), user.id)
        )


class TimetableRule(PermissionRule):
    def is_visible(self, user, event, school):
        data = event.original_data
        if user.role == UserRole.STUDENT:
            return _same(data.get("class_id"), user.class_id) or _same(
                data.get("grade"), user.grade
            )
        if user.role == UserRole.TEACHER:
            return _same(data.get("teacher_id"), user.id) or _same(
                data.get("subject_teacher"), user.id
            )
        return False

    def can_edit(self, user, event, school):
        return user.role == UserRole.ADMIN


class SchoolEventRule(PermissionRule):
    def can_edit(self, user, event, school):
        return user.has_admin_rights or _same(event.original_data.get("created_by"), user.id)


class GoogleWorkspaceRule(PermissionRule):
    def is_visible(self, user, event, school):
        return can_access_google_calendar(user, school)


class NotificationRule(PermissionRule):
    def is_visible(self, user, event, school):
        data = event.original_data
        return (
            _same(data.get("recipient_id"), user.id)
            or data.get("recipient_type") == user.role.value
            or data.get("is_public") is True
        )


DEFAULT_RULE = DefaultRule()

PERMISSION_RULES: dict[EventCategory, PermissionRule] = {
    EventCategory.HOMEWORK: HomeworkRule(),
    EventCategory.TIMETABLE: TimetableRule(),
    EventCategory.SCHOOL_EVENT: SchoolEventRule(),
    EventCategory.GOOGLE_WORKSPACE: GoogleWorkspaceRule(),
    EventCategory.NOTIFICATION: NotificationRule(),
}


def rule_for(event: CalendarEvent) -> PermissionRule:
    return PERMISSION_RULES.get(event.category, DEFAULT_RULE)


def is_visible(user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
    return rule_for(event).is_visible(user, event, school)


def can_edit(user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
    return rule_for(event).can_edit(user, event, school)


def can_delete(user: UserProfile, event: CalendarEvent, school: SchoolConfig) -> bool:
    return rule_for(event).can_delete(user, event, school)


def filter_events_for_user(
    events: list[CalendarEvent], user: UserProfile, school: SchoolConfig
) -> list[CalendarEvent]:
    visible = [event for event in events if is_visible(user, event, school)]
    hidden = len(events) - len(visible)
    if hidden:
        logger.debug(f"Permission filter hid {hidden} of {len(events)} events.")
    return visible


def annotate_editable(
    events: list[CalendarEvent], user: UserProfile, school: SchoolConfig
) -> list[CalendarEvent]:
    return [
        event.model_copy(update={"editable": can_edit(user, event, school)})
        for event in events
    ]
