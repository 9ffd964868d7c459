import re
from typing import Any

import bleach

from models.calendar import CalendarEvent

SENSITIVE_FIELDS = frozenset(
    {"internal_id", "password", "secret", "private_notes", "token", "auth_code", "authCode"}
)

# Formatting markup that event descriptions commonly carry. No style, no
# handlers, and links only with a safe scheme.
ALLOWED_TAGS = frozenset(
    {"a", "b", "br", "em", "i", "li", "ol", "p", "span", "strong", "u", "ul"}
)
ALLOWED_ATTRIBUTES = {"a": ["href", "title"]}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto", "tel"})

_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)


def _drop_script_bodies(text: str) -> str:
    # bleach strips the tags but keeps what was between them
    while True:
        stripped = _SCRIPT_BLOCK.sub("", text)
        if stripped == text:
            return text
        text = stripped


def sanitize_html(text: Any) -> str:
    if not isinstance(text, str):
        return ""

    return bleach.clean(
        _drop_script_bodies(text),
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )


def strip_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in SENSITIVE_FIELDS}


def sanitize_event(event: CalendarEvent) -> CalendarEvent:
    return event.model_copy(
        update={
            "title": sanitize_html(event.title),
            "description": sanitize_html(event.description),
            "original_data": strip_sensitive(event.original_data),
        }
    )
