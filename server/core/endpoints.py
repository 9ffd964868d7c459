from typing import Any
from urllib.parse import urlencode

from core.config import settings

ENDPOINTS = {
    "calendar_data": "/calendar/data",
    "calendar_personal": "/calendar/personal",
    "calendar_upcoming": "/calendar/upcoming",
    "calendar_monthly": "/calendar/monthly",
    "calendar_test_connection": "/calendar/test-connection",
    "parent_calendar_data": "/parent/calendar/data",
    "parent_calendar_upcoming": "/parent/calendar/upcoming",
    "parent_calendar_personal": "/parent/calendar/personal",
    "school_config": "/school-config/{school_id}",
}


def endpoint_path(name: str, **path_params: Any) -> str:
    """Resolves a logical endpoint name into its URL path."""
    template = ENDPOINTS[name]
    return template.format(**path_params) if path_params else template


def build_api_url(
    endpoint: str,
    params: dict[str, Any] | None = None,
    base_url: str | None = None,
    **path_params: Any,
) -> str:
    """
    Composes a full backend URL from a registry name (or a raw path) and
    optional query parameters. None-valued parameters are dropped.
    """
    if endpoint in ENDPOINTS:
        path = endpoint_path(endpoint, **path_params)
    elif endpoint.startswith("/"):
        path = endpoint
    else:
        raise KeyError(f"Unknown endpoint: {endpoint}")

    base = (base_url or settings.API_BASE_URL).rstrip("/")
    url = f"{base}/{path.lstrip('/')}"

    if params:
        query = {k: v for k, v in params.items() if v is not None}
        if query:
            url = f"{url}?{urlencode(query)}"

    return url
