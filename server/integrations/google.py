import json
import logging
import time
import urllib.parse
from typing import Any

from core.authentication import decrypt, encrypt
from core.config import settings
from core.errors import AdapterFetchError, DomainViolation
from core.http_client import get_http_client, request_json
from core.logging_setup import log_step
from core.storage import KeyValueStore
from models.calendar import (
    CalendarEvent,
    DateRange,
    EventCategory,
    SchoolConfig,
    UserProfile,
)
from services.permissions import validate_google_domain

from integrations.base import SourceAdapter, event_color, prefixed_id

logger = logging.getLogger(__name__)

LOG_STEP = "INT-GOOGLE"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
SCOPE = (
    "openid email profile "
    "https://www.googleapis.com/auth/calendar.readonly "
    "https://www.googleapis.com/auth/calendar.events.readonly"
)
REDIRECT_PATH = "/api/calendar/google/callback"

AUTH_STATE_PREFIX = "google_auth_state_"


def transform_google_item(
    item: dict[str, Any],
    calendar_type: str,
    source_id: str,
    branch_id: str | None = None,
) -> CalendarEvent:
    """Normalizes a Google Calendar v3 event resource."""
    start = item.get("start") or {}
    end = item.get("end") or {}
    is_all_day = "dateTime" not in start
    start_time = start.get("dateTime") or start.get("date")
    end_time = end.get("dateTime") or end.get("date") or start_time

    return CalendarEvent(
        id=prefixed_id("google", item.get("id")),
        title=item.get("summary") or "Untitled Event",
        description=item.get("description") or "",
        start_time=start_time,
        end_time=end_time,
        is_all_day=is_all_day,
        location=item.get("location") or "",
        category=EventCategory.GOOGLE_WORKSPACE,
        source_id=source_id,
        color=event_color(EventCategory.GOOGLE_WORKSPACE, calendar_type),
        status=item.get("status") or "confirmed",
        branch_id=branch_id,
        original_data={**item, "calendar_type": calendar_type},
    )


async def list_calendar_events(
    calendar_id: str,
    date_range: DateRange,
    max_results: int,
    source: str,
    headers: dict[str, str] | None = None,
    api_key: str | None = None,
) -> list[dict[str, Any]]:
    quoted = urllib.parse.quote(calendar_id, safe="")
    url = f"{settings.GOOGLE_CALENDAR_API_URL.rstrip('/')}/calendars/{quoted}/events"
    params = {
        "timeMin": date_range.start.isoformat(),
        "timeMax": date_range.end.isoformat(),
        "maxResults": max(1, max_results),
        "singleEvents": "true",
        "orderBy": "startTime",
        "key": api_key,
    }
    data = await request_json(url, source=source, params=params, headers=headers)
    return data.get("items") or []


async def fetch_calendars(
    calendars: dict[str, str],
    date_range: DateRange,
    max_results: int,
    source: str,
    branch_id: str | None = None,
    headers: dict[str, str] | None = None,
    api_key: str | None = None,
) -> list[CalendarEvent]:
    """
    Lists every calendar in turn. A failing calendar is skipped; the call
    only fails when no calendar could be read at all.
    """
    events: list[CalendarEvent] = []
    failures = 0

    for calendar_type, calendar_id in calendars.items():
        if not calendar_id:
            continue
        try:
            items = await list_calendar_events(
                calendar_id,
                date_range,
                max_results,
                source,
                headers=headers,
                api_key=api_key,
            )
        except AdapterFetchError as e:
            failures += 1
            logger.error(f"Error fetching {calendar_type} calendar: {e}")
            continue

        events.extend(
            transform_google_item(item, calendar_type, source, branch_id)
            for item in items
        )

    if failures and failures == len([c for c in calendars.values() if c]):
        raise AdapterFetchError(source, "No Google calendar could be read.")

    events.sort(key=lambda event: event.start)
    return events


class GoogleCalendarAdapter(SourceAdapter):
    """
    Interactive Google Calendar access through the user's own OAuth grant.
    The signed-in account must belong to the tenant's email domain.
    """

    source_id = "google"
    log_step_name = LOG_STEP

    def __init__(self, store: KeyValueStore, max_results: int = 50):
        self.store = store
        self.max_results = max_results

    def authorization_url(self, school: SchoolConfig, state: str) -> str:
        client_id = (
            school.google_config.client_id if school.google_config else None
        ) or settings.GOOGLE_CLIENT_ID
        params = {
            "client_id": client_id,
            "redirect_uri": f"{settings.APP_BASE_URL}{REDIRECT_PATH}",
            "response_type": "code",
            "scope": SCOPE,
            "state": state,
            "access_type": "offline",
            "hd": school.domain,
        }
        return f"{GOOGLE_AUTH_URL}?{urllib.parse.urlencode(params)}"

    async def sign_in(self, user: UserProfile, school: SchoolConfig, code: str) -> dict:
        """
        Exchanges an authorization code and verifies the account's domain.
        A foreign domain revokes the grant and raises DomainViolation.
        """
        with log_step(LOG_STEP):
            try:
                tokens = await request_json(
                    GOOGLE_TOKEN_URL,
                    method="POST",
                    source=self.source_id,
                    data={
                        "code": code,
                        "client_id": settings.GOOGLE_CLIENT_ID,
                        "client_secret": settings.GOOGLE_CLIENT_SECRET,
                        "redirect_uri": f"{settings.APP_BASE_URL}{REDIRECT_PATH}",
                        "grant_type": "authorization_code",
                    },
                )
            except AdapterFetchError as e:
                logger.error(f"Failed to retrieve Google token: {e}")
                raise

            access_token = tokens.get("access_token") if isinstance(tokens, dict) else None
            if not access_token:
                raise AdapterFetchError(self.source_id, "Failed to retrieve access token.")

            try:
                user_info = await request_json(
                    GOOGLE_USERINFO_URL,
                    source=self.source_id,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except AdapterFetchError:
                await self._revoke(access_token)
                raise

            email = (user_info.get("email") if isinstance(user_info, dict) else None) or ""

            if not validate_google_domain(email, school):
                logger.warning(
                    f"Google sign-in with {email} rejected, expected @{school.domain}."
                )
                await self.sign_out(user, access_token=access_token)
                raise DomainViolation(email, school.domain)

            state = {
                "email": email,
                "school_id": school.school_id,
                "access_token": encrypt(access_token),
                "refresh_token": encrypt(tokens["refresh_token"])
                if tokens.get("refresh_token")
                else None,
                "expires_at": int(time.time()) + tokens.get("expires_in", 3600),
            }
            await self.store.set(self._state_key(user), json.dumps(state))

            logger.info(f"Google account {email} linked for user {user.id}.")
            return {"user": {"email": email, "name": user_info.get("name")}}

    async def sign_out(self, user: UserProfile, access_token: str | None = None):
        with log_step(LOG_STEP):
            if access_token is None:
                state = await self._load_state(user)
                if state:
                    access_token = decrypt(state["access_token"])
            if access_token:
                await self._revoke(access_token)
            await self.store.remove(self._state_key(user))
            logger.info(f"Google account signed out for user {user.id}.")

    async def is_signed_in(self, user: UserProfile) -> bool:
        return await self._load_state(user) is not None

    async def get_valid_token(self, user: UserProfile) -> str | None:
        state = await self._load_state(user)
        if not state:
            return None

        if time.time() < state.get("expires_at", 0) - 300:
            return decrypt(state["access_token"]) or None

        refresh_token = decrypt(state["refresh_token"]) if state.get("refresh_token") else ""
        if not refresh_token:
            return None

        try:
            token_data = await request_json(
                GOOGLE_TOKEN_URL,
                method="POST",
                source=self.source_id,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except AdapterFetchError as e:
            logger.error(f"Failed to refresh Google token: {e}")
            return None

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            logger.error("Google token refresh returned no access token.")
            return None

        state["access_token"] = encrypt(token_data["access_token"])
        state["expires_at"] = int(time.time()) + token_data.get("expires_in", 3600)
        if token_data.get("refresh_token"):
            state["refresh_token"] = encrypt(token_data["refresh_token"])
        await self.store.set(self._state_key(user), json.dumps(state))
        return token_data["access_token"]

    async def _fetch(
        self, user: UserProfile, school: SchoolConfig, date_range: DateRange
    ) -> list[CalendarEvent] | None:
        if not school.google_config or not school.google_config.calendar_ids:
            return None

        access_token = await self.get_valid_token(user)
        if not access_token:
            logger.info("Not signed in to Google, skipping interactive calendars.")
            return None

        return await fetch_calendars(
            school.google_config.calendar_ids,
            date_range,
            self.max_results,
            self.source_id,
            branch_id=user.branch_id,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def _revoke(self, access_token: str):
        client = get_http_client()
        try:
            await client.post(GOOGLE_REVOKE_URL, params={"token": access_token})
        except Exception as e:
            logger.warning(f"Token revocation failed: {e}")

    async def _load_state(self, user: UserProfile) -> dict | None:
        raw = await self.store.get(self._state_key(user))
        return json.loads(raw) if raw else None

    @staticmethod
    def _state_key(user: UserProfile) -> str:
        return f"{AUTH_STATE_PREFIX}{user.id}"
