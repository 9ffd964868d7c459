import json
import logging
import time
from typing import Any, Callable

from pydantic import ValidationError

from core.config import settings
from core.endpoints import build_api_url
from core.errors import AdapterFetchError
from core.http_client import request_json
from core.logging_setup import log_step
from core.storage import KeyValueStore
from models.calendar import GoogleConfig, SchoolConfig, SchoolFeatures

logger = logging.getLogger(__name__)

LOG_STEP = "SCHOOL-CONFIG"

STORAGE_PREFIX = "school_config_"

DEFAULT_SCHOOL_ID = "default_school"


def _calendar_set(domain: str) -> GoogleConfig:
    prefix = domain.split(".")[0]
    return GoogleConfig(
        client_id=f"{prefix}-google-client-id.apps.googleusercontent.com",
        api_key=f"{prefix}-google-api-key",
        calendar_ids={
            kind: f"{kind}@{domain}"
            for kind in ("main", "academic", "sports", "events", "holidays", "staff")
        },
        branch_calendars={
            "primary": {
                "academic": f"primary-academic@{domain}",
                "events": f"primary-events@{domain}",
            },
            "secondary": {
                "academic": f"secondary-academic@{domain}",
                "events": f"secondary-events@{domain}",
            },
            "high_school": {
                "academic": f"highschool-academic@{domain}",
                "events": f"highschool-events@{domain}",
            },
        },
    )


DEFAULT_SCHOOL_CONFIGS: dict[str, SchoolConfig] = {
    DEFAULT_SCHOOL_ID: SchoolConfig(
        school_id=DEFAULT_SCHOOL_ID,
        name="Default School",
        domain="school.edu",
        has_google_workspace=True,
        google_config=_calendar_set("school.edu"),
        features=SchoolFeatures(
            google_calendar=True, google_calendar_read_only=True, custom_events=True
        ),
    ),
    "demo_school": SchoolConfig(
        school_id="demo_school",
        name="Demo School",
        domain="demo.edu",
        has_google_workspace=True,
        google_config=_calendar_set("demo.edu"),
        features=SchoolFeatures(
            google_calendar=True, google_calendar_read_only=True, custom_events=True
        ),
    ),
}


def parse_school_config(payload: dict[str, Any]) -> SchoolConfig:
    """Accepts the backend's camelCase payload as well as our own field names."""
    google = payload.get("google_config") or payload.get("googleConfig")
    features = payload.get("features") or {}

    google_config = None
    if google:
        google_config = GoogleConfig(
            client_id=google.get("client_id") or google.get("clientId"),
            api_key=google.get("api_key") or google.get("apiKey"),
            calendar_ids=google.get("calendar_ids") or google.get("calendarIds") or {},
            branch_calendars=google.get("branch_calendars")
            or google.get("branchCalendars")
            or {},
        )

    def flag(snake: str, camel: str, default: bool) -> bool:
        if snake in features:
            return bool(features[snake])
        return bool(features.get(camel, default))

    return SchoolConfig(
        school_id=payload.get("school_id") or payload["schoolId"],
        name=payload.get("name") or "",
        domain=payload.get("domain") or "",
        has_google_workspace=bool(
            payload.get("has_google_workspace", payload.get("hasGoogleWorkspace", False))
        ),
        google_config=google_config,
        features=SchoolFeatures(
            google_calendar=flag("google_calendar", "googleCalendar", False),
            google_calendar_read_only=flag(
                "google_calendar_read_only", "googleCalendarReadOnly", True
            ),
            student_google_calendar=flag(
                "student_google_calendar", "studentGoogleCalendar", True
            ),
            parent_google_calendar=flag(
                "parent_google_calendar", "parentGoogleCalendar", True
            ),
            custom_events=flag("custom_events", "customEvents", False),
        ),
    )


class SchoolConfigService:
    """
    Tenant configuration lookup: a stored copy while it is younger than the
    TTL, then the backend, then the built-in defaults.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = settings.SCHOOL_CONFIG_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def get(self, school_id: str | None) -> SchoolConfig:
        school_id = school_id or DEFAULT_SCHOOL_ID
        with log_step(LOG_STEP):
            cached = await self._load_cached(school_id)
            if cached:
                logger.debug(f"Using stored config for {school_id}.")
                return cached

            fetched = await self._fetch(school_id)
            if fetched:
                await self._store(school_id, fetched)
                logger.info(f"Fetched config for {school_id} from backend.")
                return fetched

            logger.info(f"Using built-in config for {school_id}.")
            return DEFAULT_SCHOOL_CONFIGS.get(
                school_id, DEFAULT_SCHOOL_CONFIGS[DEFAULT_SCHOOL_ID]
            )

    @staticmethod
    def resolve_school_id(domain: str | None) -> str | None:
        if not domain:
            return None
        domain = domain.lower()
        for school_id, config in DEFAULT_SCHOOL_CONFIGS.items():
            if config.domain == domain:
                return school_id
        return None

    async def clear_cache(self):
        with log_step(LOG_STEP):
            keys = [key for key in await self.store.keys() if key.startswith(STORAGE_PREFIX)]
            await self.store.multi_remove(keys)
            logger.info(f"Cleared {len(keys)} stored school configs.")

    async def _load_cached(self, school_id: str) -> SchoolConfig | None:
        raw = await self.store.get(f"{STORAGE_PREFIX}{school_id}")
        if not raw:
            return None
        try:
            entry = json.loads(raw)
            if self.clock() - entry["cached_at"] >= self.ttl_seconds:
                return None
            return SchoolConfig.model_validate(entry["data"])
        except (ValueError, KeyError, ValidationError) as e:
            logger.warning(f"Discarding unreadable stored config for {school_id}: {e}")
            return None

    async def _fetch(self, school_id: str) -> SchoolConfig | None:
        url = build_api_url("school_config", school_id=school_id)
        try:
            payload = await request_json(url, source="school_config")
            return parse_school_config(payload)
        except AdapterFetchError as e:
            logger.info(f"School config endpoint unavailable for {school_id}: {e}")
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Backend returned an invalid config for {school_id}: {e}")
        return None

    async def _store(self, school_id: str, config: SchoolConfig):
        entry = {"data": config.model_dump(mode="json"), "cached_at": self.clock()}
        await self.store.set(f"{STORAGE_PREFIX}{school_id}", json.dumps(entry))
