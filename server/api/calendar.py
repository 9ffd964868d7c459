import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from core.authentication import get_current_user
from core.config import settings
from core.errors import (
    AdapterFetchError,
    CalendarError,
    DomainViolation,
    PermissionDenied,
    RateLimitExceeded,
)
from core.logging_setup import log_step
from core.storage import KeyValueStore
from fastapi import APIRouter, Depends, HTTPException, Query
from models.calendar import CalendarEvent, CalendarMode, DateRange, UserProfile
from pydantic import BaseModel, ValidationError
from services.cache import EventCache
from services.calendar import CalendarService, build_calendar_service
from services.school_config import SchoolConfigService

logger = logging.getLogger(__name__)


class GoogleSignInRequest(BaseModel):
    code: str


def to_http_error(error: CalendarError) -> HTTPException:
    if isinstance(error, RateLimitExceeded):
        return HTTPException(status_code=429, detail=str(error))
    if isinstance(error, (DomainViolation, PermissionDenied)):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, AdapterFetchError):
        return HTTPException(status_code=502, detail="Calendar source unavailable.")
    return HTTPException(status_code=500, detail="Calendar request failed.")


def create_calendar_router(
    cache: EventCache,
    store: KeyValueStore,
    school_configs: SchoolConfigService,
) -> APIRouter:
    """
    Creates the REST API router for a user's aggregated school calendar.
    """
    router = APIRouter(
        prefix="/api/calendar",
    )
    LOG_STEP = "API-CALENDAR"

    async def get_service(
        mode: CalendarMode = Query(CalendarMode.COMBINED),
        user: UserProfile = Depends(get_current_user),
    ) -> CalendarService:
        school = await school_configs.get(user.school_id)
        return build_calendar_service(user, school, store, cache, mode=mode)

    # NOTE: Requires User Auth
    @router.get("/events", response_model=List[CalendarEvent])
    async def get_events(
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        force_refresh: bool = False,
        service: CalendarService = Depends(get_service),
    ):
        """
        Returns every visible event in the requested range. Without a range,
        the next DEFAULT_RANGE_DAYS days are used.
        """
        with log_step(LOG_STEP):
            date_range = None
            if start or end:
                start = start or service.now()
                end = end or start + timedelta(days=settings.DEFAULT_RANGE_DAYS)
                try:
                    date_range = DateRange(start=start, end=end)
                except ValidationError:
                    raise HTTPException(
                        status_code=400, detail="'end' must not precede 'start'."
                    )

            try:
                return await service.get_all_events(date_range, force_refresh=force_refresh)
            except CalendarError as e:
                logger.warning(f"Event query failed: {e}")
                raise to_http_error(e)

    # NOTE: Requires User Auth
    @router.get("/upcoming", response_model=List[CalendarEvent])
    async def get_upcoming(
        days: int = Query(30, ge=1, le=366),
        service: CalendarService = Depends(get_service),
    ):
        with log_step(LOG_STEP):
            try:
                return await service.get_upcoming_events(days)
            except CalendarError as e:
                raise to_http_error(e)

    # NOTE: Requires User Auth
    @router.get("/monthly", response_model=List[CalendarEvent])
    async def get_monthly(
        year: Optional[int] = Query(None, ge=1970, le=9999),
        month: Optional[int] = Query(None, ge=1, le=12),
        service: CalendarService = Depends(get_service),
    ):
        with log_step(LOG_STEP):
            try:
                return await service.get_monthly_events(year, month)
            except CalendarError as e:
                raise to_http_error(e)

    # NOTE: Requires User Auth
    @router.get("/until", response_model=List[CalendarEvent])
    async def get_until(
        month: int = Query(3, ge=1, le=12),
        day: int = Query(20, ge=1, le=31),
        year: Optional[int] = Query(None, ge=1970, le=9999),
        service: CalendarService = Depends(get_service),
    ):
        with log_step(LOG_STEP):
            try:
                return await service.get_events_until(month, day, year)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid cutoff date.")
            except CalendarError as e:
                raise to_http_error(e)

    # NOTE: Requires User Auth
    @router.get("/google/authorize")
    async def google_authorize(service: CalendarService = Depends(get_service)):
        """
        Returns the Google consent URL, restricted to the school's domain.
        """
        with log_step(LOG_STEP):
            adapter = service.interactive_google_adapter()
            if adapter is None:
                raise HTTPException(
                    status_code=403, detail="Google sign-in is not enabled for this school."
                )
            state = secrets.token_urlsafe(16)
            return {
                "authorization_url": adapter.authorization_url(service.school, state),
                "state": state,
            }

    # NOTE: Requires User Auth
    @router.post("/google/sign-in")
    async def google_sign_in(
        request: GoogleSignInRequest,
        service: CalendarService = Depends(get_service),
    ):
        with log_step(LOG_STEP):
            try:
                return await service.sign_in_to_google(request.code)
            except CalendarError as e:
                logger.warning(f"Google sign-in rejected: {e}")
                raise to_http_error(e)

    # NOTE: Requires User Auth
    @router.post("/google/sign-out")
    async def google_sign_out(service: CalendarService = Depends(get_service)):
        with log_step(LOG_STEP):
            await service.sign_out_from_google()
            return {"message": "Signed out of Google Calendar."}

    # NOTE: Requires User Auth
    @router.delete("/cache")
    async def clear_cache(service: CalendarService = Depends(get_service)):
        with log_step(LOG_STEP):
            service.clear_cache()
            return {"message": "Calendar cache cleared."}

    # NOTE: Requires User Auth
    @router.get("/cache/stats")
    async def cache_stats(service: CalendarService = Depends(get_service)):
        return service.cache_stats()

    return router
