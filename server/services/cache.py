import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from core.config import settings
from core.logging_setup import log_step
from models.calendar import CalendarEvent, DateRange

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str, str]


@dataclass(frozen=True)
class CachePolicy:
    ttl_seconds: float = settings.CALENDAR_CACHE_TTL_SECONDS

    def is_fresh(self, created_at: float, now: float) -> bool:
        return now - created_at < self.ttl_seconds


@dataclass
class _CacheEntry:
    events: List[CalendarEvent]
    created_at: float


class EventCache:
    """
    Aggregated event lists keyed by (user, range, inclusion flags).

    Entries are never evicted explicitly; a stale entry is simply ignored by
    get() and stays available to get_stale() until it is overwritten or
    cleared.
    """

    def __init__(
        self,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or CachePolicy()
        self._clock = clock
        self._entries: Dict[CacheKey, _CacheEntry] = {}

        with log_step("CACHE"):
            logger.debug(
                f"EventCache initialized. TTL: {self.policy.ttl_seconds}s."
            )

    @staticmethod
    def make_key(user_id: str, date_range: DateRange, flags: str) -> CacheKey:
        # minute resolution, so rolling "next N days" ranges share an entry
        start = date_range.start.replace(second=0, microsecond=0)
        end = date_range.end.replace(second=0, microsecond=0)
        return (str(user_id), start.isoformat(), end.isoformat(), flags)

    def get(self, key: CacheKey) -> Optional[List[CalendarEvent]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self.policy.is_fresh(entry.created_at, self._clock()):
            with log_step("CACHE"):
                logger.debug(f"Cache entry for user {key[0]} is stale.")
            return None
        return list(entry.events)

    def get_stale(self, key: CacheKey) -> Optional[List[CalendarEvent]]:
        entry = self._entries.get(key)
        return list(entry.events) if entry else None

    def put(self, key: CacheKey, events: List[CalendarEvent]):
        self._entries[key] = _CacheEntry(events=list(events), created_at=self._clock())
        with log_step("CACHE"):
            logger.debug(f"Cached {len(events)} events for user {key[0]}.")

    def clear(self, user_id: Optional[str] = None):
        with log_step("CACHE"):
            if user_id is None:
                count = len(self._entries)
                self._entries.clear()
            else:
                keys = [key for key in self._entries if key[0] == str(user_id)]
                for key in keys:
                    del self._entries[key]
                count = len(keys)
            logger.info(f"Cleared {count} cache entries.")

    def stats(self) -> dict:
        now = self._clock()
        fresh = sum(
            1
            for entry in self._entries.values()
            if self.policy.is_fresh(entry.created_at, now)
        )
        return {
            "size": len(self._entries),
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "ttl_seconds": self.policy.ttl_seconds,
        }

    def __len__(self) -> int:
        return len(self._entries)
