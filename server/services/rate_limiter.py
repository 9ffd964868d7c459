import json
import logging
import time
from dataclasses import dataclass
from typing import Callable

from core.errors import RateLimitExceeded
from core.logging_setup import log_step
from core.storage import KeyValueStore

logger = logging.getLogger(__name__)

LOG_STEP = "RATE-LIMIT"

KEY_PREFIX = "rate_limit_"


@dataclass(frozen=True)
class RateLimit:
    max_calls: int
    window_ms: int


RATE_LIMITS = {
    "fetch_events": RateLimit(max_calls=10, window_ms=60_000),
    "create_event": RateLimit(max_calls=5, window_ms=300_000),
    "edit_event": RateLimit(max_calls=5, window_ms=300_000),
    "delete_event": RateLimit(max_calls=3, window_ms=300_000),
    "google_signin": RateLimit(max_calls=10, window_ms=300_000),
}

DEFAULT_LIMIT = RateLimit(max_calls=10, window_ms=60_000)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Fixed-window counter per (user, action), persisted in the key-value store.

    Exceeding the window's budget rejects the call. Storage failures let the
    call through so an infrastructure fault never locks users out.
    """

    def __init__(
        self,
        store: KeyValueStore,
        limits: dict[str, RateLimit] | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.limits = RATE_LIMITS if limits is None else limits
        self.clock = clock

    def limit_for(self, action: str) -> RateLimit:
        return self.limits.get(action, DEFAULT_LIMIT)

    @staticmethod
    def key(user_id: str, action: str) -> str:
        return f"{KEY_PREFIX}{user_id}_{action}"

    async def check(self, user_id: str, action: str) -> bool:
        with log_step(LOG_STEP):
            key = self.key(user_id, action)
            try:
                raw = await self.store.get(key)
                now = self.clock()
                limit = self.limit_for(action)

                if raw is None:
                    await self._write(key, 1, now)
                    return True

                state = json.loads(raw)
                if now - state["timestamp"] > limit.window_ms:
                    await self._write(key, 1, now)
                    return True

                if state["count"] >= limit.max_calls:
                    logger.warning(
                        f"Rate limit exceeded for user {user_id}, action {action}."
                    )
                    return False

                await self._write(key, state["count"] + 1, state["timestamp"])
                return True
            except Exception as e:
                logger.error(f"Rate limit check error, allowing {action}: {e}")
                return True

    async def enforce(self, user_id: str, action: str):
        if not await self.check(user_id, action):
            raise RateLimitExceeded(action)

    async def clear(self, user_id: str, action: str):
        with log_step(LOG_STEP):
            await self.store.remove(self.key(user_id, action))
            logger.info(f"Cleared rate limit for user {user_id}, action {action}.")

    async def clear_all(self, user_id: str):
        with log_step(LOG_STEP):
            prefix = f"{KEY_PREFIX}{user_id}_"
            keys = [key for key in await self.store.keys() if key.startswith(prefix)]
            await self.store.multi_remove(keys)
            logger.info(f"Cleared {len(keys)} rate limits for user {user_id}.")

    async def _write(self, key: str, count: int, timestamp: int):
        await self.store.set(key, json.dumps({"count": count, "timestamp": timestamp}))
