import abc
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.logging_setup import log_step
from models.storage import KeyValueEntry

logger = logging.getLogger(__name__)

LOG_STEP = "STORAGE"


class KeyValueStore(abc.ABC):
    """
    Durable string key-value storage used for cached events, rate-limit
    counters and Google auth state.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abc.abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    async def remove(self, key: str) -> None: ...

    @abc.abstractmethod
    async def keys(self) -> list[str]: ...

    async def multi_remove(self, keys: list[str]) -> None:
        for key in keys:
            await self.remove(key)


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class SqlKeyValueStore(KeyValueStore):
    """Stores entries in the kv_entries table through the async ORM session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(KeyValueEntry.value).where(KeyValueEntry.key == key)
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
            await session.commit()

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()

    async def multi_remove(self, keys: list[str]) -> None:
        if not keys:
            return
        async with self._session_factory() as session:
            await session.execute(
                delete(KeyValueEntry).where(KeyValueEntry.key.in_(keys))
            )
            await session.commit()
        with log_step(LOG_STEP):
            logger.debug(f"Removed {len(keys)} storage entries.")

    async def keys(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(KeyValueEntry.key))
            return list(result.scalars().all())
