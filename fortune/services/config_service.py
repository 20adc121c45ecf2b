"""
Runtime configuration stored in the system_config table.

Values are cached in-process per instance with a TTL. The service is built
by the composition root; nothing else keeps a copy of the cache.
"""

import time
from collections.abc import Callable
from typing import Any, TypeVar

from psycopg.types.json import Jsonb
from pydantic import TypeAdapter, ValidationError

from fortune.db.pool import DatabasePoolManager
from fortune.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ConfigService:
    def __init__(
        self,
        db: DatabasePoolManager,
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: dict[str, tuple[Any, float]] = {}

    async def get(self, key: str, default: T, value_type: type[T] | None = None) -> T:
        """
        Cached lookup. Falls back to `default` when the key is missing,
        the query fails, or the stored value does not validate as value_type.
        """
        cached = self._cache.get(key)
        if cached and cached[1] > self.clock():
            return cached[0]

        try:
            row = await self.db.fetch_one("SELECT value FROM system_config WHERE key = %s", (key,))
        except Exception as e:
            logger.warning("Config lookup failed, using default", key=key, error=str(e))
            return default

        if row is None:
            logger.debug("Config not found, using default", key=key)
            return default

        value = row["value"]
        if value_type is not None:
            try:
                value = TypeAdapter(value_type).validate_python(value)
            except ValidationError as e:
                logger.warning("Config validation failed, using default", key=key, error=str(e))
                return default

        self._cache[key] = (value, self.clock() + self.ttl_seconds)
        return value

    async def set(self, key: str, value: Any) -> bool:
        try:
            await self.db.execute(
                """
                INSERT INTO system_config (key, value, updated_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                """,
                (key, Jsonb(value)),
            )
        except Exception as e:
            logger.error("Failed to set config", key=key, error=str(e))
            return False

        self._cache.pop(key, None)
        logger.info("Config updated", key=key)
        return True

    def clear(self) -> None:
        self._cache.clear()
        logger.info("Config cache cleared")

    async def is_maintenance_mode(self) -> bool:
        return await self.get("maintenance_mode", False, bool)

    async def get_daily_chat_limit(self) -> int:
        return await self.get("daily_chat_limit", 50, int)
