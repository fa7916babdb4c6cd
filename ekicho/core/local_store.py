"""Persisted local key-value store for pre-sync cache data and per-user flags."""

import json

import structlog

from ekicho.core.config import settings
from ekicho.core.redis import RedisClientProtocol

logger = structlog.get_logger(__name__)

VISITED_STATION_IDS_KEY = "visitedStationIDs"
SELECTED_COMPANIES_KEY = "selectedCompanies"

_TRUE = "1"
_FALSE = "0"


def migration_flag_key(user_id: str) -> str:
    """Key of the per-user migration-completed flag."""
    return f"migrationCompleted_{user_id}"


def unmigrated_station_ids_key(user_id: str) -> str:
    """Key under which station ids that could not be migrated are kept."""
    return f"unmigratedStationIDs_{user_id}"


class LocalStore:
    """
    String-keyed storage of string lists and booleans.

    Lists are stored as JSON arrays and booleans as "1"/"0". Every key is
    namespaced with LOCAL_STORE_PREFIX so several apps can share one Redis.
    """

    def __init__(self, redis_client: RedisClientProtocol, prefix: str | None = None) -> None:
        """
        Initialize the local store.

        Args:
            redis_client: Redis client used for persistence
            prefix: Key namespace (default: settings.LOCAL_STORE_PREFIX)
        """
        self.redis_client = redis_client
        self.prefix = settings.LOCAL_STORE_PREFIX if prefix is None else prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get_string_list(self, key: str) -> list[str] | None:
        """
        Read a list of strings.

        Returns:
            The stored list, or None when the key is absent or not a string list
        """
        raw = await self.redis_client.get(self._key(key))
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("local_store_value_not_json", key=key)
            return None
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            logger.warning("local_store_value_not_string_list", key=key)
            return None
        return value

    async def set_string_list(self, key: str, values: list[str]) -> None:
        await self.redis_client.set(self._key(key), json.dumps(list(values)))

    async def get_bool(self, key: str) -> bool:
        """Read a boolean; absent keys read as False."""
        return await self.redis_client.get(self._key(key)) == _TRUE

    async def set_bool(self, key: str, value: bool) -> None:
        await self.redis_client.set(self._key(key), _TRUE if value else _FALSE)

    async def remove(self, key: str) -> None:
        await self.redis_client.delete(self._key(key))
