import hashlib
from collections import OrderedDict
from datetime import UTC, datetime, timedelta

from event_reminders.helpers.config_models.cache import MemoryModel
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.persistence.icache import ICache


class MemoryCache(ICache):
    """
    A simple in-memory cache.

    Use the least recently used (LRU) policy to remove the oldest used items when the cache is full. Entries also expire after their TTL.

    See: https://en.wikipedia.org/wiki/Cache_replacement_policies#Least_recently_used_(LRU)
    """

    _cache: OrderedDict[str, tuple[datetime, bytes | None]]
    _config: MemoryModel

    def __init__(self, config: MemoryModel):
        self._cache = OrderedDict()
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the memory cache.
        """
        return ReadinessEnum.OK  # Always ready, it's memory :)

    async def get(self, key: str) -> bytes | None:
        """
        Get a value from the cache.

        If the key does not exist or expired, return `None`.
        """
        sha_key = self._key_to_hash(key)
        entry = self._cache.get(sha_key, None)
        if not entry:
            return None

        # Check TTL, delete if expired
        expires_at, value = entry
        if expires_at < datetime.now(UTC):
            self._cache.pop(sha_key, None)
            return None

        # Mark as most recently used
        self._cache.move_to_end(sha_key)
        return value

    async def set(
        self,
        key: str,
        ttl_sec: int,
        value: str | bytes | None,
    ) -> bool:
        """
        Set a value in the cache.
        """
        sha_key = self._key_to_hash(key)

        # Replace in place, or drop the least recently used if full
        if sha_key in self._cache:
            self._cache.pop(sha_key)
        elif len(self._cache) >= self._config.max_size:
            self._cache.popitem(last=False)

        self._cache[sha_key] = (
            datetime.now(UTC) + timedelta(seconds=ttl_sec),
            value.encode() if isinstance(value, str) else value,
        )
        return True

    async def delete(self, *keys: str) -> bool:
        """
        Delete values from the cache, missing keys are ignored.
        """
        for key in keys:
            self._cache.pop(self._key_to_hash(key), None)
        return True

    @staticmethod
    def _key_to_hash(key: str) -> str:
        """
        Transform the key into a hash.

        SHA-256 lower the collision probability. Plus, it reduce the key size, which is useful for memory usage.
        """
        return hashlib.sha256(key.encode(), usedforsecurity=False).hexdigest()
