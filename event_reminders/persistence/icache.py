from abc import ABC, abstractmethod

from event_reminders.helpers.monitoring import start_as_current_span
from event_reminders.models.readiness import ReadinessEnum


class ICache(ABC):
    """
    Key-value cache with per-key expiration.

    Used by the store to keep event views close, a miss always falls back to the store.
    """

    @abstractmethod
    @start_as_current_span("cache_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("cache_get")
    async def get(self, key: str) -> bytes | None:
        pass

    @abstractmethod
    @start_as_current_span("cache_set")
    async def set(
        self,
        key: str,
        ttl_sec: int,
        value: str | bytes | None,
    ) -> bool:
        pass

    @abstractmethod
    @start_as_current_span("cache_delete")
    async def delete(self, *keys: str) -> bool:
        pass
