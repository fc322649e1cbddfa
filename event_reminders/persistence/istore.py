from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from event_reminders.helpers.monitoring import start_as_current_span
from event_reminders.models.event import EventModel, EventSearchModel
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.models.reminder import ReminderModel
from event_reminders.persistence.icache import ICache


class IStore(ABC):
    """
    Durable storage of events and reminders.

    Implementations own the cache: they populate it on reads and invalidate the event views of the impacted owners on every write. Failures are raised as `PersistenceError`.
    """

    _cache: ICache
    _cache_ttl_sec: int

    def __init__(self, cache: ICache, cache_ttl_sec: int):
        self._cache = cache
        self._cache_ttl_sec = cache_ttl_sec

    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_event_get")
    async def event_get(
        self,
        event_id: UUID,
        owner_id: str,
    ) -> EventModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_event_search_one")
    async def event_search_one(
        self,
        owner_id: str,
        title: str,
        date: datetime,
    ) -> EventModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_event_search_all")
    async def event_search_all(
        self,
        owner_id: str,
        count: int,
        has_reminder: bool | None = None,
    ) -> EventSearchModel:
        pass

    @abstractmethod
    @start_as_current_span("store_event_create")
    async def event_create(self, event: EventModel) -> EventModel:
        pass

    @abstractmethod
    @start_as_current_span("store_event_update")
    async def event_update(self, event: EventModel) -> EventModel:
        pass

    @abstractmethod
    @start_as_current_span("store_event_delete")
    async def event_delete(self, event: EventModel) -> list[ReminderModel]:
        """
        Delete an event and all its reminders.

        Returns the deleted reminders, whatever their owner.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_get")
    async def reminder_get(
        self,
        reminder_id: UUID,
        owner_id: str,
    ) -> ReminderModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_search_one")
    async def reminder_search_one(
        self,
        event_id: UUID,
        owner_id: str,
    ) -> ReminderModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_search_all")
    async def reminder_search_all(self, event_id: UUID) -> list[ReminderModel]:
        """
        List all reminders of an event, whatever their owner.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_search_upcoming")
    async def reminder_search_upcoming(
        self,
        after: datetime,
    ) -> list[tuple[ReminderModel, EventModel]]:
        """
        List reminders firing strictly after an instant, with their event.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_create")
    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        """
        Persist a new reminder.

        Raises `DuplicateReminderError` if the owner already has a reminder for the event.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_update")
    async def reminder_update(self, reminder: ReminderModel) -> ReminderModel:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_delete")
    async def reminder_delete(self, reminder: ReminderModel) -> None:
        pass

    async def _invalidate(self, event_id: UUID, *owner_ids: str) -> None:
        """
        Invalidate the cached views of an event and the listings of its owners.
        """
        await self._cache.delete(
            self._cache_key_event_id(event_id),
            *(self._cache_key_owner_generation(owner_id) for owner_id in owner_ids),
        )

    def _cache_key_event_id(self, event_id: UUID) -> str:
        return f"{self.__class__.__name__}-event_id-{event_id}"

    def _cache_key_owner_generation(self, owner_id: str) -> str:
        """
        Key of the listing generation of an owner.

        Listings are cached under a key containing the generation, dropping it invalidates all the listings of the owner at once.
        """
        return f"{self.__class__.__name__}-owner_generation-{owner_id}"

    def _cache_key_owner_events(
        self,
        owner_id: str,
        generation: str,
        count: int,
        has_reminder: bool | None,
    ) -> str:
        return f"{self.__class__.__name__}-owner_events-{owner_id}-{generation}-{count}-{has_reminder}"
