import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TypeVar
from uuid import UUID, uuid4

from aiosqlite import (
    Connection,
    Error as SqliteError,
    IntegrityError as SqliteIntegrityError,
    connect as sqlite_connect,
)
from pydantic import ValidationError

from event_reminders.helpers.config_models.database import SqliteModel
from event_reminders.helpers.logging import logger
from event_reminders.models.error import (
    DuplicateReminderError,
    EventNotFoundError,
    PersistenceError,
    ReminderNotFoundError,
)
from event_reminders.models.event import EventGetModel, EventModel, EventSearchModel
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.models.reminder import ReminderModel
from event_reminders.persistence.icache import ICache
from event_reminders.persistence.istore import IStore

T = TypeVar("T", bound=EventModel | ReminderModel)


class SqliteStore(IStore):
    _config: SqliteModel
    _db_path: str
    _init_done: bool

    def __init__(self, cache: ICache, cache_ttl_sec: int, config: SqliteModel):
        super().__init__(cache=cache, cache_ttl_sec=cache_ttl_sec)
        self._config = config
        self._db_path = config.full_path()
        self._init_done = False
        logger.info("Using SQLite database at %s", self._db_path)

        # Create folder if does not exist
        db_folder = os.path.dirname(self._db_path)
        if db_folder:
            os.makedirs(name=db_folder, exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite database.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except PersistenceError:
            logger.exception("Error while checking SQLite readiness")
        return ReadinessEnum.FAIL

    async def event_get(
        self,
        event_id: UUID,
        owner_id: str,
    ) -> EventModel | None:
        logger.debug("Loading event %s", event_id)

        # Try cache
        cache_key = self._cache_key_event_id(event_id)
        cached = await self._cache.get(cache_key)
        event = None
        if cached:
            try:
                event = EventModel.model_validate_json(cached)
            except ValidationError:
                logger.debug("Parsing error", exc_info=True)

        # Try live
        if not event:
            async with self._use_db() as db:
                cursor = await db.execute(
                    "SELECT data FROM events WHERE id = ?",
                    (str(event_id),),
                )
                row = await cursor.fetchone()
            event = self._parse(EventModel, row[0]) if row else None

            # Update cache
            if event:
                await self._cache.set(
                    key=cache_key,
                    ttl_sec=self._cache_ttl_sec,
                    value=event.model_dump_json(),
                )

        # Ownership is checked after the cache, the key is shared by all callers
        if not event or event.owner_id != owner_id:
            return None
        return event

    async def event_search_one(
        self,
        owner_id: str,
        title: str,
        date: datetime,
    ) -> EventModel | None:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM events WHERE owner_id = ? AND title = ? AND date = ? LIMIT 1",
                (
                    owner_id,  # owner_id
                    title,  # title
                    _to_db_time(date),  # date
                ),
            )
            row = await cursor.fetchone()
        return self._parse(EventModel, row[0]) if row else None

    async def event_search_all(
        self,
        owner_id: str,
        count: int,
        has_reminder: bool | None = None,
    ) -> EventSearchModel:
        logger.debug(
            "Searching events for %s, count %s, has reminder %s",
            owner_id,
            count,
            has_reminder,
        )

        # Try cache
        cache_key = self._cache_key_owner_events(
            count=count,
            generation=await self._owner_generation(owner_id),
            has_reminder=has_reminder,
            owner_id=owner_id,
        )
        cached = await self._cache.get(cache_key)
        if cached:
            try:
                return EventSearchModel.model_validate_json(cached)
            except ValidationError:
                logger.debug("Parsing error", exc_info=True)

        # Try live, filter is applied in both queries so the total matches the page
        where_clause = "WHERE e.owner_id = ?"
        if has_reminder is True:
            where_clause += " AND r.id IS NOT NULL"
        elif has_reminder is False:
            where_clause += " AND r.id IS NULL"
        from_clause = "FROM events e LEFT JOIN reminders r ON r.event_id = e.id AND r.owner_id = ?"
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT e.data, r.data {from_clause} {where_clause} ORDER BY e.date ASC LIMIT ?",
                (
                    owner_id,  # r.owner_id
                    owner_id,  # e.owner_id
                    count,  # limit
                ),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                f"SELECT COUNT(*) {from_clause} {where_clause}",
                (
                    owner_id,  # r.owner_id
                    owner_id,  # e.owner_id
                ),
            )
            total_row = await cursor.fetchone()

        events: list[EventGetModel] = []
        for event_data, reminder_data in rows:
            event = self._parse(EventGetModel, event_data)
            if not event:
                continue
            if reminder_data:
                event.reminder = self._parse(ReminderModel, reminder_data)
            events.append(event)
        search = EventSearchModel(
            events=events,
            total=int(total_row[0]) if total_row else 0,
        )

        # Update cache
        await self._cache.set(
            key=cache_key,
            ttl_sec=self._cache_ttl_sec,
            value=search.model_dump_json(),
        )

        return search

    async def event_create(self, event: EventModel) -> EventModel:
        logger.debug("Creating event %s", event.event_id)
        async with self._use_db() as db:
            await db.execute(
                "INSERT INTO events (id, owner_id, title, date, data) VALUES (?, ?, ?, ?, ?)",
                (
                    str(event.event_id),  # id
                    event.owner_id,  # owner_id
                    event.title,  # title
                    _to_db_time(event.date),  # date
                    event.model_dump_json(),  # data
                ),
            )
            await db.commit()
        await self._invalidate(event.event_id, event.owner_id)
        return event

    async def event_update(self, event: EventModel) -> EventModel:
        logger.debug("Updating event %s", event.event_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "UPDATE events SET title = ?, date = ?, data = ? WHERE id = ?",
                (
                    event.title,  # title
                    _to_db_time(event.date),  # date
                    event.model_dump_json(),  # data
                    str(event.event_id),  # id
                ),
            )
            await db.commit()
            updated = cursor.rowcount
        await self._invalidate(event.event_id, event.owner_id)
        if not updated:
            raise EventNotFoundError()
        return event

    async def event_delete(self, event: EventModel) -> list[ReminderModel]:
        logger.debug("Deleting event %s", event.event_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE event_id = ?",
                (str(event.event_id),),
            )
            rows = await cursor.fetchall()
            # Reminders are deleted by the foreign key cascade
            await db.execute(
                "DELETE FROM events WHERE id = ?",
                (str(event.event_id),),
            )
            await db.commit()
        reminders = [
            reminder
            for row in rows
            if (reminder := self._parse(ReminderModel, row[0]))
        ]
        await self._invalidate(
            event.event_id,
            event.owner_id,
            *(reminder.owner_id for reminder in reminders),
        )
        return reminders

    async def reminder_get(
        self,
        reminder_id: UUID,
        owner_id: str,
    ) -> ReminderModel | None:
        logger.debug("Loading reminder %s", reminder_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE id = ? AND owner_id = ?",
                (
                    str(reminder_id),  # id
                    owner_id,  # owner_id
                ),
            )
            row = await cursor.fetchone()
        return self._parse(ReminderModel, row[0]) if row else None

    async def reminder_search_one(
        self,
        event_id: UUID,
        owner_id: str,
    ) -> ReminderModel | None:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE event_id = ? AND owner_id = ?",
                (
                    str(event_id),  # event_id
                    owner_id,  # owner_id
                ),
            )
            row = await cursor.fetchone()
        return self._parse(ReminderModel, row[0]) if row else None

    async def reminder_search_all(self, event_id: UUID) -> list[ReminderModel]:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE event_id = ? ORDER BY reminder_time ASC",
                (str(event_id),),
            )
            rows = await cursor.fetchall()
        return [
            reminder
            for row in rows
            if (reminder := self._parse(ReminderModel, row[0]))
        ]

    async def reminder_search_upcoming(
        self,
        after: datetime,
    ) -> list[tuple[ReminderModel, EventModel]]:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT r.data, e.data FROM reminders r JOIN events e ON e.id = r.event_id WHERE r.reminder_time > ? ORDER BY r.reminder_time ASC",
                (_to_db_time(after),),
            )
            rows = await cursor.fetchall()
        res: list[tuple[ReminderModel, EventModel]] = []
        for reminder_data, event_data in rows:
            reminder = self._parse(ReminderModel, reminder_data)
            event = self._parse(EventModel, event_data)
            if reminder and event:
                res.append((reminder, event))
        return res

    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        logger.debug("Creating reminder %s", reminder.reminder_id)
        try:
            async with self._use_db() as db:
                await db.execute(
                    "INSERT INTO reminders (id, event_id, owner_id, reminder_time, data) VALUES (?, ?, ?, ?, ?)",
                    (
                        str(reminder.reminder_id),  # id
                        str(reminder.event_id),  # event_id
                        reminder.owner_id,  # owner_id
                        _to_db_time(reminder.reminder_time),  # reminder_time
                        reminder.model_dump_json(),  # data
                    ),
                )
                await db.commit()
        except SqliteIntegrityError as e:
            # Unique index on (event_id, owner_id), or event deleted meanwhile
            if "UNIQUE" in str(e).upper():
                raise DuplicateReminderError() from e
            if "FOREIGN KEY" in str(e).upper():
                raise EventNotFoundError() from e
            raise PersistenceError() from e
        await self._invalidate(reminder.event_id, reminder.owner_id)
        return reminder

    async def reminder_update(self, reminder: ReminderModel) -> ReminderModel:
        logger.debug("Updating reminder %s", reminder.reminder_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "UPDATE reminders SET reminder_time = ?, data = ? WHERE id = ?",
                (
                    _to_db_time(reminder.reminder_time),  # reminder_time
                    reminder.model_dump_json(),  # data
                    str(reminder.reminder_id),  # id
                ),
            )
            await db.commit()
            updated = cursor.rowcount
        await self._invalidate(reminder.event_id, reminder.owner_id)
        if not updated:
            raise ReminderNotFoundError()
        return reminder

    async def reminder_delete(self, reminder: ReminderModel) -> None:
        logger.debug("Deleting reminder %s", reminder.reminder_id)
        async with self._use_db() as db:
            await db.execute(
                "DELETE FROM reminders WHERE id = ?",
                (str(reminder.reminder_id),),
            )
            await db.commit()
        await self._invalidate(reminder.event_id, reminder.owner_id)

    async def _owner_generation(self, owner_id: str) -> str:
        """
        Get the current listing generation of an owner, creating one if missing.
        """
        key = self._cache_key_owner_generation(owner_id)
        generation = await self._cache.get(key)
        if generation:
            return generation.decode()
        new_generation = uuid4().hex
        await self._cache.set(
            key=key,
            ttl_sec=self._cache_ttl_sec,
            value=new_generation,
        )
        return new_generation

    @staticmethod
    def _parse(model: type[T], data: str | bytes) -> T | None:
        try:
            return model.model_validate_json(data)
        except ValidationError:
            logger.debug("Parsing error", exc_info=True)
        return None

    async def _init_db(self, db: Connection) -> None:
        """
        Initialize the database.

        See: https://sqlite.org/wal.html
        """
        logger.info("First run, init database")
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create tables
        await db.execute(
            "CREATE TABLE IF NOT EXISTS events (id VARCHAR(36) PRIMARY KEY, owner_id TEXT NOT NULL, title TEXT NOT NULL, date TEXT NOT NULL, data TEXT NOT NULL)"
        )
        await db.execute(
            "CREATE TABLE IF NOT EXISTS reminders (id VARCHAR(36) PRIMARY KEY, event_id VARCHAR(36) NOT NULL REFERENCES events (id) ON DELETE CASCADE, owner_id TEXT NOT NULL, reminder_time TEXT NOT NULL, data TEXT NOT NULL, UNIQUE (event_id, owner_id))"
        )
        # Create indexes
        await db.execute(
            "CREATE INDEX IF NOT EXISTS events_owner_id_date ON events (owner_id, date)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS reminders_reminder_time ON reminders (reminder_time)"
        )
        # Write changes to disk
        await db.commit()

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection, None]:
        """
        Generate the SQLite client and close it after use.

        Driver errors are raised as `PersistenceError`, except integrity errors which are left to the caller.
        """
        try:
            async with sqlite_connect(
                database=self._db_path,
            ) as client:
                # Enforced per connection, required for the reminders cascade
                await client.execute("PRAGMA foreign_keys = ON")
                if not self._init_done:
                    await self._init_db(client)
                    self._init_done = True
                yield client
        except SqliteIntegrityError:
            raise
        except SqliteError as e:
            logger.exception("Error requesting SQLite")
            raise PersistenceError() from e


def _to_db_time(value: datetime) -> str:
    """
    Serialize an instant for comparisons in SQL.

    Fixed width ISO 8601 in UTC, so lexicographic order is chronological order.
    """
    return value.astimezone(UTC).isoformat(timespec="microseconds")
