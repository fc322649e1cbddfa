from functools import cached_property

from pydantic import BaseModel, Field

from event_reminders.persistence.istore import IStore


class SqliteModel(BaseModel, frozen=True):
    path: str = ".local/event-reminders"
    schema_version: int = Field(default=1, ge=1)

    def full_path(self) -> str:
        """
        Returns the full path to the SQLite database file.

        Formatted as: `{path}-v{schema_version}.sqlite`.
        """
        return f"{self.path}-v{self.schema_version}.sqlite"

    @cached_property
    def instance(self) -> IStore:
        from event_reminders.helpers.config import CONFIG
        from event_reminders.persistence.sqlite import SqliteStore

        return SqliteStore(
            cache=CONFIG.cache.instance,
            cache_ttl_sec=CONFIG.cache.ttl_sec,
            config=self,
        )


class DatabaseModel(BaseModel):
    sqlite: SqliteModel = SqliteModel()  # Object is fully defined by default

    @cached_property
    def instance(self) -> IStore:
        return self.sqlite.instance
