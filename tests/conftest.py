import asyncio
import random
import string
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from event_reminders.helpers.config_models.cache import MemoryModel
from event_reminders.helpers.config_models.database import SqliteModel
from event_reminders.helpers.config_models.scheduler import SchedulerModel
from event_reminders.helpers.reminder_scheduler import ReminderScheduler
from event_reminders.models.event import EventModel
from event_reminders.models.job import JobModel
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.persistence.inotification import INotification
from event_reminders.persistence.memory import MemoryCache
from event_reminders.persistence.sqlite import SqliteStore


class NotificationMock(INotification):
    """
    Notification recording the sent jobs.

    Outcomes are consumed in order, then `default` is used. An exception outcome is raised.
    """

    default: bool
    latency_sec: float
    outcomes: list[bool | Exception]
    sent: list[JobModel]

    def __init__(
        self,
        default: bool = True,
        latency_sec: float = 0,
    ) -> None:
        self.default = default
        self.latency_sec = latency_sec
        self.outcomes = []
        self.sent = []

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(self, job: JobModel) -> bool:
        if self.latency_sec:
            await asyncio.sleep(self.latency_sec)
        self.sent.append(job)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.printable) for _ in range(100))
    return text


@pytest.fixture
def owner_id() -> str:
    return f"owner-{uuid4()}"


@pytest.fixture
def notification() -> NotificationMock:
    return NotificationMock()


@pytest.fixture
def scheduler_config() -> SchedulerModel:
    # Short durations, timers are awaited for real
    return SchedulerModel(
        autostart=False,
        close_timeout_sec=0.1,
        retention_sec=0.2,
        retry_backoff_sec=0.2,
        retry_delay_sec=0,
        scan_interval_sec=0.05,
    )


@pytest_asyncio.fixture
async def scheduler(
    notification: NotificationMock,
    scheduler_config: SchedulerModel,
) -> AsyncGenerator[ReminderScheduler, None]:
    scheduler = ReminderScheduler(
        config=scheduler_config,
        notification=notification,
    )
    yield scheduler
    await scheduler.close()


@pytest.fixture
def db(tmp_path) -> SqliteStore:
    return SqliteStore(
        cache=MemoryCache(MemoryModel()),
        cache_ttl_sec=60,
        config=SqliteModel(path=str(tmp_path / "event-reminders")),
    )


@pytest_asyncio.fixture
async def event(
    db: SqliteStore,
    owner_id: str,
    random_text: str,
) -> EventModel:
    return await db.event_create(
        EventModel(
            date=datetime.now(UTC) + timedelta(days=2),
            owner_id=owner_id,
            title=f"Event {random_text[:20]}",
        )
    )
