from datetime import UTC, datetime, timedelta

import pytest
from pytest_assume.plugin import assume

from event_reminders.helpers.events import (
    on_event_create,
    on_event_delete,
    on_event_update,
)
from event_reminders.helpers.reminder_scheduler import ReminderScheduler
from event_reminders.helpers.reminders import on_event_date_changed, on_reminder_create
from event_reminders.models.error import DuplicateEventError, EventNotFoundError
from event_reminders.models.event import EventInitiateModel, EventModel
from event_reminders.models.job import JobModel, StatusEnum as JobStatusEnum
from event_reminders.models.reminder import ReminderModel
from event_reminders.persistence.sqlite import SqliteStore
from tests.conftest import NotificationMock


def _initiate(event: EventModel, **kwargs) -> EventInitiateModel:
    return EventInitiateModel(
        **{
            "date": event.date,
            "description": event.description,
            "location": event.location,
            "status": event.status,
            "title": event.title,
            **kwargs,
        }
    )


@pytest.mark.asyncio(loop_scope="session")
async def test_offset_preserved(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test a reminder 2 hours before its event is still 2 hours before after the event moves.

    Steps:
    1. Create a reminder 2 hours before the event
    2. Move the event 1 day later
    3. Check the reminder and its job moved by 1 day
    """
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        reminder_time=event.date - timedelta(hours=2),
        scheduler=scheduler,
    )

    new_date = event.date + timedelta(days=1)
    updated = await on_event_update(
        db=db,
        event_id=event.event_id,
        initiate=_initiate(event, date=new_date),
        owner_id=event.owner_id,
        scheduler=scheduler,
    )
    assume(updated.date == new_date)

    stored = await db.reminder_get(
        owner_id=event.owner_id,
        reminder_id=reminder.reminder_id,
    )
    assert stored
    assume(stored.reminder_time == new_date - timedelta(hours=2))
    job = scheduler.get_job(reminder.reminder_id)
    assert job
    assume(job.reminder_time == new_date - timedelta(hours=2))
    assume(job.event_date == new_date)


@pytest.mark.asyncio(loop_scope="session")
async def test_near_max_offset_kept_when_event_moves_earlier(
    db: SqliteStore,
    owner_id: str,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test a reminder 7 days before its event keeps its offset when the event moves earlier.

    Its new time is in the past, it stays pending and is due right away.
    """
    now = datetime.now(UTC)
    event = await on_event_create(
        db=db,
        initiate=EventInitiateModel(
            date=now + timedelta(days=7, minutes=10),
            title="Conference",
        ),
        owner_id=owner_id,
    )
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=owner_id,
        reminder_time=event.date - timedelta(days=7),
        scheduler=scheduler,
    )

    new_date = now + timedelta(days=6, hours=12)
    await on_event_update(
        db=db,
        event_id=event.event_id,
        initiate=_initiate(event, date=new_date),
        owner_id=owner_id,
        scheduler=scheduler,
    )

    stored = await db.reminder_get(
        owner_id=owner_id,
        reminder_id=reminder.reminder_id,
    )
    assert stored
    assume(stored.reminder_time == new_date - timedelta(days=7))
    assume(stored.reminder_time < datetime.now(UTC))
    job = scheduler.get_job(reminder.reminder_id)
    assert job
    assume(job.status == JobStatusEnum.PENDING)
    assume(job.reminder_time == stored.reminder_time)


@pytest.mark.asyncio(loop_scope="session")
async def test_moved_reminder_already_due_is_sent(
    db: SqliteStore,
    notification: NotificationMock,
    owner_id: str,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test a reminder moved behind the current time, but inside the window, is kept and sent on the next scan.

    Steps:
    1. Create an event in 3 hours, with a reminder 2 hours before
    2. Move the event in 1 hour, the reminder time is now 1 hour ago
    3. Check the reminder is kept, not deleted
    4. Scan, check it is sent
    """
    now = datetime.now(UTC)
    event = await db.event_create(
        EventModel(
            date=now + timedelta(hours=3),
            owner_id=owner_id,
            title="Standup",
        )
    )
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=owner_id,
        reminder_time=event.date - timedelta(hours=2),
        scheduler=scheduler,
    )
    reminders = await db.reminder_search_all(event.event_id)

    new_date = now + timedelta(hours=1)
    updated, deleted = await on_event_date_changed(
        db=db,
        event=event,
        new_date=new_date,
        prior_date=event.date,
        reminders=reminders,
        scheduler=scheduler,
    )
    assume(updated == [reminder.reminder_id])
    assume(deleted == [])

    stored = await db.reminder_get(
        owner_id=owner_id,
        reminder_id=reminder.reminder_id,
    )
    assert stored
    assume(stored.reminder_time == new_date - timedelta(hours=2))

    assume(await scheduler.process_due() == 1)
    assume([job.job_id for job in notification.sent] == [reminder.reminder_id])
    sent = scheduler.get_job(reminder.reminder_id)
    assert sent
    assume(sent.status == JobStatusEnum.SENT)


@pytest.mark.asyncio(loop_scope="session")
async def test_date_changed_report(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test the propagation reports which reminders moved and which were deleted.

    A reminder stored out of the window can't follow the event, it is deleted.
    """
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        reminder_time=event.date - timedelta(hours=2),
        scheduler=scheduler,
    )
    too_late = await db.reminder_create(
        ReminderModel(
            event_id=event.event_id,
            owner_id=f"{event.owner_id}-other",
            reminder_time=event.date - timedelta(minutes=10),
        )
    )
    reminders = await db.reminder_search_all(event.event_id)

    updated, deleted = await on_event_date_changed(
        db=db,
        event=event,
        new_date=event.date + timedelta(hours=5),
        prior_date=event.date,
        reminders=reminders,
        scheduler=scheduler,
    )
    assume(updated == [reminder.reminder_id])
    assume(deleted == [too_late.reminder_id])
    assume(
        [
            remaining.reminder_id
            for remaining in await db.reminder_search_all(event.event_id)
        ]
        == [reminder.reminder_id]
    )


@pytest.mark.asyncio(loop_scope="session")
async def test_reminder_deleted_during_propagation(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test a reminder deleted after the listing is skipped, and the others still follow the event.

    Steps:
    1. Create two reminders, list them
    2. Delete the first one
    3. Move the event
    4. Check the second one moved, with its job
    """
    first = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        reminder_time=event.date - timedelta(hours=3),
        scheduler=scheduler,
    )
    second = await db.reminder_create(
        ReminderModel(
            event_id=event.event_id,
            owner_id=f"{event.owner_id}-other",
            reminder_time=event.date - timedelta(hours=2),
        )
    )
    await scheduler.schedule_reminder(JobModel.from_reminder(second, event))
    # Earliest first, the deleted one is processed before the other
    reminders = await db.reminder_search_all(event.event_id)
    await db.reminder_delete(first)

    new_date = event.date + timedelta(days=1)
    updated, deleted = await on_event_date_changed(
        db=db,
        event=event,
        new_date=new_date,
        prior_date=event.date,
        reminders=reminders,
        scheduler=scheduler,
    )
    assume(updated == [second.reminder_id])
    assume(deleted == [])
    assume(not scheduler.get_job(first.reminder_id))

    stored = await db.reminder_get(
        owner_id=second.owner_id,
        reminder_id=second.reminder_id,
    )
    assert stored
    assume(stored.reminder_time == new_date - timedelta(hours=2))
    job = scheduler.get_job(second.reminder_id)
    assert job
    assume(job.reminder_time == new_date - timedelta(hours=2))


@pytest.mark.asyncio(loop_scope="session")
async def test_title_refreshed_in_job(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        reminder_time=event.date - timedelta(hours=2),
        scheduler=scheduler,
    )

    await on_event_update(
        db=db,
        event_id=event.event_id,
        initiate=_initiate(event, title="Renamed"),
        owner_id=event.owner_id,
        scheduler=scheduler,
    )

    job = scheduler.get_job(reminder.reminder_id)
    assert job
    assume(job.event_title == "Renamed")
    assume(job.reminder_time == reminder.reminder_time)


@pytest.mark.asyncio(loop_scope="session")
async def test_duplicate_event(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    """
    Test an event with the same title and date is rejected, updating an event with its own values is not.
    """
    with pytest.raises(DuplicateEventError):
        await on_event_create(
            db=db,
            initiate=_initiate(event),
            owner_id=event.owner_id,
        )

    # Same owner, other date
    other = await on_event_create(
        db=db,
        initiate=_initiate(event, date=event.date + timedelta(days=1)),
        owner_id=event.owner_id,
    )

    # Updating itself is fine
    await on_event_update(
        db=db,
        event_id=event.event_id,
        initiate=_initiate(event, description="Same title and date"),
        owner_id=event.owner_id,
        scheduler=scheduler,
    )

    # Moving onto another event is not
    with pytest.raises(DuplicateEventError):
        await on_event_update(
            db=db,
            event_id=other.event_id,
            initiate=_initiate(event),
            owner_id=event.owner_id,
            scheduler=scheduler,
        )


@pytest.mark.asyncio(loop_scope="session")
async def test_event_delete_cancels_jobs(
    db: SqliteStore,
    event: EventModel,
    scheduler: ReminderScheduler,
) -> None:
    reminder = await on_reminder_create(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        reminder_time=event.date - timedelta(hours=2),
        scheduler=scheduler,
    )

    with pytest.raises(EventNotFoundError):
        await on_event_delete(
            db=db,
            event_id=event.event_id,
            owner_id="someone-else",
            scheduler=scheduler,
        )

    await on_event_delete(
        db=db,
        event_id=event.event_id,
        owner_id=event.owner_id,
        scheduler=scheduler,
    )

    assume(not await db.event_get(event_id=event.event_id, owner_id=event.owner_id))
    assume(
        not await db.reminder_get(
            owner_id=event.owner_id,
            reminder_id=reminder.reminder_id,
        )
    )
    assume(not scheduler.get_job(reminder.reminder_id))
