from datetime import UTC, datetime
from uuid import UUID

from event_reminders.helpers.logging import logger
from event_reminders.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from event_reminders.helpers.reminder_scheduler import ReminderScheduler
from event_reminders.helpers.reminder_utils import (
    check_reminder_offset,
    format_relative_time,
    is_valid_reminder_offset,
)
from event_reminders.models.error import (
    DuplicateReminderError,
    EventNotFoundError,
    NotAuthenticatedError,
    ReminderNotFoundError,
)
from event_reminders.models.event import EventModel
from event_reminders.models.job import JobModel
from event_reminders.models.reminder import ReminderModel
from event_reminders.persistence.istore import IStore


@start_as_current_span("on_reminder_create")
async def on_reminder_create(
    db: IStore,
    event_id: UUID,
    owner_id: str | None,
    reminder_time: datetime,
    scheduler: ReminderScheduler,
) -> ReminderModel:
    """
    Create the reminder of an owner for one of their events, and schedule its delivery.

    Checks are made in order: identity, event ownership, time window, then uniqueness. The job is scheduled only once the store accepted the reminder.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.EVENT_ID.attribute(str(event_id))

    event = await db.event_get(event_id=event_id, owner_id=owner_id)
    if not event:
        raise EventNotFoundError()

    offset = check_reminder_offset(event_date=event.date, reminder_time=reminder_time)

    if await db.reminder_search_one(event_id=event_id, owner_id=owner_id):
        raise DuplicateReminderError()

    # Store also rejects concurrent duplicates, with its unique index
    reminder = await db.reminder_create(
        ReminderModel(
            event_id=event_id,
            owner_id=owner_id,
            reminder_time=reminder_time,
        )
    )
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.reminder_id))

    await scheduler.schedule_reminder(JobModel.from_reminder(reminder, event))
    logger.info(
        'Reminder created for "%s", %s', event.title, format_relative_time(offset)
    )
    return reminder


@start_as_current_span("on_reminder_update")
async def on_reminder_update(
    db: IStore,
    owner_id: str | None,
    reminder_id: UUID,
    reminder_time: datetime,
    scheduler: ReminderScheduler,
) -> ReminderModel:
    """
    Move a reminder to a new time, and reschedule its delivery.

    If the job is not in the scheduler anymore (already sent and removed, or lost with a restart), a new one is scheduled.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))

    reminder = await db.reminder_get(reminder_id=reminder_id, owner_id=owner_id)
    if not reminder:
        raise ReminderNotFoundError()
    SpanAttributeEnum.EVENT_ID.attribute(str(reminder.event_id))

    event = await db.event_get(event_id=reminder.event_id, owner_id=owner_id)
    if not event:
        raise EventNotFoundError()

    offset = check_reminder_offset(event_date=event.date, reminder_time=reminder_time)

    reminder.reminder_time = reminder_time
    reminder.updated_at = datetime.now(UTC)
    reminder = await db.reminder_update(reminder)

    if not await scheduler.update_reminder(
        event_date=event.date,
        event_title=event.title,
        job_id=reminder.reminder_id,
        reminder_time=reminder.reminder_time,
    ):
        await scheduler.schedule_reminder(JobModel.from_reminder(reminder, event))
    logger.info(
        'Reminder updated for "%s", %s', event.title, format_relative_time(offset)
    )
    return reminder


@start_as_current_span("on_reminder_delete")
async def on_reminder_delete(
    db: IStore,
    owner_id: str | None,
    reminder_id: UUID,
    scheduler: ReminderScheduler,
) -> None:
    """
    Delete a reminder and cancel its delivery.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))

    reminder = await db.reminder_get(reminder_id=reminder_id, owner_id=owner_id)
    if not reminder:
        raise ReminderNotFoundError()

    await db.reminder_delete(reminder)
    await scheduler.cancel_reminder(reminder.reminder_id)
    logger.info("Reminder %s deleted", reminder.reminder_id)


@start_as_current_span("on_event_date_changed")
async def on_event_date_changed(
    db: IStore,
    event: EventModel,
    new_date: datetime,
    prior_date: datetime,
    reminders: list[ReminderModel],
    scheduler: ReminderScheduler,
) -> tuple[list[UUID], list[UUID]]:
    """
    Follow an event date change in its reminders, whatever their owner.

    Each reminder keeps its offset to the event. If the moved reminder is out of the window, it is deleted instead. A moved reminder already due is kept, the next scan sends it.

    Reminders deleted in the meantime are skipped, their jobs cancelled.

    Returns the identifiers of the updated reminders, then of the deleted ones.
    """
    SpanAttributeEnum.EVENT_ID.attribute(str(event.event_id))
    now = datetime.now(UTC)
    updated: list[UUID] = []
    deleted: list[UUID] = []

    for reminder in reminders:
        offset = prior_date - reminder.reminder_time
        new_time = new_date - offset

        if not is_valid_reminder_offset(event_date=new_date, reminder_time=new_time):
            await db.reminder_delete(reminder)
            await scheduler.cancel_reminder(reminder.reminder_id)
            deleted.append(reminder.reminder_id)
            continue

        reminder.reminder_time = new_time
        reminder.updated_at = now
        try:
            await db.reminder_update(reminder)
        except ReminderNotFoundError:
            logger.info("Reminder %s deleted concurrently, skipped", reminder.reminder_id)
            await scheduler.cancel_reminder(reminder.reminder_id)
            continue

        if not await scheduler.update_reminder(
            event_date=new_date,
            event_title=event.title,
            job_id=reminder.reminder_id,
            reminder_time=new_time,
        ):
            await scheduler.schedule_reminder(JobModel.from_reminder(reminder, event))
        updated.append(reminder.reminder_id)

    logger.info(
        "Event date changed, %s reminder(s) moved, %s deleted",
        len(updated),
        len(deleted),
    )
    return updated, deleted


@start_as_current_span("on_startup_restore")
async def on_startup_restore(
    db: IStore,
    scheduler: ReminderScheduler,
) -> int:
    """
    Schedule again the reminders still to come, jobs do not survive a restart.

    Reminders already in the past are not sent.

    Returns the number of jobs scheduled.
    """
    upcoming = await db.reminder_search_upcoming(after=datetime.now(UTC))
    for reminder, event in upcoming:
        await scheduler.schedule_reminder(JobModel.from_reminder(reminder, event))
    logger.info("Restored %s reminder(s)", len(upcoming))
    return len(upcoming)
