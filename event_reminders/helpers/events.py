from uuid import UUID

from event_reminders.helpers.logging import logger
from event_reminders.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from event_reminders.helpers.reminder_scheduler import ReminderScheduler
from event_reminders.helpers.reminders import on_event_date_changed
from event_reminders.models.error import (
    DuplicateEventError,
    EventNotFoundError,
    NotAuthenticatedError,
)
from event_reminders.models.event import (
    EventGetModel,
    EventInitiateModel,
    EventModel,
    EventSearchModel,
)
from event_reminders.persistence.istore import IStore


@start_as_current_span("on_event_create")
async def on_event_create(
    db: IStore,
    initiate: EventInitiateModel,
    owner_id: str | None,
) -> EventModel:
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)

    if await db.event_search_one(
        date=initiate.date,
        owner_id=owner_id,
        title=initiate.title,
    ):
        raise DuplicateEventError()

    event = EventModel(owner_id=owner_id, **initiate.model_dump())
    SpanAttributeEnum.EVENT_ID.attribute(str(event.event_id))
    event = await db.event_create(event)
    logger.info('Event "%s" created', event.title)
    return event


@start_as_current_span("on_event_update")
async def on_event_update(
    db: IStore,
    event_id: UUID,
    initiate: EventInitiateModel,
    owner_id: str | None,
    scheduler: ReminderScheduler,
) -> EventModel:
    """
    Update an event, and follow the change in its reminders.

    A date change moves or deletes the reminders, a title change is reflected in the scheduled jobs.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.EVENT_ID.attribute(str(event_id))

    event = await db.event_get(event_id=event_id, owner_id=owner_id)
    if not event:
        raise EventNotFoundError()

    duplicate = await db.event_search_one(
        date=initiate.date,
        owner_id=owner_id,
        title=initiate.title,
    )
    if duplicate and duplicate.event_id != event.event_id:
        raise DuplicateEventError()

    prior_date = event.date
    prior_title = event.title
    event.apply(initiate)
    event = await db.event_update(event)
    logger.info('Event "%s" updated', event.title)

    if event.date != prior_date:
        await on_event_date_changed(
            db=db,
            event=event,
            new_date=event.date,
            prior_date=prior_date,
            reminders=await db.reminder_search_all(event.event_id),
            scheduler=scheduler,
        )
    elif event.title != prior_title:
        await scheduler.rename_event(
            event_id=event.event_id,
            event_title=event.title,
        )

    return event


@start_as_current_span("on_event_delete")
async def on_event_delete(
    db: IStore,
    event_id: UUID,
    owner_id: str | None,
    scheduler: ReminderScheduler,
) -> None:
    """
    Delete an event with all its reminders, and cancel their delivery.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.EVENT_ID.attribute(str(event_id))

    event = await db.event_get(event_id=event_id, owner_id=owner_id)
    if not event:
        raise EventNotFoundError()

    reminders = await db.event_delete(event)
    for reminder in reminders:
        await scheduler.cancel_reminder(reminder.reminder_id)
    logger.info(
        'Event "%s" deleted with %s reminder(s)', event.title, len(reminders)
    )


@start_as_current_span("on_event_get")
async def on_event_get(
    db: IStore,
    event_id: UUID,
    owner_id: str | None,
) -> EventGetModel:
    """
    Get an event of the owner, with the owner's reminder if any.
    """
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)
    SpanAttributeEnum.EVENT_ID.attribute(str(event_id))

    event = await db.event_get(event_id=event_id, owner_id=owner_id)
    if not event:
        raise EventNotFoundError()
    return EventGetModel(
        **event.model_dump(),
        reminder=await db.reminder_search_one(event_id=event_id, owner_id=owner_id),
    )


@start_as_current_span("on_event_search")
async def on_event_search(
    count: int,
    db: IStore,
    has_reminder: bool | None,
    owner_id: str | None,
) -> EventSearchModel:
    if not owner_id:
        raise NotAuthenticatedError()
    SpanAttributeEnum.OWNER_ID.attribute(owner_id)

    return await db.event_search_all(
        count=count,
        has_reminder=has_reminder,
        owner_id=owner_id,
    )
