import asyncio
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated
from uuid import UUID

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError, ValidationException
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from event_reminders.helpers.config import CONFIG
from event_reminders.helpers.events import (
    on_event_create,
    on_event_delete,
    on_event_get,
    on_event_search,
    on_event_update,
)
from event_reminders.helpers.logging import logger
from event_reminders.helpers.monitoring import start_as_current_span
from event_reminders.helpers.reminders import (
    on_reminder_create,
    on_reminder_delete,
    on_reminder_update,
    on_startup_restore,
)
from event_reminders.models.error import (
    ErrorInnerModel,
    ErrorModel,
    InvalidEventError,
    ReminderError,
)
from event_reminders.models.event import (
    EventGetModel,
    EventInitiateModel,
    EventModel,
    EventSearchModel,
)
from event_reminders.models.job import SchedulerStatusModel
from event_reminders.models.readiness import ReadinessEnum, ReadinessModel
from event_reminders.models.reminder import (
    ReminderInitiateModel,
    ReminderModel,
    ReminderUpdateModel,
)

# First log
logger.info(
    "event-reminders v%s",
    CONFIG.version,
)

# Persistences
_cache = CONFIG.cache.instance
_db = CONFIG.database.instance
_notification = CONFIG.notification.instance
_scheduler = CONFIG.scheduler.instance

# Identity, set by the upstream gateway
OwnerId = Annotated[str | None, Header(alias="x-owner-id")]


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    # Jobs are in memory only, schedule again the upcoming reminders
    await on_startup_restore(db=_db, scheduler=_scheduler)
    if CONFIG.scheduler.autostart:
        _scheduler.start()

    try:
        yield

    # Stop scan and timers
    finally:
        await _scheduler.close()


# FastAPI
api = FastAPI(
    contact={
        "url": "https://github.com/event-reminders/event-reminders",
    },
    description="Create reminders for your events, and get notified before they start. Reminders follow their event when it moves.",
    license_info={
        "name": "Apache-2.0",
        "url": "https://github.com/event-reminders/event-reminders/blob/main/LICENSE",
    },
    lifespan=lifespan,
    title="event-reminders",
    version=CONFIG.version,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 200 OK if the service is technically running.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to serve requests.

    No parameters are expected. Services tested are: cache, store, notification, scheduler.

    Returns a 200 OK if the service is ready to serve requests. If the service is not ready, it should return a 503 Service Unavailable.
    """
    # Check all components in parallel
    (
        cache_check,
        notification_check,
        scheduler_check,
        store_check,
    ) = await asyncio.gather(
        _cache.readiness(),
        _notification.readiness(),
        _scheduler.readiness(),
        _db.readiness(),
    )
    readiness = ReadinessModel.from_checks(
        cache=cache_check,
        notification=notification_check,
        scheduler=scheduler_check,
        store=store_check,
    )
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=(
            HTTPStatus.OK
            if readiness.status == ReadinessEnum.OK
            else HTTPStatus.SERVICE_UNAVAILABLE
        ),
    )


@api.get("/event")
@start_as_current_span("event_list_get")
async def event_list_get(
    x_owner_id: OwnerId = None,
    count: Annotated[int, Query(ge=1, le=100)] = 20,
    has_reminder: bool | None = None,
) -> EventSearchModel:
    """
    REST API to list the events of the caller, earliest first.

    Optional URL parameters:
    - count: Maximum number of events returned
    - has_reminder: Only events with (or without) a reminder of the caller

    Returns the events and the total count matching the filter, in JSON format.
    """
    return await on_event_search(
        count=count,
        db=_db,
        has_reminder=has_reminder,
        owner_id=x_owner_id,
    )


@api.post(
    "/event",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("event_post")
async def event_post(
    request: Request,
    x_owner_id: OwnerId = None,
) -> EventModel:
    """
    REST API to create an event.

    Required body parameters is a JSON object `EventInitiateModel`.

    Returns the event object `EventModel`, in JSON format.
    """
    return await on_event_create(
        db=_db,
        initiate=await _event_initiate(request),
        owner_id=x_owner_id,
    )


@api.get("/event/{event_id}")
@start_as_current_span("event_get")
async def event_get(
    event_id: UUID,
    x_owner_id: OwnerId = None,
) -> EventGetModel:
    """
    REST API to get a single event, with the caller's reminder.

    Returns the event object `EventGetModel`, in JSON format.
    """
    return await on_event_get(
        db=_db,
        event_id=event_id,
        owner_id=x_owner_id,
    )


@api.put("/event/{event_id}")
@start_as_current_span("event_put")
async def event_put(
    event_id: UUID,
    request: Request,
    x_owner_id: OwnerId = None,
) -> EventModel:
    """
    REST API to update an event.

    Required body parameters is a JSON object `EventInitiateModel`. If the date changes, reminders are moved with the event, or deleted if they can't follow.

    Returns the event object `EventModel`, in JSON format.
    """
    return await on_event_update(
        db=_db,
        event_id=event_id,
        initiate=await _event_initiate(request),
        owner_id=x_owner_id,
        scheduler=_scheduler,
    )


@api.delete(
    "/event/{event_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("event_delete")
async def event_delete(
    event_id: UUID,
    x_owner_id: OwnerId = None,
) -> None:
    """
    REST API to delete an event, with all its reminders.
    """
    await on_event_delete(
        db=_db,
        event_id=event_id,
        owner_id=x_owner_id,
        scheduler=_scheduler,
    )


@api.post(
    "/reminder",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("reminder_post")
async def reminder_post(
    initiate: ReminderInitiateModel,
    x_owner_id: OwnerId = None,
) -> ReminderModel:
    """
    REST API to create a reminder for an event.

    Required body parameters is a JSON object `ReminderInitiateModel`. The reminder time must be between 15 minutes and 7 days before the event.

    Returns the reminder object `ReminderModel`, in JSON format.
    """
    return await on_reminder_create(
        db=_db,
        event_id=initiate.event_id,
        owner_id=x_owner_id,
        reminder_time=initiate.reminder_time,
        scheduler=_scheduler,
    )


@api.get("/reminder/status")
@start_as_current_span("reminder_status_get")
async def reminder_status_get() -> SchedulerStatusModel:
    """
    REST API to get the state of the reminder scheduler.

    Returns the job counts per status and the next reminder time, in JSON format.
    """
    return _scheduler.get_status()


@api.put("/reminder/{reminder_id}")
@start_as_current_span("reminder_put")
async def reminder_put(
    reminder_id: UUID,
    update: ReminderUpdateModel,
    x_owner_id: OwnerId = None,
) -> ReminderModel:
    """
    REST API to move a reminder to a new time.

    Required body parameters is a JSON object `ReminderUpdateModel`.

    Returns the reminder object `ReminderModel`, in JSON format.
    """
    return await on_reminder_update(
        db=_db,
        owner_id=x_owner_id,
        reminder_id=reminder_id,
        reminder_time=update.reminder_time,
        scheduler=_scheduler,
    )


@api.delete(
    "/reminder/{reminder_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("reminder_delete")
async def reminder_delete(
    reminder_id: UUID,
    x_owner_id: OwnerId = None,
) -> None:
    """
    REST API to delete a reminder.
    """
    await on_reminder_delete(
        db=_db,
        owner_id=x_owner_id,
        reminder_id=reminder_id,
        scheduler=_scheduler,
    )


@api.exception_handler(ReminderError)
async def reminder_exception_handler(
    request: Request,  # noqa: ARG001
    exc: ReminderError,
) -> JSONResponse:
    """
    Handle business exceptions and return the error in a standard format.
    """
    if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.warning("Request failed: %s", exc.message)
    return JSONResponse(
        content=exc.to_model().model_dump(mode="json"),
        status_code=exc.status_code,
    )


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _validation_error(exc)


async def _event_initiate(request: Request) -> EventInitiateModel:
    """
    Parse an event submission from the request body.

    Raises `InvalidEventError` with the field errors if the body is rejected.
    """
    try:
        body = await request.json()
        return EventInitiateModel.model_validate(body)
    except ValidationError as e:
        raise InvalidEventError(
            [f"{'.'.join(map(str, error['loc']))}: {error['msg']}" for error in e.errors()]
        ) from e
    except ValueError as e:
        raise InvalidEventError([str(e)]) from e


def _validation_error(e: ValidationError | Exception) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError) or isinstance(e, ValidationException):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code: HTTPStatus,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel(
        error=ErrorInnerModel(
            details=details or [],
            message=message,
        )
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
