from datetime import timedelta
from http import HTTPStatus

from pydantic import BaseModel


class ErrorInnerModel(BaseModel):
    message: str
    details: list[str]


class ErrorModel(BaseModel):
    error: ErrorInnerModel


class ReminderError(Exception):
    """
    Base error of the reminder operations.

    Errors are surfaced to the caller as is, none of them is retried by the service itself.
    """

    message: str = "Reminder operation failed"
    status_code: HTTPStatus = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def details(self) -> list[str]:
        return []

    def to_model(self) -> ErrorModel:
        return ErrorModel(
            error=ErrorInnerModel(
                details=self.details(),
                message=self.message,
            )
        )


class NotAuthenticatedError(ReminderError):
    message = "Session expired, please log in again"
    status_code = HTTPStatus.UNAUTHORIZED


class EventNotFoundError(ReminderError):
    """
    Event does not exist or is owned by someone else.

    Both cases are reported the same way to avoid leaking other owners' data.
    """

    message = "Event not found or you do not have permission to access it"
    status_code = HTTPStatus.NOT_FOUND


class ReminderNotFoundError(ReminderError):
    """
    Reminder does not exist or is owned by someone else.
    """

    message = "Reminder not found or you do not have permission to access it"
    status_code = HTTPStatus.NOT_FOUND


class InvalidWindowError(ReminderError):
    """
    Reminder time is outside of the allowed window before the event.

    Carries the boundaries so the caller can correct its input.
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    max_offset: timedelta
    min_offset: timedelta
    offset: timedelta

    def __init__(
        self,
        offset: timedelta,
        min_offset: timedelta,
        max_offset: timedelta,
    ) -> None:
        self.max_offset = max_offset
        self.min_offset = min_offset
        self.offset = offset
        super().__init__(
            f"Reminder must be between {_human(min_offset)} and {_human(max_offset)} before the event"
        )

    def details(self) -> list[str]:
        return [
            f"offset_ms={int(self.offset / timedelta(milliseconds=1))}",
            f"min_offset_ms={int(self.min_offset / timedelta(milliseconds=1))}",
            f"max_offset_ms={int(self.max_offset / timedelta(milliseconds=1))}",
        ]


class InvalidEventError(ReminderError):
    message = "Please check your event details and try again"
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    errors: list[str]

    def __init__(self, errors: list[str] | None = None) -> None:
        super().__init__()
        self.errors = errors or []

    def details(self) -> list[str]:
        return self.errors


class DuplicateReminderError(ReminderError):
    message = "A reminder already exists for this event, update it instead"
    status_code = HTTPStatus.CONFLICT


class DuplicateEventError(ReminderError):
    message = "Event with this title and date already exists"
    status_code = HTTPStatus.CONFLICT


class PersistenceError(ReminderError):
    """
    Store could not complete the operation.

    Nothing was changed in the scheduler, the caller can safely resubmit.
    """

    message = "Failed to save your changes, please try again"
    status_code = HTTPStatus.SERVICE_UNAVAILABLE


def _human(delta: timedelta) -> str:
    """
    Render a window boundary, e.g. `15 minutes` or `7 days`.
    """
    minutes = int(delta.total_seconds() // 60)
    if minutes % (60 * 24) == 0:
        days = minutes // (60 * 24)
        return f"{days} day{'s' if days > 1 else ''}"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{minutes} minute{'s' if minutes > 1 else ''}"
