import re
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from event_reminders.helpers.pydantic_types.datetimes import UtcDatetime
from event_reminders.models.reminder import ReminderModel

_LOCATION_PREFIX_R = re.compile(r"^[A-Za-z]{2}-[A-Za-z]{2,3}:")


class StatusEnum(str, Enum):
    CANCELED = "canceled"
    DRAFT = "draft"
    PUBLISHED = "published"


class EventInitiateModel(BaseModel):
    """
    Editable part of an event, as submitted by its owner on create and update.
    """

    date: UtcDatetime
    description: str | None = Field(default=None, max_length=500)
    location: str | None = None
    status: StatusEnum = StatusEnum.DRAFT
    title: str = Field(min_length=1, max_length=100)

    @field_validator("date")
    @classmethod
    def _validate_date(cls, date: datetime) -> datetime:
        if date <= datetime.now(UTC):
            raise ValueError("Date must be in the future")
        return date

    @field_validator("location")
    @classmethod
    def _validate_location(cls, location: str | None) -> str | None:
        """
        Location must start with a country and region code, e.g. `US-NY: New York`.
        """
        if location is None:
            return None
        if not _LOCATION_PREFIX_R.match(location):
            raise ValueError(
                'Location must include country code prefix (e.g., "US-NY: New York")'
            )
        return location


class EventModel(BaseModel):
    # Immutable fields
    created_at: UtcDatetime = Field(
        default_factory=lambda: datetime.now(UTC), frozen=True
    )
    event_id: UUID = Field(default_factory=uuid4, frozen=True)
    owner_id: str = Field(frozen=True)
    # Editable fields
    date: UtcDatetime
    description: str | None = None
    location: str | None = None
    status: StatusEnum = StatusEnum.DRAFT
    title: str
    updated_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))

    def apply(self, initiate: EventInitiateModel) -> None:
        """
        Copy the editable fields from an owner submission.
        """
        self.date = initiate.date
        self.description = initiate.description
        self.location = initiate.location
        self.status = initiate.status
        self.title = initiate.title
        self.updated_at = datetime.now(UTC)


class EventGetModel(EventModel):
    """
    Event as listed to its owner, with the owner's reminder if any.
    """

    reminder: ReminderModel | None = None


class EventSearchModel(BaseModel):
    events: list[EventGetModel]
    total: int
