from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from event_reminders.helpers.pydantic_types.datetimes import UtcDatetime


class ReminderInitiateModel(BaseModel):
    event_id: UUID
    reminder_time: UtcDatetime


class ReminderUpdateModel(BaseModel):
    reminder_time: UtcDatetime


class ReminderModel(BaseModel):
    # Immutable fields
    created_at: UtcDatetime = Field(
        default_factory=lambda: datetime.now(UTC), frozen=True
    )
    event_id: UUID = Field(frozen=True)
    owner_id: str = Field(frozen=True)
    reminder_id: UUID = Field(default_factory=uuid4, frozen=True)
    # Editable fields
    reminder_time: UtcDatetime
    updated_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))
