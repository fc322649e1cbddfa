from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from event_reminders.helpers.pydantic_types.datetimes import UtcDatetime
from event_reminders.models.event import EventModel
from event_reminders.models.reminder import ReminderModel


class StatusEnum(str, Enum):
    FAILED = "failed"
    """Last delivery failed, waiting for the retry backoff."""
    PENDING = "pending"
    """Waiting for its reminder time."""
    SENT = "sent"
    """Delivered, kept for the retention window."""


class JobModel(BaseModel):
    """
    In-memory delivery state of a reminder.

    The job identifier is the reminder identifier. Jobs are never persisted, the store only knows reminders.
    """

    attempts: int = 0
    event_date: UtcDatetime
    event_id: UUID
    event_title: str
    job_id: UUID
    last_attempt_at: UtcDatetime | None = None
    owner_id: str
    reminder_time: UtcDatetime
    status: StatusEnum = StatusEnum.PENDING

    @classmethod
    def from_reminder(cls, reminder: ReminderModel, event: EventModel) -> "JobModel":
        return cls(
            event_date=event.date,
            event_id=event.event_id,
            event_title=event.title,
            job_id=reminder.reminder_id,
            owner_id=reminder.owner_id,
            reminder_time=reminder.reminder_time,
        )


class SchedulerStatusModel(BaseModel):
    failed_jobs: int
    is_running: bool
    next_reminder_time: datetime | None
    pending_jobs: int
    sent_jobs: int
    total_jobs: int
