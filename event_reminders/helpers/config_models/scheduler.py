from functools import cached_property
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from event_reminders.helpers.reminder_scheduler import ReminderScheduler


class SchedulerModel(BaseModel, frozen=True):
    autostart: bool = True
    """Start the periodic scan with the application."""
    close_timeout_sec: float = Field(default=5, ge=0)
    """Time given to pending timers to finish on shutdown."""
    retention_sec: float = Field(default=60 * 60, ge=0)
    """Time a sent job stays queryable before being removed from the table."""
    retry_backoff_sec: float = Field(default=5 * 60, ge=0)
    """Wait after a failed delivery before the job is put back to pending."""
    retry_delay_sec: float = Field(default=5 * 60, ge=0)
    """Added to the current time to compute the reminder time of a retried job."""
    scan_interval_sec: float = Field(default=5 * 60, gt=0)

    @cached_property
    def instance(self) -> "ReminderScheduler":
        from event_reminders.helpers.config import CONFIG
        from event_reminders.helpers.reminder_scheduler import ReminderScheduler

        return ReminderScheduler(
            config=self,
            notification=CONFIG.notification.instance,
        )
