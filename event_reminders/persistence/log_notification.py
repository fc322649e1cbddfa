import asyncio
from datetime import UTC, datetime

from event_reminders.helpers.config_models.notification import LogModel
from event_reminders.helpers.logging import logger
from event_reminders.helpers.reminder_utils import format_time_until
from event_reminders.models.job import JobModel
from event_reminders.models.readiness import ReadinessEnum
from event_reminders.persistence.inotification import INotification


class LogNotification(INotification):
    """
    Notification written to the application log.

    Stands for a real channel (email, push, SMS): the message content is the same, only the delivery is simulated.
    """

    _config: LogModel

    def __init__(self, config: LogModel):
        logger.warning("Using log as notification, no real reminder will be sent")
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the log notification.
        """
        return ReadinessEnum.OK  # Always ready, it's a log line

    async def send(self, job: JobModel) -> bool:
        # Simulate the channel latency
        if self._config.simulated_latency_sec:
            await asyncio.sleep(self._config.simulated_latency_sec)

        now = datetime.now(UTC)
        logger.info(
            "Reminder sent",
            to=job.owner_id,
            subject=f"Reminder: {job.event_title}",
            message=f'Your event "{job.event_title}" is starting in {format_time_until(job.event_date - now)}.',
            event_id=str(job.event_id),
            timestamp=now.isoformat(),
        )
        return True
