from abc import ABC, abstractmethod

from event_reminders.helpers.monitoring import start_as_current_span
from event_reminders.models.job import JobModel
from event_reminders.models.readiness import ReadinessEnum


class INotification(ABC):
    @abstractmethod
    @start_as_current_span("notification_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("notification_send")
    async def send(self, job: JobModel) -> bool:
        """
        Deliver the reminder of a job to its owner.

        Returns `True` if the notification was accepted by the channel. Implementations may also raise, the scheduler treats both as a failed delivery.
        """
