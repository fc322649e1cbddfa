from functools import cached_property

from pydantic import BaseModel

from event_reminders.persistence.inotification import INotification


class LogModel(BaseModel, frozen=True):
    """
    Configuration of the log-line notification.

    Delivery is simulated: the notification is written to the application log. Real channels (email, push, SMS) are expected to implement `INotification` and get their own section here.
    """

    simulated_latency_sec: float = 0.1

    @cached_property
    def instance(self) -> INotification:
        from event_reminders.persistence.log_notification import LogNotification

        return LogNotification(self)


class NotificationModel(BaseModel):
    log: LogModel = LogModel()  # Object is fully defined by default

    @cached_property
    def instance(self) -> INotification:
        return self.log.instance
