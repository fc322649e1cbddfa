from datetime import datetime, timedelta

from event_reminders.models.error import InvalidWindowError

MIN_OFFSET = timedelta(minutes=15)
MAX_OFFSET = timedelta(days=7)


def is_valid_reminder_offset(event_date: datetime, reminder_time: datetime) -> bool:
    """
    Check if a reminder time is allowed for an event date.

    The reminder must fire between 15 minutes and 7 days before the event, both boundaries included.
    """
    return MIN_OFFSET <= event_date - reminder_time <= MAX_OFFSET


def check_reminder_offset(event_date: datetime, reminder_time: datetime) -> timedelta:
    """
    Same as `is_valid_reminder_offset`, but raises `InvalidWindowError` with the boundaries.

    Returns the offset if valid.
    """
    offset = event_date - reminder_time
    if not is_valid_reminder_offset(event_date, reminder_time):
        raise InvalidWindowError(
            max_offset=MAX_OFFSET,
            min_offset=MIN_OFFSET,
            offset=offset,
        )
    return offset


def format_relative_time(offset: timedelta) -> str:
    """
    Render an offset before an event, e.g. `45m before`, `2h before` or `3d before`.

    Units are truncated, not rounded.
    """
    minutes = int(offset.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m before"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h before"
    return f"{hours // 24}d before"


def format_time_until(delta: timedelta) -> str:
    """
    Render the time left before an event, e.g. `1h 30m` or `12m`.
    """
    minutes = max(int(delta.total_seconds() // 60), 0)
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"
