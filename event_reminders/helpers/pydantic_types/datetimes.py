from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive values are considered already in UTC, as the store and the scheduler only compare instants.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]
"""Timezone-aware datetime, always expressed in UTC."""
