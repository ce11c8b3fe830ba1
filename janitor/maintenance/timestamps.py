from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from janitor.core.exceptions import MalformedTimestampError


@dataclass(frozen=True)
class ExpirationPolicy:
    """How long a finished job is kept before it counts as stale."""

    duration: timedelta = timedelta(hours=1)

    def threshold(self, now: datetime) -> datetime:
        return now - self.duration

    def is_expired(self, finished_at: datetime, now: datetime) -> bool:
        # A job finished exactly at the threshold is kept
        return finished_at < self.threshold(now)


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any, field: str | None = None) -> datetime:
    """
    Normalize a stored timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch milliseconds and
    ISO-8601 strings. Anything else raises MalformedTimestampError.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise MalformedTimestampError(value, field)
    elif isinstance(value, int | float):
        try:
            parsed = datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedTimestampError(value, field) from e
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise MalformedTimestampError(value, field) from e
    else:
        raise MalformedTimestampError(value, field)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
