"""UTC time helpers and the injectable Clock.

Every stored instant is timezone-aware UTC. Services never call
datetime.now() themselves; they take a Clock so lockout windows, session
expiry and TTLs can be driven by a fake clock in tests.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default Clock."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalize a stored instant: naive values are read as UTC, aware ones converted."""
    if value is None or value.tzinfo is UTC:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_timestamp_utc(seconds: float) -> datetime:
    """JWT-style numeric date (iat, exp, auth_time) to an aware datetime."""
    return datetime.fromtimestamp(seconds, tz=UTC)


def from_timestamp_ms_utc(millis: int) -> datetime:
    """Rate-limit bucket timestamps are epoch milliseconds."""
    return from_timestamp_utc(millis / 1000)


def to_epoch_ms(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)
