"""Naive-UTC time helpers.

Every datetime column (token and session expiry, run start/end, next_run) is
stored as naive UTC. Cron timezones only matter when computing fire times.
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def is_expired(expires_at: datetime | None, leeway_seconds: int = 0) -> bool:
    """True when ``expires_at`` is missing or less than ``leeway_seconds`` away."""
    if expires_at is None:
        return True
    return utc_now() + timedelta(seconds=leeway_seconds) >= expires_at


def get_expiry(seconds: int = 0, minutes: int = 0, days: int = 0) -> datetime:
    return utc_now() + timedelta(seconds=seconds, minutes=minutes, days=days)


def to_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted; naive ones are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str) -> bool:
    """True for an IANA zone name such as ``Europe/Paris``."""
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
    except (KeyError, ValueError):
        return False
    return True
