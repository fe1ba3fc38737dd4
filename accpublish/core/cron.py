"""Cron expression helpers on top of APScheduler's CronTrigger."""

from datetime import UTC, datetime

from apscheduler.triggers.cron import CronTrigger

from accpublish.core.datetime_utils import is_valid_timezone, to_naive_utc


def build_trigger(cron_expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build a trigger from a standard five-field crontab expression.

    Raises:
        ValueError: If the expression or the timezone is invalid
    """
    if not is_valid_timezone(timezone):
        raise ValueError(f"Invalid timezone: {timezone}")
    return CronTrigger.from_crontab(cron_expression.strip(), timezone=timezone)


def is_valid_cron(cron_expression: str) -> bool:
    """Check crontab syntax (five fields, values in range)."""
    if not cron_expression or not cron_expression.strip():
        return False
    try:
        CronTrigger.from_crontab(cron_expression.strip(), timezone="UTC")
        return True
    except ValueError:
        return False


def next_fire_time(trigger: CronTrigger, now: datetime | None = None) -> datetime | None:
    """Next time the trigger fires after ``now``, as naive UTC."""
    now = now or datetime.now(UTC)
    fire_time = trigger.get_next_fire_time(None, now)
    return to_naive_utc(fire_time) if fire_time else None
