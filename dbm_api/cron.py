"""
Next-run evaluation for backup schedules.

Only a narrow subset of cron is understood: when the minute and the hour
fields are literal integers and the remaining fields are ``*`` the schedule
runs daily at that wall-clock time in the schedule's timezone. Every other
expression (``*`` in minute or hour, ranges, lists, steps, day-of-month,
month or day-of-week constraints) runs at the next full hour.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class CronExpressionError(ValueError):
    pass


def _literal(field: str):
    return int(field) if field.isascii() and field.isdigit() else None


def _zone(tz_name: str):
    if not tz_name or tz_name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise CronExpressionError(f"Unknown timezone '{tz_name}'") from e


def calculate_next_run(cron_expression: str, now: datetime, tz_name: str = "UTC") -> datetime:
    """
    Compute the next run strictly after ``now``.

    Args:
        cron_expression: five whitespace-separated fields
            (minute, hour, day-of-month, month, day-of-week).
        now: current time; naive values are taken as UTC.
        tz_name: IANA timezone the minute/hour fields are expressed in.

    Returns:
        An aware UTC datetime.

    Raises:
        CronExpressionError: wrong field count, out-of-range minute/hour or
            unknown timezone.
    """
    parts = (cron_expression or "").split()
    if len(parts) != 5:
        raise CronExpressionError(
            f"Invalid cron expression '{cron_expression}': expected 5 fields, got {len(parts)}"
        )

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    zone = _zone(tz_name)
    minute, hour = _literal(parts[0]), _literal(parts[1])
    if (minute is not None and minute > 59) or (hour is not None and hour > 23):
        raise CronExpressionError(f"Invalid cron expression '{cron_expression}': time out of range")

    if minute is not None and hour is not None and parts[2:] == ["*", "*", "*"]:
        local_now = now.astimezone(zone)
        candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        # Same-zone comparison is wall-clock only, so compare instants in UTC
        if candidate.astimezone(timezone.utc) <= now:
            candidate = (candidate + timedelta(days=1)).replace(fold=0)
        return candidate.astimezone(timezone.utc)

    return now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
