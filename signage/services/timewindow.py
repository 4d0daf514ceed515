import logging
import os
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = (os.getenv("SIGNAGE_DEFAULT_TIMEZONE", "UTC") or "UTC").strip()


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) not in (2, 3):
        raise ValueError("Time must be HH:MM or HH:MM:SS")
    try:
        hour = int(parts[0])
        minute = int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise ValueError("Invalid time value") from exc
    if hour < 0 or hour > 23 or minute < 0 or minute > 59 or second < 0 or second > 59:
        raise ValueError("Invalid time range")
    return time(hour, minute, second)


def parse_days(values) -> list[int]:
    """Accepts a CSV string or an iterable of ints; 0=Sunday..6=Saturday."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [item for item in values.split(",") if item.strip()]
    days: set[int] = set()
    for item in values:
        try:
            day = int(str(item).strip())
        except ValueError as exc:
            raise ValueError("days must be integers 0-6") from exc
        if day < 0 or day > 6:
            raise ValueError("days must be in range 0-6")
        days.add(day)
    return sorted(days)


def format_days(days) -> str:
    return ",".join(str(day) for day in sorted(set(days)))


def sunday_weekday(value: datetime) -> int:
    return value.isoweekday() % 7


def ensure_utc(value: datetime) -> datetime:
    # Naive datetimes come back from SQLite; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_zone(name: str | None) -> ZoneInfo:
    candidate = (name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(candidate)
    except Exception:
        logger.warning("unknown timezone %r, falling back to %s", candidate, DEFAULT_TIMEZONE)
        try:
            return ZoneInfo(DEFAULT_TIMEZONE)
        except Exception:
            return ZoneInfo("UTC")


def to_local(now: datetime, tz_name: str | None) -> datetime:
    return ensure_utc(now).astimezone(resolve_zone(tz_name))


def window_contains(
    local_now: datetime,
    days,
    start_time: time | None,
    end_time: time | None,
) -> bool:
    """Day/time-of-day match, start inclusive and end exclusive.

    An empty ``days`` collection matches every day; a missing bound is open.
    Windows never cross midnight.
    """
    if days and sunday_weekday(local_now) not in days:
        return False
    clock = local_now.time().replace(tzinfo=None)
    if start_time is not None and clock < start_time:
        return False
    if end_time is not None and clock >= end_time:
        return False
    return True


def validate_window(start_time: time | None, end_time: time | None) -> None:
    if start_time is not None and end_time is not None and end_time <= start_time:
        raise ValueError("start_time must be before end_time (split overnight windows in two)")
