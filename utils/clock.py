"""
Clock Utilities
Organization-timezone aware "now", "today", weekday and HH:MM derivation.
Nothing here reads the host's local timezone.
"""
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from utils.errors import ValidationError


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f'Unknown timezone: {tz_name}')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (the storage convention)"""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_naive_utc(dt: datetime) -> datetime:
    return ensure_aware(dt).astimezone(timezone.utc).replace(tzinfo=None)


def local_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """Wall-clock time in the organization's timezone"""
    now = ensure_aware(now) if now is not None else utc_now()
    return now.astimezone(get_zone(tz_name))


def local_today(tz_name: str, now: Optional[datetime] = None) -> date:
    return local_now(tz_name, now).date()


def sunday_weekday(day: date) -> int:
    """Weekday number with 0=Sunday .. 6=Saturday"""
    return (day.weekday() + 1) % 7


def local_weekday(tz_name: str, now: Optional[datetime] = None) -> int:
    return sunday_weekday(local_today(tz_name, now))


def local_hhmm(tz_name: str, now: Optional[datetime] = None) -> str:
    """Current org-local minute as a zero-padded "HH:MM" string"""
    return local_now(tz_name, now).strftime('%H:%M')


def slot_datetime_utc(day: date, time_of_day: str, tz_name: str) -> datetime:
    """
    UTC instant of an org-local (date, HH:MM) slot

    Args:
        day: Org-local calendar date
        time_of_day: Zero-padded "HH:MM"
        tz_name: IANA timezone of the organization

    Returns:
        Timezone-aware UTC datetime
    """
    hours, minutes = (int(part) for part in time_of_day.split(':'))
    local = datetime.combine(day, time(hours, minutes), tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)
