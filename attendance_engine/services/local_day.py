from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.local_day")

FALLBACK_TIMEZONE = "UTC"
END_OF_DAY_OFFSET = timedelta(days=1, milliseconds=-1)


def normalize_ts(ts_utc: datetime) -> datetime:
    # Naive values come back from backends without tz support and are stored as UTC.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


@lru_cache
def _load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("timezone_unknown", extra={"timezone": name})
        return ZoneInfo(FALLBACK_TIMEZONE)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Employee zone, else ``Settings.attendance_timezone``, else UTC."""
    raw_name = (name or "").strip() or (get_settings().attendance_timezone or "").strip()
    return _load_zone(raw_name or FALLBACK_TIMEZONE)


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def local_day_of(ts_utc: datetime, tz: ZoneInfo) -> date:
    return normalize_ts(ts_utc).astimezone(tz).date()


def local_day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return ``[day 00:00, day+1 00:00)`` in ``tz`` as UTC datetimes."""
    local_start = datetime.combine(day, time.min, tzinfo=tz)
    local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def end_of_local_day_utc(ts_utc: datetime, tz: ZoneInfo) -> datetime:
    """23:59:59.999 local time of the day ``ts_utc`` falls on."""
    day = local_day_of(ts_utc, tz)
    local_end = datetime.combine(day, time.min, tzinfo=tz) + END_OF_DAY_OFFSET
    return local_end.astimezone(timezone.utc)


def weekday_number(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7
