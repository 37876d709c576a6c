"""Date helpers shared by the request handlers and data loaders."""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_LOCATION = "Europe/Paris"

_COMPACT_DATE = re.compile(r"(\d{4})(\d{2})(\d{2})")
_DASHED_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


def _default_tz():
    try:
        return ZoneInfo(DEFAULT_LOCATION)
    except (KeyError, ValueError, OSError):
        return timezone.utc


def _truncate_to_day(moment):
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    return datetime.combine(utc.date(), time(), tzinfo=timezone.utc)


def parse_query_date(value, tz=None, now=None):
    """Parse a YYYYMMDD or YYYY-MM-DD date in tz, else today's UTC midnight."""
    tz = tz or _default_tz()
    for pattern in (_COMPACT_DATE, _DASHED_DATE):
        match = pattern.fullmatch(value or "")
        if match:
            try:
                year, month, day = (int(part) for part in match.groups())
                return datetime(year, month, day, tzinfo=tz)
            except ValueError:
                break
    return _truncate_to_day(now or datetime.now(timezone.utc))


def unix_to_local(timestamp, tz):
    """Read the UTC wall clock of a Unix timestamp as a wall clock in tz."""
    try:
        utc = datetime.fromtimestamp(timestamp, timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"timestamp out of range: {timestamp}") from exc
    return utc.replace(tzinfo=tz)


def add_date_and_time(date, time_of_day):
    """Combine the calendar day of `date` with the clock time of `time_of_day`."""
    midnight = date.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(
        hours=time_of_day.hour,
        minutes=time_of_day.minute,
        seconds=time_of_day.second,
        microseconds=time_of_day.microsecond,
    )