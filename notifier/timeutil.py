"""
Time Boundary Module

Records carry points in time in many shapes: datetime objects, plain dates,
ISO strings written by the JSON serializer, DD/MM/YYYY strings typed by
hand, epoch seconds or milliseconds and ``{"_seconds": ...}`` mappings exported from the old
document store. ``to_datetime`` collapses all of them into one representation,
a timezone-aware datetime in the configured civil time zone. Everything past
this module works with that representation only.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from notifier.config import DATE_FORMAT_DISPLAY, TIMEZONE
from notifier.fields import DATE_KEYS

LOCAL_TZ = ZoneInfo(TIMEZONE)

_STRING_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")

# Epoch values above this are taken as milliseconds (1e11 s is the year 5138)
EPOCH_MILLIS_THRESHOLD = 1e11


def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def local_today(now: Optional[datetime] = None) -> date:
    if now is None:
        now = local_now()
    return to_datetime(now).date()


def _from_epoch(seconds: float) -> Optional[datetime]:
    if math.isnan(seconds) or math.isinf(seconds):
        return None
    if abs(seconds) > EPOCH_MILLIS_THRESHOLD:
        seconds = seconds / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=LOCAL_TZ)
    except (OverflowError, OSError, ValueError):
        return None


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert any supported timestamp representation to an aware local datetime.

    Naive datetimes (and date-only values) are taken as local wall time.

    Returns:
        Aware datetime in LOCAL_TZ, or None when the value is empty or unparseable
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=LOCAL_TZ)
        try:
            return value.astimezone(LOCAL_TZ)
        except (OverflowError, ValueError):
            return None

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=LOCAL_TZ)

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch(value)

    if isinstance(value, Mapping):
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is None:
            return None
        nanos = value.get("_nanoseconds", value.get("nanoseconds")) or 0
        try:
            return _from_epoch(float(seconds) + float(nanos) / 1e9)
        except (TypeError, ValueError):
            return None

    # Client-library timestamp objects
    for converter in ("to_datetime", "ToDatetime", "to_pydatetime"):
        if callable(getattr(value, converter, None)):
            return to_datetime(getattr(value, converter)())

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return to_datetime(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
        for fmt in _STRING_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=LOCAL_TZ)
            except ValueError:
                continue

    return None


def to_local_date(value: Any) -> Optional[date]:
    moment = to_datetime(value)
    return moment.date() if moment is not None else None


def normalize_record_dates(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of *record* with every known date field converted by ``to_datetime``.

    Values that cannot be parsed are left untouched so that nothing is lost.
    """
    normalized = dict(record)
    for key in DATE_KEYS:
        if key in normalized:
            moment = to_datetime(normalized[key])
            if moment is not None:
                normalized[key] = moment
    return normalized


def format_date(value: Any) -> str:
    """Format a point in time as DD/MM/YYYY in the local zone ("-" when unknown)."""
    moment = to_datetime(value)
    if moment is None:
        return "-"
    return moment.strftime(DATE_FORMAT_DISPLAY)


def days_remaining(value: Any, today: Optional[date] = None) -> Optional[int]:
    """
    Calendar days from *today* to the target date; negative when overdue.

    Both ends are reduced to local dates first so the time of day never shifts
    the result.
    """
    target = to_local_date(value)
    if target is None:
        return None
    if today is None:
        today = local_today()
    return (target - today).days


def day_window(days_ahead: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    First and last instant of the local day *days_ahead* days after *now*.

    Returns:
        Tuple of (start at 00:00:00, end at 23:59:59.999999), both aware
    """
    target_day = local_today(now) + timedelta(days=days_ahead)
    start = datetime.combine(target_day, time.min, tzinfo=LOCAL_TZ)
    end = datetime.combine(target_day, time.max, tzinfo=LOCAL_TZ)
    return start, end
