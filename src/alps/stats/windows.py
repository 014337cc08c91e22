"""Calendar windows used to bucket runs and commits.

All keys are computed in the timezone of the anchor. Timestamps without
timezone information are taken to be UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple


def resolve_anchor(anchor: Optional[datetime] = None) -> datetime:
    if anchor is None:
        return datetime.now().astimezone()
    if anchor.tzinfo is None:
        return anchor.replace(tzinfo=timezone.utc)
    return anchor


def localize(value: datetime, anchor: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(anchor.tzinfo)


def day_key(value: datetime, anchor: datetime) -> str:
    return localize(value, anchor).strftime("%Y-%m-%d")


def month_key(value: datetime, anchor: datetime) -> str:
    return localize(value, anchor).strftime("%Y-%m")


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _days(anchor: datetime, days: int) -> List[date]:
    if days < 1:
        raise ValueError(f"Window must cover at least one day, got {days}")
    today = anchor.date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _months(anchor: datetime, months: int) -> List[Tuple[int, int]]:
    if months < 1:
        raise ValueError(f"Window must cover at least one month, got {months}")
    return [
        _shift_month(anchor.year, anchor.month, -offset)
        for offset in range(months - 1, -1, -1)
    ]


def daily_buckets(anchor: Optional[datetime] = None, days: int = 7) -> List[str]:
    """Day keys ``YYYY-MM-DD`` for the trailing window ending on the anchor's day."""
    anchor = resolve_anchor(anchor)
    return [d.strftime("%Y-%m-%d") for d in _days(anchor, days)]


def monthly_buckets(anchor: Optional[datetime] = None, months: int = 12) -> List[str]:
    """Month keys ``YYYY-MM`` for the trailing window ending on the anchor's month."""
    anchor = resolve_anchor(anchor)
    return [f"{year:04d}-{month:02d}" for year, month in _months(anchor, months)]


def window_start_days(anchor: Optional[datetime] = None, days: int = 7) -> datetime:
    anchor = resolve_anchor(anchor)
    first = _days(anchor, days)[0]
    return datetime.combine(first, time.min, tzinfo=anchor.tzinfo)


def window_start_months(
    anchor: Optional[datetime] = None, months: int = 12
) -> datetime:
    anchor = resolve_anchor(anchor)
    year, month = _months(anchor, months)[0]
    return datetime(year, month, 1, tzinfo=anchor.tzinfo)
