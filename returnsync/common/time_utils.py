"""Timezone-aware helpers for crawl date ranges and run metadata."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from returnsync.common.errors import ConfigError, ValidationError
from returnsync.common.models import DateRange


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone: {name}") from exc


def _parse_iso_date(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {label} date: {value!r}") from exc


def date_range_from_dates(start: str, end: str, tz_name: str = "UTC") -> DateRange:
    """Map two ISO dates to a DateRange covering whole local days.

    The lower bound is the start of ``start`` and the upper bound is
    23:59:59 on ``end``, both in ``tz_name``.
    """
    tz = resolve_timezone(tz_name)
    start_day = _parse_iso_date(start, "start")
    end_day = _parse_iso_date(end, "end")
    lower = datetime.combine(start_day, time(0, 0, 0), tzinfo=tz)
    upper = datetime.combine(end_day, time(23, 59, 59), tzinfo=tz)
    return DateRange(lower=int(lower.timestamp()), upper=int(upper.timestamp()))


def default_date_range(days: int = 30, *, now: datetime | None = None) -> DateRange:
    """Rolling window covering the last ``days`` days up to ``now``.

    Both bounds are exact instants, not local day boundaries, so no
    timezone is involved.
    """
    end = now or datetime.now(tz=timezone.utc)
    start = end - timedelta(days=days)
    return DateRange(lower=int(start.timestamp()), upper=int(end.timestamp()))
