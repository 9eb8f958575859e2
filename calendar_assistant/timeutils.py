"""Timezone-aware time arithmetic.

Everything here is pure: callers pass the current instant in explicitly.
All returned instants are aware datetimes in UTC; local wall-clock values
only exist transiently while converting through an IANA zone, so DST
transitions are resolved against the zone's rules for that specific date.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_assistant.errors import InvalidDate, InvalidRange, InvalidTimezone

UTC = timezone.utc

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class TimeWindow:
    """A half-open span ``[start, end)`` between two absolute instants.

    Invariant: start must be before end.
    """

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Window start {self.start} must be before end {self.end}")

    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def utc_now() -> datetime:
    """Default clock: the current instant in UTC."""
    return datetime.now(tz=UTC)


def resolve_zone(tz: str) -> ZoneInfo:
    """Look up an IANA zone, raising ``InvalidTimezone`` for unknown names."""
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezone(f"Unknown timezone: {tz!r}") from exc


def is_date_only(value: str | None) -> bool:
    return bool(value) and bool(_DATE_ONLY.match(value))


def parse_day(value: str | date) -> date:
    """Parse a bare ``YYYY-MM-DD`` calendar date."""
    if isinstance(value, date):
        return value
    if not is_date_only(value):
        raise InvalidDate(f"Invalid date {value!r}; use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidDate(f"Invalid date {value!r}: {exc}") from exc


def local_to_utc(day: date, at: time | timedelta, zone: ZoneInfo) -> datetime:
    """Convert a local wall-clock reading on ``day`` to an absolute UTC instant.

    ``at`` may be a ``timedelta`` offset from local midnight so that hour 24
    (midnight closing the day) is expressible.
    """
    if isinstance(at, timedelta):
        wall = datetime.combine(day, time()) + at
    else:
        wall = datetime.combine(day, at)
    return wall.replace(tzinfo=zone).astimezone(UTC)


def day_window(
    day: str | date, tz: str, start_hour: int, end_hour: int
) -> TimeWindow | None:
    """Build the UTC window spanning ``start_hour:00`` to ``end_hour:00`` local.

    Returns ``None`` when the span falls entirely inside a spring-forward gap,
    so both ends resolve to the same instant.
    """
    parsed = parse_day(day)
    zone = resolve_zone(tz)
    start = local_to_utc(parsed, timedelta(hours=start_hour), zone)
    end = local_to_utc(parsed, timedelta(hours=end_hour), zone)
    if start >= end:
        return None
    return TimeWindow(start=start, end=end)


def parse_instant(value: str, zone: ZoneInfo) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are read as wall time in ``zone``."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(UTC)


def normalize_range(start: str | None, end: str | None, tz: str) -> TimeWindow:
    """Normalize a pair of dates or a pair of timestamps into one UTC window.

    Two bare dates cover the whole of both days in ``tz`` (end inclusive up
    to ``23:59:59.999``). Anything else must parse as ISO timestamps.
    """
    if not start or not end:
        raise InvalidRange('Query params "start" and "end" are required')

    zone = resolve_zone(tz)

    if is_date_only(start) and is_date_only(end):
        try:
            start_day = date.fromisoformat(start)
            end_day = date.fromisoformat(end)
        except ValueError as exc:
            raise InvalidRange(f"Invalid start/end: {exc}") from exc
        lo = local_to_utc(start_day, time(), zone)
        hi = local_to_utc(end_day, _END_OF_DAY, zone)
    else:
        try:
            lo = parse_instant(start, zone)
            hi = parse_instant(end, zone)
        except ValueError as exc:
            raise InvalidRange(
                "Invalid start/end; use YYYY-MM-DD or ISO datetime"
            ) from exc

    if lo >= hi:
        raise InvalidRange(f"Range start {start!r} must be before end {end!r}")
    return TimeWindow(start=lo, end=hi)


def local_today(tz: str, now: datetime) -> date:
    return now.astimezone(resolve_zone(tz)).date()


def today_range(tz: str, now: datetime) -> TimeWindow:
    """The whole local day containing ``now`` in ``tz``."""
    zone = resolve_zone(tz)
    today = now.astimezone(zone).date()
    return TimeWindow(
        start=local_to_utc(today, time(), zone),
        end=local_to_utc(today, _END_OF_DAY, zone),
    )


def next_week_window(tz: str, now: datetime) -> TimeWindow:
    """Monday 00:00 of next week through the following Monday 00:00, local."""
    zone = resolve_zone(tz)
    today = now.astimezone(zone).date()
    next_monday = today - timedelta(days=today.weekday()) + timedelta(days=7)
    return TimeWindow(
        start=local_to_utc(next_monday, time(), zone),
        end=local_to_utc(next_monday + timedelta(days=7), time(), zone),
    )


def to_iso(dt: datetime) -> str:
    """Format an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
