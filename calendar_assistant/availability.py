"""Availability engine: open meeting starts for one day.

The scan walks a fixed grid across the day's work window and keeps every
start that:

  1. is at least ``min_notice_minutes`` after now,
  2. stays clear of every busy interval once padded by ``buffer_minutes``
     on both sides,
  3. falls on a work day and inside the work hours, in local time.

All comparisons use absolute UTC instants. Local time is only consulted for
the weekday / hour predicate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from calendar_assistant.calendar_providers.base import BusyInterval, BusyIntervalProvider
from calendar_assistant.errors import InvalidDuration, ProviderUnavailable
from calendar_assistant.timeutils import TimeWindow, day_window, resolve_zone, to_iso, utc_now

log = logging.getLogger("calendar_assistant.availability")

Clock = Callable[[], datetime]


class SchedulingRules(BaseModel):
    """Process-wide booking rules. Built once at startup, never mutated."""

    model_config = ConfigDict(frozen=True)

    work_days: frozenset[int] = frozenset({1, 2, 3, 4, 5})  # 0=Sunday..6=Saturday
    work_start_hour: int = 9
    work_end_hour: int = 17
    slot_interval_minutes: int = 30
    buffer_minutes: int = 10
    min_notice_minutes: int = 120

    @field_validator("work_days")
    @classmethod
    def validate_work_days(cls, v: frozenset[int]) -> frozenset[int]:
        bad = sorted(d for d in v if not 0 <= d <= 6)
        if bad:
            raise ValueError(f"Weekday indices must be 0 (Sunday) to 6 (Saturday), got {bad}")
        return v

    @field_validator("slot_interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Slot interval must be positive, got {v}")
        return v

    @field_validator("buffer_minutes", "min_notice_minutes")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Must be non-negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_hours(self) -> "SchedulingRules":
        if not 0 <= self.work_start_hour < self.work_end_hour <= 24:
            raise ValueError(
                "Work hours must satisfy 0 <= start < end <= 24, "
                f"got {self.work_start_hour}-{self.work_end_hour}"
            )
        return self

    def is_work_time(self, local: datetime) -> bool:
        """Weekday and hour predicate on a local wall-clock reading."""
        weekday = local.isoweekday() % 7  # Sunday -> 0
        if weekday not in self.work_days:
            return False
        return self.work_start_hour <= local.hour < self.work_end_hour


@dataclass(frozen=True)
class CandidateSlot:
    """A bookable start. Duration is whatever the caller asked for."""

    start_instant: datetime

    def to_dict(self) -> dict[str, str]:
        return {"startISO": to_iso(self.start_instant)}


def work_window(day: str | date, tz: str, rules: SchedulingRules) -> TimeWindow | None:
    """UTC window for the rule-defined work hours of ``day`` in ``tz``.

    ``None`` means the work hours do not exist on that day (DST gap).
    """
    return day_window(day, tz, rules.work_start_hour, rules.work_end_hour)


def scan_slots(
    window: TimeWindow,
    busy: Iterable[BusyInterval],
    duration_minutes: int,
    tz: str,
    rules: SchedulingRules,
    now: datetime,
) -> list[CandidateSlot]:
    """Walk the slot grid across ``window`` and return every bookable start.

    Pure and synchronous. ``busy`` may be unsorted and overlapping.
    """
    if duration_minutes <= 0:
        raise InvalidDuration(f"Duration must be a positive number of minutes, got {duration_minutes}")

    zone = resolve_zone(tz)
    busy = list(busy)
    duration = timedelta(minutes=duration_minutes)
    buffer = timedelta(minutes=rules.buffer_minutes)
    step = timedelta(minutes=rules.slot_interval_minutes)
    earliest = now + timedelta(minutes=rules.min_notice_minutes)

    slots: list[CandidateSlot] = []
    cursor = window.start
    while cursor + duration <= window.end:
        # The boundary instant itself satisfies notice.
        if cursor < earliest:
            cursor += step
            continue

        padded_start = cursor - buffer
        padded_end = cursor + duration + buffer
        if any(b.overlaps(padded_start, padded_end) for b in busy):
            cursor += step
            continue

        if rules.is_work_time(cursor.astimezone(zone)):
            slots.append(CandidateSlot(start_instant=cursor))

        cursor += step

    return slots


class AvailabilityEngine:
    """Computes open slots against one busy-interval provider.

    Usage::

        engine = AvailabilityEngine(rules, provider)
        slots = await engine.compute_availability("2026-03-16", 30, "America/Chicago")
    """

    def __init__(
        self,
        rules: SchedulingRules,
        provider: BusyIntervalProvider,
        clock: Clock = utc_now,
    ) -> None:
        self._rules = rules
        self._provider = provider
        self._clock = clock

    @property
    def clock(self) -> Clock:
        return self._clock

    async def compute_availability(
        self, day: str | date, duration_minutes: int, tz: str
    ) -> list[CandidateSlot]:
        """Return ascending bookable starts for ``day``.

        Raises:
            InvalidDate: ``day`` is not a real ``YYYY-MM-DD`` date.
            InvalidTimezone: ``tz`` is not a known IANA zone.
            InvalidDuration: ``duration_minutes`` is not positive.
            ProviderUnavailable: busy intervals could not be fetched.
        """
        window = work_window(day, tz, self._rules)
        if duration_minutes <= 0:
            raise InvalidDuration(
                f"Duration must be a positive number of minutes, got {duration_minutes}"
            )
        if window is None:
            log.debug("Availability %s (%s): work hours fall in a DST gap", day, tz)
            return []

        try:
            busy = await self._provider.fetch_busy(window)
        except ProviderUnavailable:
            raise
        except Exception as exc:
            log.warning("Busy lookup failed for %s: %s", day, exc)
            raise ProviderUnavailable(f"Could not fetch busy intervals: {exc}") from exc

        slots = scan_slots(window, busy, duration_minutes, tz, self._rules, self._clock())
        log.debug(
            "Availability %s (%s, %d min): %d busy, %d slots",
            day, tz, duration_minutes, len(busy), len(slots),
        )
        return slots
