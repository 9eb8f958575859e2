"""Tests for timezone-aware window building and range normalization."""

from datetime import date, datetime, timedelta, timezone

import pytest

from calendar_assistant.errors import InvalidDate, InvalidRange, InvalidTimezone
from calendar_assistant.timeutils import (
    TimeWindow,
    day_window,
    local_today,
    next_week_window,
    normalize_range,
    parse_day,
    resolve_zone,
    to_iso,
    today_range,
)

UTC = timezone.utc
TZ = "America/Chicago"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestTimeWindow:
    def test_requires_start_before_end(self):
        with pytest.raises(ValueError):
            TimeWindow(start=utc(2026, 3, 16, 10), end=utc(2026, 3, 16, 10))

    def test_duration(self):
        window = TimeWindow(start=utc(2026, 3, 16, 10), end=utc(2026, 3, 16, 11, 30))
        assert window.duration_minutes() == 90


class TestDayWindow:
    def test_standard_time(self):
        window = day_window("2026-03-06", TZ, 9, 17)
        assert window.start == utc(2026, 3, 6, 15)
        assert window.end == utc(2026, 3, 6, 23)

    def test_daylight_time(self):
        window = day_window("2026-03-09", TZ, 9, 17)
        assert window.start == utc(2026, 3, 9, 14)
        assert window.end == utc(2026, 3, 9, 22)

    def test_hour_24_closes_the_day(self):
        window = day_window("2026-03-16", TZ, 0, 24)
        assert window.end == utc(2026, 3, 17, 5)

    def test_fall_back_day_is_25_hours(self):
        window = day_window("2026-11-01", TZ, 0, 24)
        assert window.end - window.start == timedelta(hours=25)

    def test_span_inside_spring_forward_gap(self):
        assert day_window("2026-03-08", TZ, 2, 3) is None

    def test_accepts_date_objects(self):
        window = day_window(date(2026, 3, 16), "UTC", 9, 17)
        assert window.start == utc(2026, 3, 16, 9)

    def test_invalid_date(self):
        with pytest.raises(InvalidDate):
            day_window("2026-13-01", TZ, 9, 17)

    def test_unknown_zone(self):
        with pytest.raises(InvalidTimezone):
            day_window("2026-03-16", "Mars/Olympus_Mons", 9, 17)


class TestParseDay:
    def test_valid(self):
        assert parse_day("2028-02-29") == date(2028, 2, 29)

    @pytest.mark.parametrize("value", ["2027-02-29", "20260316", "2026-03-16T09:00", "16.03.2026"])
    def test_invalid(self, value):
        with pytest.raises(InvalidDate):
            parse_day(value)


class TestResolveZone:
    def test_known(self):
        assert resolve_zone("Europe/Berlin").key == "Europe/Berlin"

    @pytest.mark.parametrize("name", ["Nowhere/City", "../etc/passwd", ""])
    def test_unknown(self, name):
        with pytest.raises(InvalidTimezone):
            resolve_zone(name)


class TestNormalizeRange:
    def test_date_pair_covers_whole_days(self):
        window = normalize_range("2026-03-16", "2026-03-17", TZ)
        assert window.start == utc(2026, 3, 16, 5)
        assert window.end == utc(2026, 3, 18, 4, 59, 59, 999000)

    def test_single_day(self):
        window = normalize_range("2026-03-16", "2026-03-16", TZ)
        assert to_iso(window.start) == "2026-03-16T05:00:00.000Z"
        assert to_iso(window.end) == "2026-03-17T04:59:59.999Z"

    def test_date_pair_across_dst(self):
        window = normalize_range("2026-03-07", "2026-03-08", TZ)
        assert window.start == utc(2026, 3, 7, 6)
        assert window.end == utc(2026, 3, 9, 4, 59, 59, 999000)

    def test_timestamps_with_zulu(self):
        window = normalize_range("2026-03-16T14:00:00Z", "2026-03-16T15:30:00Z", TZ)
        assert window.start == utc(2026, 3, 16, 14)
        assert window.end == utc(2026, 3, 16, 15, 30)

    def test_timestamps_with_offsets(self):
        window = normalize_range("2026-03-16T09:00:00-05:00", "2026-03-16T17:00:00+01:00", TZ)
        assert window.start == utc(2026, 3, 16, 14)
        assert window.end == utc(2026, 3, 16, 16)

    def test_naive_timestamps_use_request_zone(self):
        window = normalize_range("2026-03-16T09:00:00", "2026-03-16T10:00:00", TZ)
        assert window.start == utc(2026, 3, 16, 14)

    @pytest.mark.parametrize(
        "start,end",
        [
            (None, "2026-03-16"),
            ("2026-03-16", ""),
            ("yesterday", "today"),
            ("2026-03-16T09:00:00Z", "not-a-time"),
            ("2026-02-30", "2026-03-01"),
        ],
    )
    def test_rejects_bad_input(self, start, end):
        with pytest.raises(InvalidRange):
            normalize_range(start, end, TZ)

    def test_rejects_equal_timestamps(self):
        with pytest.raises(InvalidRange):
            normalize_range("2026-03-16T14:00:00Z", "2026-03-16T14:00:00Z", TZ)

    def test_rejects_reversed_dates(self):
        with pytest.raises(InvalidRange):
            normalize_range("2026-03-17", "2026-03-16", TZ)

    def test_unknown_zone(self):
        with pytest.raises(InvalidTimezone):
            normalize_range("2026-03-16", "2026-03-17", "Nowhere/City")


class TestRelativeWindows:
    def test_today_range_uses_local_date(self):
        # 03:00Z on the 17th is still the evening of the 16th in Chicago.
        window = today_range(TZ, utc(2026, 3, 17, 3))
        assert window.start == utc(2026, 3, 16, 5)
        assert window.end == utc(2026, 3, 17, 4, 59, 59, 999000)

    def test_local_today(self):
        assert local_today(TZ, utc(2026, 3, 17, 3)) == date(2026, 3, 16)

    def test_next_week_from_midweek(self):
        window = next_week_window(TZ, utc(2026, 3, 18, 15))
        assert window.start == utc(2026, 3, 23, 5)
        assert window.end == utc(2026, 3, 30, 5)

    def test_next_week_from_saturday_night(self):
        # Sunday 03:00Z is Saturday evening locally; next week still starts the 23rd.
        window = next_week_window(TZ, utc(2026, 3, 22, 3))
        assert window.start == utc(2026, 3, 23, 5)

    def test_next_week_from_monday(self):
        window = next_week_window(TZ, utc(2026, 3, 16, 15))
        assert window.start == utc(2026, 3, 23, 5)


class TestToIso:
    def test_formats_utc_with_millis(self):
        assert to_iso(utc(2026, 3, 16, 14)) == "2026-03-16T14:00:00.000Z"

    def test_converts_other_offsets(self):
        aware = datetime(2026, 3, 16, 9, tzinfo=resolve_zone(TZ))
        assert to_iso(aware) == "2026-03-16T14:00:00.000Z"
