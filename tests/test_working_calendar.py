"""
Working calendar tests — due instants and elapsed working hours.

Covers:
    1. Due instant inside a single working day
    2. Carry over the end of the day and across a weekend
    3. Start outside the window (before opening, after closing, on a weekend)
    4. Zero hours and fractional hours
    5. Time zone interpretation of the window (incl. DST day)
    6. Validation: negative or non-finite hours, empty working days, inverted window, bad zone
    7. working_hours_between sums only in-window time
"""

from datetime import datetime, time, timezone

import pytest

from stageflow.core.exceptions import ConfigurationError, ValidationError
from stageflow.services.working_calendar import (
    WorkingCalendar,
    WorkingWindow,
    compute_due_instant,
    normalize_working_days,
    parse_working_window,
    resolve_timezone,
    working_hours_between,
)

WINDOW = WorkingWindow(time(9, 0), time(17, 0))
WEEKDAYS = [0, 1, 2, 3, 4]


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# 2024-01-08 is a Monday; 2024-01-12 is a Friday.


class TestComputeDueInstant:
    def test_fits_in_same_day(self):
        due = compute_due_instant(_utc(2024, 1, 8, 9), 4, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 8, 13)

    def test_full_day_ends_at_close(self):
        due = compute_due_instant(_utc(2024, 1, 8, 9), 8, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 8, 17)

    def test_carries_into_next_day(self):
        due = compute_due_instant(_utc(2024, 1, 8, 15), 4, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 9, 11)

    def test_friday_afternoon_rolls_over_weekend(self):
        # 1h left on Friday, the remaining hour is consumed Monday morning
        due = compute_due_instant(_utc(2024, 1, 12, 16), 2, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 15, 10)

    def test_multi_day_estimate(self):
        # 20h from Monday 09:00: 8 + 8 + 4 → Wednesday 13:00
        due = compute_due_instant(_utc(2024, 1, 8, 9), 20, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 10, 13)

    def test_start_before_opening_is_clamped(self):
        due = compute_due_instant(_utc(2024, 1, 8, 6, 30), 2, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 8, 11)

    def test_start_after_closing_moves_to_next_day(self):
        due = compute_due_instant(_utc(2024, 1, 8, 19), 3, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 9, 12)

    def test_start_on_saturday(self):
        due = compute_due_instant(_utc(2024, 1, 13, 11), 1, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 15, 10)

    def test_zero_hours_inside_window_is_start(self):
        start = _utc(2024, 1, 8, 10, 15)
        assert compute_due_instant(start, 0, WINDOW, WEEKDAYS) == start

    def test_zero_hours_outside_window_clamps_forward(self):
        due = compute_due_instant(_utc(2024, 1, 12, 18), 0, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 15, 9)

    def test_fractional_hours(self):
        due = compute_due_instant(_utc(2024, 1, 8, 9), 1.5, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 8, 10, 30)

    def test_naive_start_read_as_utc(self):
        due = compute_due_instant(datetime(2024, 1, 8, 9), 1, WINDOW, WEEKDAYS)
        assert due == _utc(2024, 1, 8, 10)

    def test_single_working_day_per_week(self):
        # Only Wednesdays: 10h from Monday → Wed 8h + next Wed 2h
        due = compute_due_instant(_utc(2024, 1, 8, 9), 10, WINDOW, [2])
        assert due == _utc(2024, 1, 17, 11)

    def test_window_interpreted_in_space_zone(self):
        # 09:00 Europe/Berlin is 08:00 UTC in January
        due = compute_due_instant(_utc(2024, 1, 8, 8), 2, WINDOW, WEEKDAYS, "Europe/Berlin")
        assert due == _utc(2024, 1, 8, 10)

    def test_dst_day_keeps_wall_clock_window(self):
        # Friday 17:00 EST closes the day; spring-forward on Sunday 2024-03-10 puts
        # Monday 09:00 EDT at 13:00 UTC
        due = compute_due_instant(
            _utc(2024, 3, 8, 22), 1, WINDOW, WEEKDAYS, "America/New_York",
        )
        assert due == _utc(2024, 3, 11, 14)

    def test_result_is_aware_utc(self):
        due = compute_due_instant(_utc(2024, 1, 8, 9), 3, WINDOW, WEEKDAYS, "Asia/Tokyo")
        assert due.utcoffset().total_seconds() == 0

    def test_negative_hours_rejected(self):
        with pytest.raises(ValidationError):
            compute_due_instant(_utc(2024, 1, 8, 9), -1, WINDOW, WEEKDAYS)

    @pytest.mark.parametrize("hours", [float("inf"), float("nan")])
    def test_non_finite_hours_rejected(self, hours):
        with pytest.raises(ValidationError):
            compute_due_instant(_utc(2024, 1, 8, 9), hours, WINDOW, WEEKDAYS)

    def test_empty_working_days_rejected(self):
        with pytest.raises(ConfigurationError):
            compute_due_instant(_utc(2024, 1, 8, 9), 1, WINDOW, [])


class TestCalendarConfiguration:
    def test_inverted_window_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_working_window("17:00", "09:00")

    def test_malformed_clock_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_working_window("nine", "17:00")

    def test_window_hours(self):
        assert parse_working_window("08:30", "12:00").hours == 3.5

    def test_weekday_names_accepted(self):
        assert normalize_working_days(["Monday", "friday", 2]) == frozenset({0, 2, 4})

    @pytest.mark.parametrize("bad", [[7], [-1], ["someday"], [True]])
    def test_invalid_day_rejected(self, bad):
        with pytest.raises(ConfigurationError):
            normalize_working_days(bad)

    def test_unknown_zone_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_timezone("Mars/Olympus_Mons")

    def test_utc_needs_no_zone_database(self):
        assert resolve_timezone("UTC") is timezone.utc

    def test_calendar_to_dict(self):
        cal = WorkingCalendar(WINDOW, frozenset({4, 0}), "UTC")
        assert cal.to_dict() == {
            "working_hours": {"start": "09:00", "end": "17:00"},
            "working_days": [0, 4],
            "timezone": "UTC",
        }


class TestWorkingHoursBetween:
    def test_same_day(self):
        hours = working_hours_between(_utc(2024, 1, 8, 10), _utc(2024, 1, 8, 12, 30), WINDOW, WEEKDAYS)
        assert hours == 2.5

    def test_excludes_nights_and_weekend(self):
        # Friday 15:00 → Monday 11:00 = 2h + 2h
        hours = working_hours_between(_utc(2024, 1, 12, 15), _utc(2024, 1, 15, 11), WINDOW, WEEKDAYS)
        assert hours == 4.0

    def test_reversed_interval_is_zero(self):
        assert working_hours_between(_utc(2024, 1, 8, 12), _utc(2024, 1, 8, 10), WINDOW, WEEKDAYS) == 0.0

    def test_inverse_of_due_instant(self):
        start = _utc(2024, 1, 11, 13)
        due = compute_due_instant(start, 13, WINDOW, WEEKDAYS)
        assert working_hours_between(start, due, WINDOW, WEEKDAYS) == 13.0
