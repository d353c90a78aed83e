"""
Tests for working-hours arithmetic.

Covers:
- add_working_hours(): inside a day, across a weekend, starting outside the
  window, landing exactly on closing time, the default 56-hour deadline
- working_hours_between(): agrees with add_working_hours
- normalize_to_window(): before opening, after closing, weekend
- Non-UTC windows and custom working days
- Rejections: naive datetimes, negative hours, malformed windows
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from replenishment_kernel.domain.working_hours import (
    DEFAULT_WINDOW,
    BusinessWindow,
    add_working_hours,
    normalize_to_window,
    working_hours_between,
)

UTC = timezone.utc


def _utc(day, hour, minute=0):
    # January 2024: the 8th is a Monday, the 12th a Friday.
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


class TestAddWorkingHours:
    """Deadline computation in the default 09:00-17:00 Mon-Fri window."""

    def test_within_one_day(self):
        assert add_working_hours(_utc(8, 10), 3) == _utc(8, 13)

    def test_rolls_into_next_day(self):
        assert add_working_hours(_utc(8, 15), 4) == _utc(9, 11)

    def test_friday_afternoon_crosses_weekend(self):
        assert add_working_hours(_utc(12, 16), 8) == _utc(15, 16)

    def test_landing_on_closing_time_stays_on_that_day(self):
        assert add_working_hours(_utc(12, 16), 1) == _utc(12, 17)
        assert add_working_hours(_utc(12, 9), 8) == _utc(12, 17)

    def test_saturday_start_counts_from_monday(self):
        assert add_working_hours(_utc(13, 12), 2) == _utc(15, 11)

    def test_before_opening_starts_at_opening(self):
        assert add_working_hours(_utc(8, 6), 1) == _utc(8, 10)

    def test_after_closing_starts_next_morning(self):
        assert add_working_hours(_utc(8, 20), 1) == _utc(9, 10)

    def test_zero_hours_normalizes_start(self):
        assert add_working_hours(_utc(8, 10), 0) == _utc(8, 10)
        assert add_working_hours(_utc(13, 10), 0) == _utc(15, 9)

    def test_default_auto_close_deadline(self):
        # Seven full working days after Monday 10:00.
        assert add_working_hours(_utc(8, 10), 56) == _utc(17, 10)

    def test_default_deadline_from_before_opening(self):
        # Starts at Monday 09:00; seven full days end on Tuesday at closing.
        assert add_working_hours(_utc(8, 8), 56) == _utc(16, 17)
        assert add_working_hours(_utc(13, 12), 56) == _utc(23, 17)

    def test_fractional_hours(self):
        assert add_working_hours(_utc(8, 16, 30), 1.5) == _utc(9, 10)

    def test_result_is_utc(self):
        result = add_working_hours(_utc(8, 10), 1, BusinessWindow(timezone_name="Asia/Kolkata"))
        assert result.tzinfo == UTC

    def test_negative_hours_rejected(self):
        with pytest.raises(ValueError, match=">= 0"):
            add_working_hours(_utc(8, 10), -1)

    def test_naive_start_rejected(self):
        with pytest.raises(ValueError, match="Naive"):
            add_working_hours(datetime(2024, 1, 8, 10), 1)


class TestCustomWindows:

    def test_local_timezone_window(self):
        window = BusinessWindow(timezone_name="Asia/Kolkata")
        # 04:30 UTC is 10:00 in Kolkata.
        start = _utc(8, 4, 30)
        expected = datetime(2024, 1, 8, 12, 0, tzinfo=ZoneInfo("Asia/Kolkata"))
        assert add_working_hours(start, 2, window) == expected

    def test_six_day_week(self):
        window = BusinessWindow(working_days=frozenset({0, 1, 2, 3, 4, 5}))
        assert add_working_hours(_utc(12, 16), 2, window) == _utc(13, 10)

    def test_short_day(self):
        window = BusinessWindow(start=time(10, 0), end=time(14, 0))
        assert add_working_hours(_utc(8, 13), 2, window) == _utc(9, 11)

    def test_start_must_precede_end(self):
        with pytest.raises(ValueError, match="precede"):
            BusinessWindow(start=time(17, 0), end=time(9, 0))

    def test_working_days_must_be_weekdays(self):
        with pytest.raises(ValueError):
            BusinessWindow(working_days=frozenset({7}))
        with pytest.raises(ValueError):
            BusinessWindow(working_days=frozenset())


class TestNormalizeToWindow:

    def test_inside_window_unchanged(self):
        assert normalize_to_window(_utc(8, 11)) == _utc(8, 11)

    def test_closing_time_moves_to_next_opening(self):
        assert normalize_to_window(_utc(8, 17)) == _utc(9, 9)

    def test_sunday_moves_to_monday(self):
        assert normalize_to_window(_utc(14, 23)) == _utc(15, 9)


class TestWorkingHoursBetween:

    def test_same_day(self):
        assert working_hours_between(_utc(8, 10), _utc(8, 15)) == 5

    def test_across_weekend(self):
        assert working_hours_between(_utc(12, 16), _utc(15, 10)) == 2

    def test_end_before_start(self):
        assert working_hours_between(_utc(9, 10), _utc(8, 10)) == 0

    def test_inverse_of_add(self):
        start = _utc(10, 14, 15)
        for hours in (0.5, 3, 8, 13, 56):
            end = add_working_hours(start, hours)
            assert working_hours_between(start, end) == pytest.approx(hours)

    def test_whole_week(self):
        assert working_hours_between(_utc(8, 0), _utc(8, 0) + timedelta(days=7)) == 40

    def test_default_window_matches_business_hours(self):
        assert DEFAULT_WINDOW.day_length == timedelta(hours=8)
