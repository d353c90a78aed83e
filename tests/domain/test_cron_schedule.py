"""
Tests for cron evaluation used by the auto-close job.

Covers:
- parse_cron(): wildcards, lists, ranges, steps, malformed expressions
- matches_cron(): Sunday=0 day-of-week convention
- next_run_after(): strictly after, timezone-local evaluation, no match
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from replenishment_kernel.domain.schedule import matches_cron, next_run_after, parse_cron

UTC = timezone.utc


class TestParseCron:

    def test_default_auto_close_expression(self):
        spec = parse_cron("5 2 * * *")
        assert spec.minutes == frozenset({5})
        assert spec.hours == frozenset({2})
        assert len(spec.days_of_month) == 31
        assert spec.expression == "5 2 * * *"

    def test_lists_ranges_and_steps(self):
        spec = parse_cron("*/15 9-17/4 1,15 * 1-5")
        assert spec.minutes == frozenset({0, 15, 30, 45})
        assert spec.hours == frozenset({9, 13, 17})
        assert spec.days_of_month == frozenset({1, 15})
        assert spec.days_of_week == frozenset({1, 2, 3, 4, 5})

    @pytest.mark.parametrize(
        "expression",
        ["* * * *", "60 * * * *", "* 24 * * *", "*/0 * * * *", "5-1 * * * *", "a * * * *"],
    )
    def test_malformed(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestMatchesCron:

    def test_sunday_is_zero(self):
        spec = parse_cron("0 12 * * 0")
        assert matches_cron(spec, datetime(2024, 1, 14, 12, 0, tzinfo=UTC))
        assert not matches_cron(spec, datetime(2024, 1, 15, 12, 0, tzinfo=UTC))


class TestNextRunAfter:

    def test_later_the_same_day(self):
        spec = parse_cron("5 2 * * *")
        after = datetime(2024, 1, 8, 1, 0, tzinfo=UTC)
        assert next_run_after(spec, after) == datetime(2024, 1, 8, 2, 5, tzinfo=UTC)

    def test_strictly_after(self):
        spec = parse_cron("5 2 * * *")
        after = datetime(2024, 1, 8, 2, 5, tzinfo=UTC)
        assert next_run_after(spec, after) == datetime(2024, 1, 9, 2, 5, tzinfo=UTC)

    def test_evaluated_in_local_timezone(self):
        spec = parse_cron("5 2 * * *")
        after = datetime(2024, 1, 8, 12, 0, tzinfo=UTC)
        # 02:05 in Kolkata is 20:35 UTC the previous evening.
        assert next_run_after(spec, after, ZoneInfo("Asia/Kolkata")) == datetime(
            2024, 1, 8, 20, 35, tzinfo=UTC
        )

    def test_impossible_date_raises(self):
        with pytest.raises(ValueError, match="No cron match"):
            next_run_after(parse_cron("0 0 31 2 *"), datetime(2024, 1, 8, tzinfo=UTC))
