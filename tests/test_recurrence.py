"""Tests for recurrence translation, validation and occurrence search.

Validates:
- Cadence presets map to the fixed five-field expressions
- Custom expressions are validated and kept verbatim
- Field syntax: lists, ranges, steps, names, out-of-range values
- Next occurrences in a timezone, across DST gaps, with holidays skipped
- Preview bounds
"""

from datetime import date, datetime, timezone
from itertools import product

import pytest

from autopost.exceptions import RecurrenceSyntaxError, ValidationError
from autopost.scheduling.models import Frequency, TimeSlot
from autopost.scheduling.recurrence import (
    build_expression,
    next_occurrences,
    parse_expression,
    parse_time_of_day,
    preview,
    slot_time,
    validate_expression,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Translation
# =============================================================================


class TestBuildExpression:
    """Tests for cadence preset -> expression translation."""

    @pytest.mark.parametrize(
        "frequency, slot, expected",
        [
            (Frequency.DAILY, TimeSlot.AFTERNOON, "0 14 * * *"),
            (Frequency.WEEKLY_3, TimeSlot.EVENING, "0 18 * * 1,3,5"),
            (Frequency.WEEKLY_2, TimeSlot.MORNING, "0 9 * * 2,5"),
            (Frequency.WEEKLY_1, TimeSlot.NIGHT, "0 22 * * 1"),
            (Frequency.MONTHLY_2, TimeSlot.MORNING, "0 9 1,15 * *"),
        ],
    )
    def test_presets(self, frequency, slot, expected):
        assert build_expression(frequency, slot) == expected

    def test_accepts_string_values(self):
        """Raw request strings are accepted as well as enum members."""
        assert build_expression("weekly_2", "morning") == "0 9 * * 2,5"

    def test_specific_time(self):
        assert build_expression(Frequency.DAILY, TimeSlot.SPECIFIC, "07:30") == "30 7 * * *"

    def test_specific_time_defaults_to_nine(self):
        assert build_expression(Frequency.DAILY, TimeSlot.SPECIFIC) == "0 9 * * *"

    def test_specific_time_accepts_seconds(self):
        """TIME columns come back as HH:MM:SS."""
        assert build_expression(Frequency.WEEKLY_1, TimeSlot.SPECIFIC, "06:05:00") == "5 6 * * 1"

    @pytest.mark.parametrize("bad", ["25:00", "9", "12:60", "noon", ""])
    def test_invalid_specific_time(self, bad):
        with pytest.raises(ValidationError):
            build_expression(Frequency.DAILY, TimeSlot.SPECIFIC, bad or "  ")

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError, match="frequency"):
            build_expression("hourly", TimeSlot.MORNING)

    def test_unknown_slot(self):
        with pytest.raises(ValidationError, match="time_slot"):
            build_expression(Frequency.DAILY, "brunch")

    def test_custom_is_used_verbatim(self):
        assert build_expression(Frequency.CUSTOM, TimeSlot.MORNING, None, "*/15 8-18 * * 1-5") == (
            "*/15 8-18 * * 1-5"
        )

    def test_custom_requires_expression(self):
        with pytest.raises(ValidationError):
            build_expression(Frequency.CUSTOM, TimeSlot.MORNING)

    def test_custom_invalid_expression(self):
        with pytest.raises(RecurrenceSyntaxError):
            build_expression(Frequency.CUSTOM, TimeSlot.MORNING, None, "61 * * * *")

    @pytest.mark.parametrize(
        "frequency, slot",
        list(product(
            [f for f in Frequency if f is not Frequency.CUSTOM],
            [s for s in TimeSlot],
        )),
    )
    def test_deterministic(self, frequency, slot):
        """Identical inputs always give the identical expression."""
        first = build_expression(frequency, slot, "10:15")
        second = build_expression(frequency, slot, "10:15")
        assert first == second
        assert validate_expression(first)

    def test_slot_times(self):
        assert slot_time(TimeSlot.MORNING) == (9, 0)
        assert slot_time(TimeSlot.AFTERNOON) == (14, 0)
        assert slot_time(TimeSlot.EVENING) == (18, 0)
        assert slot_time(TimeSlot.NIGHT) == (22, 0)

    def test_parse_time_of_day(self):
        assert parse_time_of_day("7:05") == (7, 5)
        assert parse_time_of_day("23:59") == (23, 59)


# =============================================================================
# Parsing / validation
# =============================================================================


class TestParseExpression:
    """Tests for five-field parsing."""

    def test_wildcards(self):
        parsed = parse_expression("* * * * *")
        assert len(parsed.minutes) == 60
        assert len(parsed.hours) == 24
        assert parsed.weekdays == frozenset(range(7))
        assert not parsed.days_restricted
        assert not parsed.weekdays_restricted

    def test_lists_ranges_steps(self):
        parsed = parse_expression("0,30 9-17/4 1,15 */3 mon-fri")
        assert parsed.minutes == {0, 30}
        assert parsed.hours == {9, 13, 17}
        assert parsed.days == {1, 15}
        assert parsed.months == {1, 4, 7, 10}
        assert parsed.weekdays == {1, 2, 3, 4, 5}

    def test_month_names(self):
        assert parse_expression("0 0 1 jan,dec *").months == {1, 12}

    def test_sunday_as_seven(self):
        assert parse_expression("0 0 * * 7").weekdays == {0}

    def test_start_with_step(self):
        assert parse_expression("5/20 * * * *").minutes == {5, 25, 45}

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * * 13 *",
            "* * * * 8",
            "5-1 * * * *",
            "*/0 * * * *",
            "a b c d e",
            "1,,2 * * * *",
        ],
    )
    def test_invalid(self, expression):
        with pytest.raises(RecurrenceSyntaxError):
            parse_expression(expression)
        assert validate_expression(expression) is False

    def test_error_names_the_field(self):
        with pytest.raises(RecurrenceSyntaxError, match="hour"):
            parse_expression("0 99 * * *")


# =============================================================================
# Occurrences
# =============================================================================


class TestNextOccurrences:
    """Tests for the field-by-field occurrence search."""

    def test_weekly_two_in_tokyo(self):
        """Tuesday/Friday 09:00 JST is 00:00 UTC the same day."""
        # 2026-10-19 is a Monday
        result = next_occurrences(
            "0 9 * * 2,5", 3, timezone="Asia/Tokyo", after=utc(2026, 10, 19, 0, 0)
        )
        assert result == [
            utc(2026, 10, 20, 0, 0),
            utc(2026, 10, 23, 0, 0),
            utc(2026, 10, 27, 0, 0),
        ]

    def test_results_are_utc(self):
        result = next_occurrences("0 9 * * *", 1, timezone="Asia/Tokyo", after=utc(2026, 1, 1))
        assert result[0].tzinfo == timezone.utc

    def test_strictly_after(self):
        result = next_occurrences(
            "0 9 * * 2,5", 1, timezone="Asia/Tokyo", after=utc(2026, 10, 20, 0, 0)
        )
        assert result == [utc(2026, 10, 23, 0, 0)]

    def test_twice_monthly(self):
        result = next_occurrences("0 9 1,15 * *", 2, after=utc(2026, 1, 15, 9, 0))
        assert result == [utc(2026, 2, 1, 9, 0), utc(2026, 2, 15, 9, 0)]

    def test_day_of_month_or_day_of_week(self):
        """With both day fields restricted, either one matching is enough."""
        # 2026-02-01 is a Sunday; the first Friday is the 6th
        result = next_occurrences("0 0 13 * 5", 2, after=utc(2026, 2, 1))
        assert result == [utc(2026, 2, 6), utc(2026, 2, 13)]

    def test_skips_nonexistent_dst_time(self):
        """02:30 does not exist in New York on 2026-03-08 (spring forward)."""
        result = next_occurrences(
            "30 2 * * *", 1, timezone="America/New_York", after=utc(2026, 3, 7, 12, 0)
        )
        assert result == [utc(2026, 3, 9, 6, 30)]

    def test_skips_holidays(self):
        result = next_occurrences(
            "0 9 * * *",
            1,
            after=utc(2026, 5, 4, 10, 0),
            skip_day=lambda day: day == date(2026, 5, 5),
        )
        assert result == [utc(2026, 5, 6, 9, 0)]

    def test_impossible_date_yields_nothing(self):
        assert next_occurrences("0 0 30 2 *", 3, after=utc(2026, 1, 1)) == []

    def test_leap_day(self):
        result = next_occurrences("0 0 29 2 *", 1, after=utc(2026, 1, 1))
        assert result == [utc(2028, 2, 29)]

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            next_occurrences("0 9 * * *", 1, timezone="Mars/Olympus")


class TestPreview:
    """Tests for expression preview bounds."""

    def test_returns_requested_count(self):
        assert len(preview("*/5 * * * *", count=10, after=utc(2026, 1, 1))) == 10

    @pytest.mark.parametrize("count", [0, 11, -1])
    def test_count_out_of_bounds(self, count):
        with pytest.raises(ValidationError):
            preview("* * * * *", count=count)

    def test_invalid_expression(self):
        with pytest.raises(RecurrenceSyntaxError):
            preview("bad", count=3)
