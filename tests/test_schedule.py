"""Tests for schedule text parsing."""

from datetime import time

import pytest

from trivia_ingest.core.enums import Frequency
from trivia_ingest.core.schedule import (
    ScheduleParseError,
    format_time_text,
    parse_day_of_week,
    parse_entry_fee,
    parse_frequency,
    parse_loose_time,
    parse_schedule,
    parse_start_time,
)


class TestParseDayOfWeek:
    """Tests for leading weekday detection."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Monday 19:00", 1),
            ("Tuesday 19:00", 2),
            ("Wednesday 20:00", 3),
            ("Thursday 20:00", 4),
            ("Friday 18:30", 5),
            ("Saturday 21:00", 6),
            ("Sunday 19:00", 7),
        ],
    )
    def test_weekday_codes(self, text: str, expected: int) -> None:
        """Each weekday maps to its ISO code."""
        assert parse_day_of_week(text) == expected

    def test_plural_and_leading_space(self) -> None:
        """Plural day names and leading whitespace still match."""
        assert parse_day_of_week("  Sundays, 7pm") == 7

    def test_case_sensitive(self) -> None:
        """Lowercase day names are rejected."""
        with pytest.raises(ScheduleParseError):
            parse_day_of_week("wednesday 20:00")

    def test_day_must_lead(self) -> None:
        """A weekday in the middle of the text is not used."""
        with pytest.raises(ScheduleParseError):
            parse_day_of_week("Quiz on Wednesday 20:00")


class TestParseStartTime:
    """Tests for HH:MM extraction."""

    def test_finds_time(self) -> None:
        assert parse_start_time("Wednesday 20:00") == time(20, 0)

    def test_skips_invalid_time(self) -> None:
        """An out-of-range match is skipped in favour of a later valid one."""
        assert parse_start_time("Ref 99:99, starts 19:30") == time(19, 30)

    def test_missing_time(self) -> None:
        with pytest.raises(ScheduleParseError):
            parse_start_time("Wednesday 8pm")


class TestParseFrequency:
    """Tests for recurrence inference."""

    def test_default_weekly(self) -> None:
        assert parse_frequency("Quiz at Pub A") == Frequency.WEEKLY
        assert parse_frequency(None) == Frequency.WEEKLY

    def test_biweekly(self) -> None:
        assert parse_frequency("Fortnightly Quiz") == Frequency.BIWEEKLY
        assert parse_frequency("Every other Tuesday") == Frequency.BIWEEKLY
        assert parse_frequency("Bi-weekly trivia") == Frequency.BIWEEKLY

    def test_monthly(self) -> None:
        assert parse_frequency("First Thursday of the month") == Frequency.MONTHLY
        assert parse_frequency("Last Friday of every month") == Frequency.MONTHLY
        assert parse_frequency("Monthly music quiz") == Frequency.MONTHLY

    def test_ordinal_without_month_is_weekly(self) -> None:
        """An ordinal alone does not make an event monthly."""
        assert parse_frequency("First prize £50") == Frequency.WEEKLY


class TestParseSchedule:
    """Tests for the combined schedule parser."""

    def test_parse_text(self) -> None:
        schedule = parse_schedule("Wednesday 20:00")
        assert schedule.day_of_week == 3
        assert schedule.start_time == time(20, 0)
        assert schedule.frequency == Frequency.WEEKLY
        assert schedule.day_name == "Wednesday"
        assert schedule.to_text() == "Wednesday 20:00"

    def test_frequency_from_title(self) -> None:
        schedule = parse_schedule("Tuesday 19:30", frequency_text="Fortnightly Quiz")
        assert schedule.frequency == Frequency.BIWEEKLY

    def test_caller_values_take_precedence(self) -> None:
        """Explicit day and time win even when the text disagrees."""
        schedule = parse_schedule("Wednesday 20:00", day_of_week=5, start_time="18:45")
        assert schedule.day_of_week == 5
        assert schedule.start_time == time(18, 45)

    def test_day_out_of_range(self) -> None:
        with pytest.raises(ScheduleParseError):
            parse_schedule("Wednesday 20:00", day_of_week=8)

    def test_unparseable(self) -> None:
        with pytest.raises(ScheduleParseError):
            parse_schedule("Every week, sometime")

    def test_parse_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_schedule("")


class TestLooseTime:
    """Tests for human time formats used by adapters."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Sundays, 7pm", time(19, 0)),
            ("Wednesday 7:30 pm", time(19, 30)),
            ("Thursdays 8.15pm", time(20, 15)),
            ("12pm lunch quiz", time(12, 0)),
            ("12am late quiz", time(0, 0)),
            ("Monday 19:00", time(19, 0)),
        ],
    )
    def test_formats(self, text: str, expected: time) -> None:
        assert parse_loose_time(text) == expected

    def test_no_time(self) -> None:
        assert parse_loose_time("Every Tuesday") is None
        assert parse_loose_time(None) is None

    def test_format_time_text(self) -> None:
        assert format_time_text(7, time(19, 0)) == "Sunday 19:00"


class TestEntryFee:
    """Tests for fee text conversion."""

    def test_amounts(self) -> None:
        assert parse_entry_fee("£2.50") == 250
        assert parse_entry_fee("$5") == 500
        assert parse_entry_fee("€3,50 per person") == 350

    def test_free(self) -> None:
        assert parse_entry_fee("Free") is None
        assert parse_entry_fee("FREE ENTRY") is None
        assert parse_entry_fee(None) is None
        assert parse_entry_fee("Pay what you like") is None
