"""
Schedule Text Parsing
=====================

Turns the free-text schedule strings published by quiz sources
("Wednesday 20:00", "Sundays, 7pm", "First Tuesday of the month") into a
day of week, a start time and a recurrence frequency.

Every function here is pure. Text that cannot be parsed raises
``ScheduleParseError`` rather than falling back to a guessed default.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import time
from decimal import Decimal, InvalidOperation

from trivia_ingest.core.enums import Frequency

# ISO weekday order: index 0 is Monday (code 1)
DAY_NAMES: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

_TIME_PATTERN = re.compile(r"(\d{2}):(\d{2})")
_LOOSE_TIME_PATTERN = re.compile(
    r"\b(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)", re.IGNORECASE
)
_CLOCK_TIME_PATTERN = re.compile(r"\b(\d{1,2})[:.](\d{2})\b")
_FEE_AMOUNT_PATTERN = re.compile(r"(\d+(?:[.,]\d{1,2})?)")

_MONTHLY_ORDINALS = ("first", "second", "third", "fourth", "last")
_MONTHLY_PHRASES = ("of the month", "of every month")
_BIWEEKLY_PHRASES = ("every other", "bi-weekly", "biweekly", "fortnightly")


class ScheduleParseError(ValueError):
    """Raised when schedule text does not contain a usable day or time."""


@dataclass(frozen=True)
class ParsedSchedule:
    """A fully resolved weekly slot."""

    day_of_week: int
    start_time: time
    frequency: Frequency

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week - 1]

    def to_text(self) -> str:
        return format_time_text(self.day_of_week, self.start_time)


def parse_day_of_week(text: str) -> int:
    """
    Parse the leading weekday token of a schedule string.

    Matching is case-sensitive and anchored at the start of the text, so
    "Sundays, 7pm" is Sunday but "sunday" or "Quiz on Sunday" are not.

    Args:
        text: Schedule text

    Returns:
        Day code, 1 for Monday through 7 for Sunday

    Raises:
        ScheduleParseError: If no weekday leads the text
    """
    stripped = (text or "").lstrip()
    for index, name in enumerate(DAY_NAMES, start=1):
        if stripped.startswith(name):
            return index
    raise ScheduleParseError(f"No day of week found in {text!r}")


def parse_start_time(text: str) -> time:
    """
    Find the first HH:MM time anywhere in the text.

    Raises:
        ScheduleParseError: If no valid HH:MM time is present
    """
    for match in _TIME_PATTERN.finditer(text or ""):
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour < 24 and minute < 60:
            return time(hour, minute)
    raise ScheduleParseError(f"No HH:MM start time found in {text!r}")


def parse_frequency(text: str | None) -> Frequency:
    """
    Infer recurrence from an event title or schedule string.

    Monthly keywords win over biweekly ones; anything else is weekly.
    """
    lowered = (text or "").lower()

    has_ordinal = any(ordinal in lowered for ordinal in _MONTHLY_ORDINALS)
    has_month_phrase = any(phrase in lowered for phrase in _MONTHLY_PHRASES)
    if (has_ordinal and has_month_phrase) or "monthly" in lowered:
        return Frequency.MONTHLY

    if any(phrase in lowered for phrase in _BIWEEKLY_PHRASES):
        return Frequency.BIWEEKLY

    return Frequency.WEEKLY


def coerce_time(value: time | str) -> time:
    """Accept a time object or an "HH:MM" / "HH:MM:SS" string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        parts = [int(part) for part in str(value).strip().split(":")]
        return time(parts[0], parts[1] if len(parts) > 1 else 0)
    except (ValueError, IndexError) as e:
        raise ScheduleParseError(f"Invalid start time {value!r}") from e


def parse_schedule(
    text: str,
    *,
    day_of_week: int | None = None,
    start_time: time | str | None = None,
    frequency_text: str | None = None,
) -> ParsedSchedule:
    """
    Parse schedule text into a day, start time and frequency.

    Explicit ``day_of_week`` and ``start_time`` values supplied by the
    caller take precedence over anything parsed from the text, even when
    the two disagree.

    Args:
        text: Free-text schedule, e.g. "Wednesday 20:00"
        day_of_week: Optional day code (1=Mon..7=Sun) overriding the text
        start_time: Optional start time overriding the text
        frequency_text: Text to infer frequency from (defaults to ``text``)

    Returns:
        ParsedSchedule

    Raises:
        ScheduleParseError: If the day or time cannot be determined
    """
    if day_of_week is not None:
        if not 1 <= int(day_of_week) <= 7:
            raise ScheduleParseError(f"Day of week out of range: {day_of_week}")
        day = int(day_of_week)
    else:
        day = parse_day_of_week(text)

    start = coerce_time(start_time) if start_time is not None else parse_start_time(text)
    frequency = parse_frequency(frequency_text if frequency_text is not None else text)

    return ParsedSchedule(day_of_week=day, start_time=start, frequency=frequency)


def parse_loose_time(text: str | None) -> time | None:
    """
    Parse human time formats such as "7pm", "7:30 pm" or "19:00".

    Returns None when nothing time-like is present. Used by source adapters
    to normalise listing text before it reaches ``parse_schedule``.
    """
    if not text:
        return None

    match = _LOOSE_TIME_PATTERN.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3).lower().replace(".", "")
        if not 1 <= hour <= 12 or minute > 59:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        return time(hour, minute)

    match = _CLOCK_TIME_PATTERN.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour < 24 and minute < 60:
            return time(hour, minute)

    return None


def format_time_text(day_of_week: int, start_time: time) -> str:
    """Render the canonical "Wednesday 20:00" form."""
    return f"{DAY_NAMES[day_of_week - 1]} {start_time.strftime('%H:%M')}"


def parse_entry_fee(text: str | None) -> int | None:
    """
    Convert fee text into cents.

    "£2.50" -> 250, "$5" -> 500. Free or amount-less text returns None.
    """
    if not text:
        return None
    if "free" in text.lower():
        return None

    match = _FEE_AMOUNT_PATTERN.search(text)
    if not match:
        return None

    try:
        amount = Decimal(match.group(1).replace(",", "."))
    except InvalidOperation:
        return None

    cents = int((amount * 100).to_integral_value())
    return cents or None
