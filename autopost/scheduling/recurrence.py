"""
Recurrence translation and evaluation.

Turns a cadence preset (``Frequency`` + ``TimeSlot``) into a canonical
five-field recurrence expression::

    minute  hour  day-of-month  month  day-of-week

validates caller-supplied expressions, and computes upcoming occurrences
with a field-by-field candidate search in the schedule's timezone.

Everything in this module is pure: no I/O, and identical inputs always
produce identical outputs.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autopost.exceptions import RecurrenceSyntaxError, ValidationError
from autopost.scheduling.models import Frequency, TimeSlot
from autopost.utils import ensure_utc, utc_now


# =============================================================================
# CADENCE TABLES
# =============================================================================

SLOT_TIMES: Dict[TimeSlot, Tuple[int, int]] = {
    TimeSlot.MORNING: (9, 0),
    TimeSlot.AFTERNOON: (14, 0),
    TimeSlot.EVENING: (18, 0),
    TimeSlot.NIGHT: (22, 0),
}

DEFAULT_TIME: Tuple[int, int] = (9, 0)

# frequency -> (day-of-month, day-of-week)
CADENCE_DAYS: Dict[Frequency, Tuple[str, str]] = {
    Frequency.DAILY: ("*", "*"),
    Frequency.WEEKLY_3: ("*", "1,3,5"),
    Frequency.WEEKLY_2: ("*", "2,5"),
    Frequency.WEEKLY_1: ("*", "1"),
    Frequency.MONTHLY_2: ("1,15", "*"),
}

# Accepts "HH:MM" and the "HH:MM:SS" form Postgres returns for TIME columns.
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])(?::([0-5][0-9]))?$")

MONTH_NAMES = ["jan", "feb", "mar", "apr", "may", "jun",
               "jul", "aug", "sep", "oct", "nov", "dec"]
DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

# How far ahead the occurrence search looks before giving up.  Eight years
# covers the longest gap between two Feb 29ths.
SEARCH_HORIZON_YEARS = 9


# =============================================================================
# TRANSLATION
# =============================================================================


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into ``(hour, minute)``.

    Raises:
        ValidationError: If *value* is not a valid time of day.
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def slot_time(time_slot: TimeSlot, specific_time: Optional[str] = None) -> Tuple[int, int]:
    """Resolve a time slot to ``(hour, minute)``.

    ``SPECIFIC`` uses *specific_time*, falling back to 09:00 when absent.
    """
    if time_slot is TimeSlot.SPECIFIC:
        if specific_time:
            return parse_time_of_day(specific_time)
        return DEFAULT_TIME
    return SLOT_TIMES[time_slot]


def build_expression(
    frequency: Union[Frequency, str],
    time_slot: Union[TimeSlot, str],
    specific_time: Optional[str] = None,
    custom_expression: Optional[str] = None,
) -> str:
    """Translate a cadence preset into a canonical recurrence expression.

    For ``Frequency.CUSTOM`` the caller's *custom_expression* is returned
    unchanged after it passes :func:`parse_expression`.

    Raises:
        ValidationError: Unknown frequency/slot, bad time, or a missing
            custom expression.
        RecurrenceSyntaxError: The custom expression is malformed.
    """
    frequency = coerce_enum(Frequency, frequency, "frequency")
    time_slot = coerce_enum(TimeSlot, time_slot, "time_slot")

    if frequency is Frequency.CUSTOM:
        if not custom_expression or not custom_expression.strip():
            raise ValidationError("A custom frequency requires a recurrence expression")
        expression = custom_expression.strip()
        parse_expression(expression)
        return expression

    hour, minute = slot_time(time_slot, specific_time)
    day_of_month, day_of_week = CADENCE_DAYS[frequency]
    return f"{minute} {hour} {day_of_month} * {day_of_week}"


def coerce_enum(enum_cls, value, name: str):
    """Coerce *value* to a member of *enum_cls* or raise ``ValidationError``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {name} {value!r}; expected one of: {allowed}")


# =============================================================================
# PARSING
# =============================================================================


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    low: int
    high: int
    names: Optional[Sequence[str]] = None
    name_offset: int = 0


_FIELDS: Tuple[_FieldSpec, ...] = (
    _FieldSpec("minute", 0, 59),
    _FieldSpec("hour", 0, 23),
    _FieldSpec("day-of-month", 1, 31),
    _FieldSpec("month", 1, 12, MONTH_NAMES, 1),
    _FieldSpec("day-of-week", 0, 7, DAY_NAMES, 0),
)


@dataclass(frozen=True)
class CronExpression:
    """A parsed five-field recurrence expression.

    ``weekdays`` uses 0=Sunday..6=Saturday; a literal 7 is folded into 0.
    When both day fields are restricted, a day matches if *either* does,
    as in classic cron.
    """

    source: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    days_restricted: bool
    weekdays_restricted: bool

    def matches_day(self, day: date) -> bool:
        if day.month not in self.months:
            return False
        dom_ok = day.day in self.days
        dow_ok = (day.isoweekday() % 7) in self.weekdays
        if self.days_restricted and self.weekdays_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def next_after(
        self,
        after: datetime,
        zone: ZoneInfo,
        skip_day: Optional[Callable[[date], bool]] = None,
    ) -> Optional[datetime]:
        """Return the first occurrence strictly after *after*, in UTC.

        The search walks local wall-clock time in *zone*, jumping a whole
        month, day, or hour whenever that field cannot match.  Local times
        that do not exist (DST gaps) are skipped.  Returns ``None`` when
        nothing matches within the search horizon.
        """
        after_utc = ensure_utc(after)
        local = after_utc.astimezone(zone).replace(tzinfo=None, second=0, microsecond=0)
        candidate = local + timedelta(minutes=1)
        horizon = candidate.year + SEARCH_HORIZON_YEARS
        sorted_hours = sorted(self.hours)
        sorted_minutes = sorted(self.minutes)

        while candidate.year <= horizon:
            if candidate.month not in self.months:
                candidate = _first_of_next_month(candidate)
                continue

            day = candidate.date()
            if not self.matches_day(day) or (skip_day is not None and skip_day(day)):
                candidate = datetime(day.year, day.month, day.day) + timedelta(days=1)
                continue

            hour = _next_in(sorted_hours, candidate.hour)
            if hour is None:
                candidate = datetime(day.year, day.month, day.day) + timedelta(days=1)
                continue
            if hour != candidate.hour:
                candidate = candidate.replace(hour=hour, minute=0)

            minute = _next_in(sorted_minutes, candidate.minute)
            if minute is None:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            candidate = candidate.replace(minute=minute)

            aware = candidate.replace(tzinfo=zone)
            as_utc = aware.astimezone(ZoneInfo("UTC"))
            if as_utc.astimezone(zone).replace(tzinfo=None) != candidate:
                # Wall-clock time does not exist on this day (DST gap).
                candidate += timedelta(minutes=1)
                continue
            if as_utc <= after_utc:
                candidate += timedelta(minutes=1)
                continue
            return ensure_utc(as_utc)

        return None


def _next_in(sorted_values: List[int], start: int) -> Optional[int]:
    for value in sorted_values:
        if value >= start:
            return value
    return None


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1)
    return datetime(moment.year, moment.month + 1, 1)


def _parse_value(token: str, spec: _FieldSpec, expression: str) -> int:
    if spec.names is not None and token.lower() in spec.names:
        return spec.names.index(token.lower()) + spec.name_offset
    if not token.isdigit():
        raise RecurrenceSyntaxError(
            expression, f"{spec.name} value {token!r} is not a number"
        )
    value = int(token)
    if not spec.low <= value <= spec.high:
        raise RecurrenceSyntaxError(
            expression,
            f"{spec.name} value {value} out of range {spec.low}-{spec.high}",
        )
    return value


def _parse_field(text: str, spec: _FieldSpec, expression: str) -> FrozenSet[int]:
    values = set()
    for part in text.split(","):
        if not part:
            raise RecurrenceSyntaxError(expression, f"empty list entry in {spec.name}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise RecurrenceSyntaxError(
                    expression, f"{spec.name} step {step_text!r} must be a positive number"
                )
            step = int(step_text)

        if part == "*":
            start, end = spec.low, spec.high
        elif "-" in part:
            low_text, high_text = part.split("-", 1)
            start = _parse_value(low_text, spec, expression)
            end = _parse_value(high_text, spec, expression)
            if start > end:
                raise RecurrenceSyntaxError(
                    expression, f"{spec.name} range {part!r} is reversed"
                )
        else:
            start = _parse_value(part, spec, expression)
            # "a/n" means "from a to the end of the range, every n"
            end = spec.high if step != 1 else start

        values.update(range(start, end + 1, step))
    return frozenset(values)


def parse_expression(expression: str) -> CronExpression:
    """Parse and validate a five-field recurrence expression.

    Supports ``*``, numbers, ``a-b`` ranges, ``,`` lists, ``/n`` steps and
    three-letter month/day names.

    Raises:
        RecurrenceSyntaxError: On any syntax or range problem.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise RecurrenceSyntaxError(str(expression), "expression is empty")

    parts = expression.split()
    if len(parts) != 5:
        raise RecurrenceSyntaxError(
            expression, f"expected 5 space-separated fields, got {len(parts)}"
        )

    parsed = [_parse_field(text, spec, expression) for text, spec in zip(parts, _FIELDS)]
    weekdays = frozenset(0 if day == 7 else day for day in parsed[4])

    return CronExpression(
        source=expression,
        minutes=parsed[0],
        hours=parsed[1],
        days=parsed[2],
        months=parsed[3],
        weekdays=weekdays,
        days_restricted=parts[2] != "*",
        weekdays_restricted=parts[4] != "*",
    )


def validate_expression(expression: str) -> bool:
    """Return ``True`` if *expression* is a well-formed recurrence expression."""
    try:
        parse_expression(expression)
    except RecurrenceSyntaxError:
        return False
    return True


# =============================================================================
# OCCURRENCES
# =============================================================================


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone.

    Raises:
        ValidationError: If *name* is not a known timezone.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone {name!r}")


def next_occurrences(
    expression: Union[str, CronExpression],
    count: int,
    timezone: str = "UTC",
    after: Optional[datetime] = None,
    skip_day: Optional[Callable[[date], bool]] = None,
) -> List[datetime]:
    """Compute the next *count* occurrences of *expression*.

    Args:
        expression: Expression text or an already parsed expression.
        count: How many occurrences to return.
        timezone: IANA zone the expression is evaluated in.
        after: Start point (exclusive); defaults to now.
        skip_day: Optional predicate on local dates to exclude (holidays).

    Returns:
        Up to *count* timezone-aware UTC datetimes in ascending order.
        Fewer are returned when the expression stops matching (e.g. it
        names a day that never occurs).
    """
    parsed = expression if isinstance(expression, CronExpression) else parse_expression(expression)
    zone = resolve_timezone(timezone)
    cursor = after or utc_now()

    results: List[datetime] = []
    while len(results) < count:
        occurrence = parsed.next_after(cursor, zone, skip_day)
        if occurrence is None:
            break
        results.append(occurrence)
        cursor = occurrence
    return results


def preview(
    expression: str,
    count: int = 5,
    timezone: str = "UTC",
    max_count: int = 10,
    after: Optional[datetime] = None,
) -> List[datetime]:
    """Validate *expression* and return its next *count* occurrences.

    Raises:
        ValidationError: If *count* is outside ``1..max_count``.
        RecurrenceSyntaxError: If the expression is malformed.
    """
    if not 1 <= count <= max_count:
        raise ValidationError(f"count must be between 1 and {max_count}, got {count}")
    return next_occurrences(expression, count, timezone=timezone, after=after)


__all__ = [
    "SLOT_TIMES",
    "CADENCE_DAYS",
    "CronExpression",
    "coerce_enum",
    "parse_time_of_day",
    "slot_time",
    "build_expression",
    "parse_expression",
    "validate_expression",
    "resolve_timezone",
    "next_occurrences",
    "preview",
]
