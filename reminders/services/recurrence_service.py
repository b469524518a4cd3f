"""
Recurrence Calculation Service.

Maps a recurring reminder rule onto the concrete calendar dates it falls on.
Uses python-dateutil for the date arithmetic:
- Weekly / biweekly patterns (rrule with interval 1 or 2)
- Monthly patterns (relativedelta, clamped to the last day of short months)

Everything here is pure: no I/O, no clock access.
"""

from datetime import date, datetime, time, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from database.models import ReminderFrequency

# Mapping from integer (0=Sunday, as sent by the booking front end) to
# dateutil weekday constants
WEEKDAY_MAP = {
    0: SU,  # Sunday
    1: MO,  # Monday
    2: TU,  # Tuesday
    3: WE,  # Wednesday
    4: TH,  # Thursday
    5: FR,  # Friday
    6: SA,  # Saturday
}

# Longest gap between two occurrences of any rule (monthly on the 31st)
MAX_OCCURRENCE_GAP_DAYS = 62


class RecurrenceRuleError(ValueError):
    """Raised when a recurrence rule is missing or has inconsistent fields."""


def validate_rule_fields(
    frequency: str | ReminderFrequency,
    day_of_week: int | None,
    day_of_month: int | None,
) -> ReminderFrequency:
    """
    Check the frequency/anchor invariant.

    day_of_week must be set (0-6) iff frequency is weekly or biweekly;
    day_of_month must be set (1-31) iff frequency is monthly.

    Returns:
        The frequency as a ReminderFrequency

    Raises:
        RecurrenceRuleError: If the combination is invalid
    """
    try:
        freq = ReminderFrequency(frequency)
    except ValueError:
        raise RecurrenceRuleError(
            f"Invalid frequency '{frequency}': expected weekly, biweekly or monthly"
        ) from None

    if freq in (ReminderFrequency.WEEKLY, ReminderFrequency.BIWEEKLY):
        if day_of_week is None:
            raise RecurrenceRuleError(f"dayOfWeek is required for {freq.value} reminders")
        if not 0 <= day_of_week <= 6:
            raise RecurrenceRuleError(f"dayOfWeek must be between 0 and 6, got {day_of_week}")
        if day_of_month is not None:
            raise RecurrenceRuleError(f"dayOfMonth is not allowed for {freq.value} reminders")
    else:
        if day_of_month is None:
            raise RecurrenceRuleError("dayOfMonth is required for monthly reminders")
        if not 1 <= day_of_month <= 31:
            raise RecurrenceRuleError(f"dayOfMonth must be between 1 and 31, got {day_of_month}")
        if day_of_week is not None:
            raise RecurrenceRuleError("dayOfWeek is not allowed for monthly reminders")

    return freq


def parse_preferred_time(value: str | time | None) -> time | None:
    """Parse an "HH:MM" string; None and time instances pass through."""
    if value is None or isinstance(value, time):
        return value
    try:
        hour, minute = value.strip().split(":")[:2]
        return time(int(hour), int(minute))
    except (ValueError, AttributeError):
        raise RecurrenceRuleError(f"Invalid time '{value}': expected HH:MM") from None


def calculate_end_time(start_time: time, duration_minutes: int) -> time:
    """start_time + duration, capped at 23:59 for services running past midnight."""
    start = datetime.combine(date.min, start_time)
    end = start + timedelta(minutes=duration_minutes)
    if end.date() != start.date():
        return time(23, 59)
    return end.time()


def _first_weekday_on_or_after(day: date, day_of_week: int) -> date:
    offset = (WEEKDAY_MAP[day_of_week].weekday - day.weekday()) % 7
    return day + timedelta(days=offset)


def occurrences_in_range(rule: Any, start_date: date, end_date: date) -> list[date]:
    """
    Concrete occurrence dates of a rule within [start_date, end_date].

    Args:
        rule: Object with frequency, day_of_week, day_of_month and an
            optional anchor_date (RecurringReminder or equivalent)
        start_date: First date of the range (inclusive)
        end_date: Last date of the range (inclusive)

    Returns:
        Ordered list of dates; empty for an empty or inverted range

    Notes:
        - weekly: every 7 days from the first matching weekday
        - biweekly: every 14 days; with an anchor_date the parity is pinned
          to the first matching weekday on/after the anchor, otherwise to
          the first matching weekday in the range
        - monthly: day_of_month in every month, clamped to the month end
          (31 -> Feb 28/29)
        - no dates before anchor_date are ever returned

    Examples:
        # Weekly on Tuesday (2) through January 2025
        occurrences_in_range(rule, date(2025,1,1), date(2025,1,31))
        # Returns: Jan 7, 14, 21, 28

        # Monthly on the 31st, Jan-Mar 2024
        occurrences_in_range(rule, date(2024,1,1), date(2024,3,31))
        # Returns: Jan 31, Feb 29, Mar 31
    """
    frequency = validate_rule_fields(rule.frequency, rule.day_of_week, rule.day_of_month)

    anchor = getattr(rule, "anchor_date", None)
    if anchor is not None and anchor > start_date:
        start_date = anchor

    if start_date > end_date:
        return []

    if frequency == ReminderFrequency.MONTHLY:
        return _monthly_occurrences(rule.day_of_month, start_date, end_date)

    interval = 2 if frequency == ReminderFrequency.BIWEEKLY else 1
    first = _first_weekday_on_or_after(anchor or start_date, rule.day_of_week)

    dates = rrule(
        WEEKLY,
        interval=interval,
        dtstart=datetime.combine(first, time.min),
        byweekday=WEEKDAY_MAP[rule.day_of_week],
    ).between(
        datetime.combine(start_date, time.min),
        datetime.combine(end_date, time.min),
        inc=True,
    )
    return [dt.date() for dt in dates]


def _monthly_occurrences(day_of_month: int, start_date: date, end_date: date) -> list[date]:
    dates = []
    month = start_date.replace(day=1)
    while month <= end_date:
        # relativedelta(day=31) lands on the last day of shorter months
        candidate = month + relativedelta(day=day_of_month)
        if start_date <= candidate <= end_date:
            dates.append(candidate)
        month += relativedelta(months=1)
    return dates


def first_occurrence_on_or_after(rule: Any, day: date) -> date | None:
    """First occurrence >= day, or None if the rule cannot produce one."""
    dates = occurrences_in_range(rule, day, day + timedelta(days=MAX_OCCURRENCE_GAP_DAYS))
    return dates[0] if dates else None


def next_occurrence_after(rule: Any, day: date) -> date | None:
    """First occurrence strictly after day."""
    return first_occurrence_on_or_after(rule, day + timedelta(days=1))
