"""Recurrence date arithmetic.

Pure functions that turn a recurrence rule into concrete dates. Nothing in
this module touches storage or the wall clock, so it can be tested in
isolation with fixed dates.
"""

import calendar
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from arq_cashflow.models import DayOfMonthPolicy, Frequency, RecurrenceRule


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def with_day_of_month(
    value: date, day: int, policy: DayOfMonthPolicy = DayOfMonthPolicy.CLAMP
) -> date:
    """Move ``value`` to ``day`` within its month.

    Days past the end of the month are clamped to the last day, or under
    ``ROLLOVER`` carried into the next month (31 in a 30-day month gives the
    1st of the following month).
    """
    if policy == DayOfMonthPolicy.ROLLOVER:
        return value.replace(day=1) + timedelta(days=day - 1)
    return value.replace(day=min(day, last_day_of_month(value.year, value.month)))


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def add_years(value: date, years: int) -> date:
    """Shift by whole years; 29 February becomes 28 February in common years."""
    return value + relativedelta(years=years)


def next_occurrence(
    from_date: date,
    frequency: Frequency | str,
    interval: int = 1,
    day_of_month: int | None = None,
    policy: DayOfMonthPolicy = DayOfMonthPolicy.CLAMP,
) -> date:
    """Return the occurrence that follows ``from_date``.

    Args:
        from_date: The previous occurrence.
        frequency: weekly, monthly, quarterly or annual.
        interval: Number of periods between occurrences (>= 1).
        day_of_month: Optional anchor day (1-31). Ignored for weekly rules.
        policy: Handling of anchor days the target month does not have.

    Raises:
        ValueError: If the frequency is unknown or the interval is not positive.
    """
    frequency = Frequency(frequency)
    if interval < 1:
        raise ValueError(f"interval must be >= 1, got {interval}")

    if frequency == Frequency.WEEKLY:
        return from_date + timedelta(weeks=interval)

    if frequency == Frequency.MONTHLY:
        if not day_of_month:
            return add_months(from_date, interval)
        candidate = with_day_of_month(from_date, day_of_month, policy)
        if candidate <= from_date:
            candidate = with_day_of_month(add_months(from_date, interval), day_of_month, policy)
        return candidate

    if frequency == Frequency.QUARTERLY:
        candidate = add_months(from_date, 3 * interval)
    else:
        candidate = add_years(from_date, interval)

    if day_of_month:
        candidate = with_day_of_month(candidate, day_of_month, policy)
    return candidate


def generate_sequence(
    start_date: date,
    frequency: Frequency | str,
    interval: int = 1,
    day_of_month: int | None = None,
    end_date: date | None = None,
    max_occurrences: int = 100,
    max_horizon_date: date | None = None,
    policy: DayOfMonthPolicy = DayOfMonthPolicy.CLAMP,
) -> list[date]:
    """Produce the ordered occurrence dates of a rule.

    The sequence starts at ``start_date`` and advances with
    :func:`next_occurrence`. It stops at the first of: a date after
    ``end_date``, ``max_occurrences`` dates produced, or a date after
    ``max_horizon_date``.
    """
    dates: list[date] = []
    current = start_date
    while len(dates) < max_occurrences:
        if end_date is not None and current > end_date:
            break
        if max_horizon_date is not None and current > max_horizon_date:
            break
        dates.append(current)
        current = next_occurrence(current, frequency, interval, day_of_month, policy)
    return dates


def sequence_for_rule(
    rule: RecurrenceRule,
    horizon: date,
    max_occurrences: int,
    policy: DayOfMonthPolicy = DayOfMonthPolicy.CLAMP,
) -> list[date]:
    """:func:`generate_sequence` for a rule, honoring its own occurrence limit."""
    limit = max_occurrences
    if rule.max_occurrences is not None:
        limit = min(limit, rule.max_occurrences)
    return generate_sequence(
        rule.start_date,
        rule.frequency,
        rule.interval,
        rule.day_of_month,
        rule.end_date,
        limit,
        horizon,
        policy,
    )


def horizon_date(today: date, years: int, end_date: date | None = None) -> date:
    """Last date that may be materialized: ``today + years``, capped by ``end_date``."""
    horizon = add_years(today, years)
    if end_date is not None and end_date < horizon:
        return end_date
    return horizon


def next_due(
    rule: RecurrenceRule,
    reference: date,
    policy: DayOfMonthPolicy = DayOfMonthPolicy.CLAMP,
) -> date | None:
    """First scheduled date strictly after ``reference``.

    Returns the start date when the series has not begun yet, and ``None``
    once the rule's end date or occurrence limit has been exhausted.
    """
    current = rule.start_date
    produced = 1
    while current <= reference:
        current = next_occurrence(current, rule.frequency, rule.interval, rule.day_of_month, policy)
        produced += 1
    if rule.end_date is not None and current > rule.end_date:
        return None
    if rule.max_occurrences is not None and produced > rule.max_occurrences:
        return None
    return current
