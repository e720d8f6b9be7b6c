"""Calendar helpers for months and schedule periods."""

import calendar
from datetime import date, timedelta

from envelope_ledger.models.ledger import Frequency


_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}

_DAY_STEPS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def add_months(d: date, months: int) -> date:
    """Shift by calendar months, clamping the day to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month (may be negative)."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def add_periods(start: date, frequency: Frequency, periods: int) -> date:
    """
    The date `periods` periods after `start`.

    Always computed from the original start date, so a monthly
    schedule starting on the 31st comes back to the 31st whenever
    the month allows it.
    """
    if frequency in _DAY_STEPS:
        return start + timedelta(days=_DAY_STEPS[frequency] * periods)
    return add_months(start, _MONTH_STEPS[frequency] * periods)
