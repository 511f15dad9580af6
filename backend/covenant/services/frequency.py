"""Frequency classes and next-due date calculation.

This module is the only place that knows how long an interval is; every
other component asks :func:`next_due`.
"""

import calendar as cal
from datetime import datetime, timedelta

from covenant.core.errors import InvalidFrequencyError
from covenant.models.shared import as_utc
from covenant.models.subscription import Frequency

_FIXED_INTERVALS = {
    Frequency.WEEKLY: timedelta(weeks=1),
    Frequency.BIWEEKLY: timedelta(weeks=2),
}

_MONTH_INTERVALS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
}


def _add_months(dt: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping to last day of month."""
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    day = min(dt.day, max_day)
    return dt.replace(year=year, month=month, day=day)


def parse_frequency(value: Frequency | str) -> Frequency:
    """Return the Frequency for *value* or raise InvalidFrequencyError."""
    if isinstance(value, Frequency):
        return value
    if not isinstance(value, str):
        raise InvalidFrequencyError(value)
    try:
        return Frequency(value.strip().lower())
    except ValueError as exc:
        raise InvalidFrequencyError(value) from exc


def next_due(frequency: Frequency | str, from_time: datetime) -> datetime:
    """Return when a subscription fulfilled (or created) at *from_time* is next due.

    Args:
        frequency: Frequency class or its string value.
        from_time: Last fulfillment time, or creation time if never fulfilled.
            Naive values are treated as UTC.

    Returns:
        An aware UTC datetime strictly after *from_time*.

    Raises:
        InvalidFrequencyError: *frequency* is not a known class.
    """
    freq = parse_frequency(frequency)
    start = as_utc(from_time)
    if freq in _FIXED_INTERVALS:
        return start + _FIXED_INTERVALS[freq]
    return _add_months(start, _MONTH_INTERVALS[freq])
