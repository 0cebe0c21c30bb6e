# folio_core/utils/date_utils.py
"""
Date helpers shared by the holdings, valuation and performance services.

Valuations are produced for every calendar day (quotes and FX rates are
looked up on-or-before, so weekends carry Friday's data forward).

Usage:
    from folio_core.utils.date_utils import calendar_days

    for day in calendar_days(start_date, end_date):
        ...
"""

from collections.abc import Iterator
from datetime import date, timedelta


def calendar_days(start_date: date, end_date: date) -> Iterator[date]:
    """
    Iterate every calendar day in a range (both ends inclusive).

    Example:
        >>> list(calendar_days(date(2024, 1, 1), date(2024, 1, 3)))
        [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
    """
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def days_between(start_date: date, end_date: date) -> int:
    """Number of calendar days from start_date to end_date."""
    return (end_date - start_date).days


def previous_day(d: date) -> date:
    return d - timedelta(days=1)
