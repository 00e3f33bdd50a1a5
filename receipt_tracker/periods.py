"""Financial-month calculation.

The budgeting cycle is anchored to a payday-like boundary instead of the
calendar month: a financial month runs from the 25th of one month to the
24th of the next (both inclusive).  All arithmetic uses calendar date parts,
so the result never depends on the local timezone or the time of day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from .settings import get_default

PERIOD_START_DAY: int = int(get_default('financial_month', 'start_day', default=25))

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class FinancialPeriod:
    start_date: str
    end_date: str

    def contains(self, value: Optional[str]) -> bool:
        """Return True when an ISO ``YYYY-MM-DD`` date falls inside the period."""
        if not value:
            return False
        day = str(value)[:10]
        return self.start_date <= day <= self.end_date


def to_date(value: DateLike) -> date:
    """Coerce a ``date``, ``datetime`` or ISO string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def financial_month_range(for_date: Optional[DateLike] = None) -> FinancialPeriod:
    """Return the financial month containing ``for_date`` (default: today).

    Example:
        >>> financial_month_range('2024-07-26')
        FinancialPeriod(start_date='2024-07-25', end_date='2024-08-24')
        >>> financial_month_range('2024-07-15')
        FinancialPeriod(start_date='2024-06-25', end_date='2024-07-24')
        >>> financial_month_range('2024-12-31')
        FinancialPeriod(start_date='2024-12-25', end_date='2025-01-24')
    """
    current = to_date(for_date) if for_date is not None else date.today()
    year, month = current.year, current.month

    if current.day >= PERIOD_START_DAY:
        start_year, start_month = year, month
        end_year, end_month = (year + 1, 1) if month == 12 else (year, month + 1)
    else:
        start_year, start_month = (year - 1, 12) if month == 1 else (year, month - 1)
        end_year, end_month = year, month

    start = date(start_year, start_month, PERIOD_START_DAY)
    end = date(end_year, end_month, PERIOD_START_DAY - 1)
    return FinancialPeriod(start.isoformat(), end.isoformat())
