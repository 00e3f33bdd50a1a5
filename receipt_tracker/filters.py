"""Transaction list filtering and ordering for display."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .models import Transaction

ALL_CATEGORIES = 'All'


def sort_by_date(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Most recent first; equal dates keep their existing order."""
    return sorted(transactions, key=lambda t: t.date or '', reverse=True)


def filter_transactions(
    transactions: Iterable[Transaction],
    search: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Transaction]:
    """Filter transactions for the list view.

    Args:
        transactions: Transactions to filter
        search: Case-insensitive text matched against name, merchant and tags
        category: Exact category, or ``None``/``'All'`` for every category
        start_date: Inclusive lower bound (YYYY-MM-DD), optional
        end_date: Inclusive upper bound (YYYY-MM-DD), optional

    Returns:
        Matching transactions sorted by date, most recent first

    Example:
        >>> filter_transactions(txns, search='coffee', category='All')
    """
    needle = (search or '').strip().lower()
    result: List[Transaction] = []
    for txn in transactions:
        if category and category != ALL_CATEGORIES and txn.category != category:
            continue
        day = (txn.date or '')[:10]
        if start_date and day < start_date:
            continue
        if end_date and day > end_date:
            continue
        if needle:
            haystack = [txn.name or '', txn.merchant or ''] + list(txn.tags or [])
            if not any(needle in value.lower() for value in haystack):
                continue
        result.append(txn)
    return sort_by_date(result)
