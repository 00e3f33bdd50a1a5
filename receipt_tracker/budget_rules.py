"""Budget aggregation, 50/30/20 allocation and budget-alert evaluation.

Every function here is stateless: it takes the transaction list and the
configuration it needs as parameters.  Amounts that are missing or not
numeric are coerced to zero so a ``NaN`` never leaks into a total.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .models import INCOME_CATEGORY, AlertLevel, Bucket, Transaction
from .periods import FinancialPeriod, financial_month_range
from .settings import get_default

WARNING_RATIO: float = float(get_default('budgets', 'warning_ratio', default=0.8))
RULE_TARGETS: Dict[str, float] = {
    Bucket(name).value: float(share)
    for name, share in (get_default('rule_503020', 'targets', default={}) or {}).items()
}

_COLUMNS = ['id', 'name', 'amount', 'date', 'category', 'merchant']


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Build a normalized DataFrame from transactions.

    ``amount`` is numeric with invalid values replaced by 0.0, ``date`` is the
    ISO date string truncated to ``YYYY-MM-DD`` and ``category`` is a string.
    """
    rows = [
        {
            'id': getattr(t, 'id', None),
            'name': getattr(t, 'name', ''),
            'amount': getattr(t, 'amount', None),
            'date': getattr(t, 'date', ''),
            'category': getattr(t, 'category', ''),
            'merchant': getattr(t, 'merchant', ''),
        }
        for t in transactions
    ]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    if df.empty:
        df['amount'] = df['amount'].astype(float)
        return df
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    df['date'] = df['date'].fillna('').astype(str).str.slice(0, 10)
    df['category'] = df['category'].fillna('').astype(str)
    return df


def _sum(series: pd.Series) -> float:
    return float(series.sum()) if not series.empty else 0.0


def _sum_by_category(df: pd.DataFrame) -> Dict[str, float]:
    if df.empty:
        return {}
    grouped = df.groupby('category', sort=False)['amount'].sum()
    return {str(cat): float(value) for cat, value in grouped.items()}


def totals(transactions: Iterable[Transaction]) -> Dict[str, Any]:
    """All-time income, expenses, balance and per-category spend.

    Returns:
        Dictionary with ``total_income``, ``total_expenses``, ``net_balance``,
        ``category_totals`` (non-Income categories only) and ``top_category``
        (largest spend, ``None`` when there are no expenses)

    Example:
        >>> result = totals(transactions)
        >>> result['net_balance'] == result['total_income'] - result['total_expenses']
        True
    """
    df = transactions_frame(transactions)
    is_income = df['category'] == INCOME_CATEGORY
    income = _sum(df.loc[is_income, 'amount'])
    expenses_df = df.loc[~is_income]
    expenses = _sum(expenses_df['amount'])
    category_totals = _sum_by_category(expenses_df)

    top_category: Optional[str] = None
    if category_totals:
        top_category = max(category_totals, key=lambda cat: category_totals[cat])

    return {
        'total_income': income,
        'total_expenses': expenses,
        'net_balance': income - expenses,
        'category_totals': category_totals,
        'top_category': top_category,
    }


def filter_period(df: pd.DataFrame, period: FinancialPeriod) -> pd.DataFrame:
    """Restrict a transactions frame to the inclusive bounds of ``period``."""
    if df.empty:
        return df
    mask = (df['date'] >= period.start_date) & (df['date'] <= period.end_date)
    return df.loc[mask]


def period_totals(
    transactions: Iterable[Transaction],
    period: Optional[FinancialPeriod] = None,
    category_rule_map: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Aggregate the transactions of one financial period.

    Categories with no entry in ``category_rule_map`` do not contribute to any
    50/30/20 bucket, although they are still part of ``monthly_expenses`` and
    ``monthly_category_totals``.

    Args:
        transactions: Transactions to aggregate
        period: Financial period, defaults to the one containing today
        category_rule_map: Mapping of category name to bucket

    Returns:
        Dictionary with ``period``, ``monthly_income``, ``monthly_expenses``,
        ``monthly_rule_totals`` (one entry per bucket) and
        ``monthly_category_totals``
    """
    period = period or financial_month_range()
    df = filter_period(transactions_frame(transactions), period)
    is_income = df['category'] == INCOME_CATEGORY
    expenses_df = df.loc[~is_income]
    category_totals = _sum_by_category(expenses_df)

    rule_totals: Dict[str, float] = {bucket.value: 0.0 for bucket in Bucket}
    for category, amount in category_totals.items():
        bucket = Bucket.parse(category_rule_map.get(category)) if category_rule_map else None
        if bucket is not None:
            rule_totals[bucket.value] += amount

    return {
        'period': period,
        'monthly_income': _sum(df.loc[is_income, 'amount']),
        'monthly_expenses': _sum(expenses_df['amount']),
        'monthly_rule_totals': rule_totals,
        'monthly_category_totals': category_totals,
    }


def alert_level(spent: float, budget: Optional[float]) -> Optional[AlertLevel]:
    """Classify ``spent`` against ``budget``.

    Example:
        >>> alert_level(85, 100)
        <AlertLevel.WARNING: 'warning'>
        >>> alert_level(100, 100)
        <AlertLevel.EXCEEDED: 'exceeded'>
        >>> alert_level(50, 0) is None
        True
    """
    try:
        budget_value = float(budget) if budget is not None else 0.0
    except (TypeError, ValueError):
        return None
    if not budget_value > 0:
        return None
    if spent >= budget_value:
        return AlertLevel.EXCEEDED
    if spent >= budget_value * WARNING_RATIO:
        return AlertLevel.WARNING
    return None


def category_period_spend(
    transactions: Iterable[Transaction],
    category: str,
    period: FinancialPeriod,
) -> float:
    df = filter_period(transactions_frame(transactions), period)
    if df.empty:
        return 0.0
    return _sum(df.loc[df['category'] == category, 'amount'])


def check_budget_alert(
    new_transaction: Transaction,
    prior_transactions: Iterable[Transaction],
    budgets: Mapping[str, float],
    period: Optional[FinancialPeriod] = None,
) -> Optional[AlertLevel]:
    """Evaluate the budget of ``new_transaction``'s category after adding it.

    The spend is scoped to ``period``, which defaults to the financial month
    containing the transaction's own date.  A transaction dated outside an
    explicit ``period`` never alerts.  A prior record with the same id is
    ignored, so an edited transaction is not counted twice.  Income and
    categories without a positive budget never alert.

    Example:
        >>> check_budget_alert(txn_15, prior_70, {'Groceries': 100}, period)
        <AlertLevel.WARNING: 'warning'>
    """
    if new_transaction.category == INCOME_CATEGORY:
        return None
    budget = budgets.get(new_transaction.category)
    if not _positive(budget):
        return None

    period = period or financial_month_range(new_transaction.date)
    if not period.contains(new_transaction.date):
        return None
    others = [t for t in prior_transactions if t.id != new_transaction.id]
    candidates = others + [new_transaction]
    spent = category_period_spend(candidates, new_transaction.category, period)
    return alert_level(spent, budget)


def budget_progress(
    budgets: Mapping[str, float],
    monthly_category_totals: Mapping[str, float],
) -> List[Dict[str, Any]]:
    """Per-category progress rows for the tracked budgets.

    Returns:
        List of dictionaries with ``category``, ``spent``, ``budget``,
        ``percentage`` and ``alert`` (an :class:`AlertLevel` or ``None``)
    """
    rows: List[Dict[str, Any]] = []
    for category, budget in budgets.items():
        if not _positive(budget):
            continue
        budget_value = float(budget)
        spent = float(monthly_category_totals.get(category, 0.0) or 0.0)
        rows.append({
            'category': category,
            'spent': spent,
            'budget': budget_value,
            'percentage': spent / budget_value * 100,
            'alert': alert_level(spent, budget_value),
        })
    return rows


def rule_summary(
    period_result: Mapping[str, Any],
    targets: Optional[Mapping[str, float]] = None,
) -> Dict[str, Any]:
    """50/30/20 view of one period.

    The ``Savings`` bucket is the spend of categories mapped to Savings, like
    the other two buckets.  Income left after all three buckets is reported
    separately as ``unallocated_income`` and is never folded into Savings.

    Returns:
        Dictionary with ``buckets`` (bucket name to ``spent``, ``target`` and
        ``percentage``), ``monthly_income`` and ``unallocated_income``
    """
    targets = targets or RULE_TARGETS
    income = float(period_result.get('monthly_income', 0.0) or 0.0)
    rule_totals = period_result.get('monthly_rule_totals', {}) or {}

    buckets: Dict[str, Dict[str, float]] = {}
    allocated = 0.0
    for bucket in Bucket:
        spent = float(rule_totals.get(bucket.value, 0.0) or 0.0)
        allocated += spent
        target = income * float(targets.get(bucket.value, 0.0)) if income > 0 else 0.0
        buckets[bucket.value] = {
            'spent': spent,
            'target': target,
            'percentage': spent / target * 100 if target > 0 else 0.0,
        }

    return {
        'buckets': buckets,
        'monthly_income': income,
        'unallocated_income': income - allocated,
    }


def _positive(value: Any) -> bool:
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False
