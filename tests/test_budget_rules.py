"""Unit tests for receipt_tracker.budget_rules."""

from __future__ import annotations

import pytest

from receipt_tracker import budget_rules as br
from receipt_tracker.models import AlertLevel, Transaction
from receipt_tracker.periods import FinancialPeriod

PERIOD = FinancialPeriod('2024-06-25', '2024-07-24')


def _txn(amount, category='Groceries', day='2024-07-01', txn_id=None) -> Transaction:
    kwargs = {'id': txn_id} if txn_id else {}
    return Transaction(
        name='item',
        original_amount=amount,
        original_currency='USD',
        amount=amount,
        date=day,
        category=category,
        **kwargs,
    )


def _sample_transactions():
    return [
        _txn(1000, 'Income', '2024-07-01'),
        _txn(200, 'Groceries', '2024-07-02'),
        _txn(50, 'Snacks', '2024-07-03'),
        _txn(80, 'Groceries', '2024-05-01'),  # previous period
    ]


def test_totals_all_time() -> None:
    result = br.totals(_sample_transactions())
    assert result['total_income'] == pytest.approx(1000)
    assert result['total_expenses'] == pytest.approx(330)
    assert result['net_balance'] == pytest.approx(670)
    assert result['category_totals'] == {'Groceries': pytest.approx(280), 'Snacks': pytest.approx(50)}
    assert result['top_category'] == 'Groceries'


def test_totals_empty() -> None:
    result = br.totals([])
    assert result['total_income'] == 0.0
    assert result['total_expenses'] == 0.0
    assert result['top_category'] is None


def test_totals_coerces_bad_amounts() -> None:
    bad = _txn(10)
    bad.amount = 'oops'
    result = br.totals([bad, _txn(5)])
    assert result['total_expenses'] == pytest.approx(5)


def test_period_totals_buckets() -> None:
    rule_map = {'Groceries': 'Needs', 'Snacks': 'Wants'}
    result = br.period_totals(_sample_transactions(), PERIOD, rule_map)
    assert result['monthly_income'] == pytest.approx(1000)
    assert result['monthly_expenses'] == pytest.approx(250)
    assert result['monthly_rule_totals'] == {
        'Needs': pytest.approx(200),
        'Wants': pytest.approx(50),
        'Savings': 0.0,
    }
    assert result['monthly_category_totals'] == {'Groceries': pytest.approx(200), 'Snacks': pytest.approx(50)}


def test_unmapped_category_counts_in_expenses_only() -> None:
    result = br.period_totals([_txn(40, 'Mystery')], PERIOD, {'Groceries': 'Needs'})
    assert result['monthly_expenses'] == pytest.approx(40)
    assert sum(result['monthly_rule_totals'].values()) == 0.0


def test_rule_summary_reports_unallocated_income() -> None:
    rule_map = {'Groceries': 'Needs', 'Snacks': 'Wants', 'Savings': 'Savings'}
    txns = _sample_transactions() + [_txn(100, 'Savings', '2024-07-05')]
    summary = br.rule_summary(br.period_totals(txns, PERIOD, rule_map))
    assert summary['buckets']['Needs']['target'] == pytest.approx(500)
    assert summary['buckets']['Needs']['percentage'] == pytest.approx(40)
    assert summary['buckets']['Savings']['spent'] == pytest.approx(100)
    assert summary['unallocated_income'] == pytest.approx(1000 - 350)


def test_rule_summary_without_income() -> None:
    summary = br.rule_summary(br.period_totals([_txn(10)], PERIOD, {'Groceries': 'Needs'}))
    assert summary['buckets']['Needs']['target'] == 0.0
    assert summary['buckets']['Needs']['percentage'] == 0.0


@pytest.mark.parametrize(
    "spent, budget, expected",
    [
        (79, 100, None),
        (80, 100, AlertLevel.WARNING),
        (99.99, 100, AlertLevel.WARNING),
        (100, 100, AlertLevel.EXCEEDED),
        (50, 0, None),
        (50, None, None),
    ],
)
def test_alert_level(spent, budget, expected) -> None:
    assert br.alert_level(spent, budget) == expected


def test_budget_alert_warning_then_exceeded() -> None:
    prior = [_txn(70)]
    budgets = {'Groceries': 100}
    assert br.check_budget_alert(_txn(15), prior, budgets, PERIOD) is AlertLevel.WARNING
    assert br.check_budget_alert(_txn(35), prior, budgets, PERIOD) is AlertLevel.EXCEEDED
    assert br.check_budget_alert(_txn(5), prior, budgets, PERIOD) is None


def test_budget_alert_ignores_other_periods_and_income() -> None:
    prior = [_txn(95, day='2024-05-01')]
    budgets = {'Groceries': 100, 'Income': 10}
    assert br.check_budget_alert(_txn(10), prior, budgets, PERIOD) is None
    assert br.check_budget_alert(_txn(50, 'Income'), [], budgets, PERIOD) is None


def test_budget_alert_outside_explicit_period_is_none() -> None:
    prior = [_txn(95)]
    assert br.check_budget_alert(_txn(10, day='2020-01-01'), prior, {'Groceries': 100}, PERIOD) is None


def test_budget_alert_defaults_to_transactions_own_period() -> None:
    prior = [_txn(90, day='2024-07-01'), _txn(5, day='2020-01-10')]
    budgets = {'Groceries': 100}
    # 2020-01-10 and 2020-01-01 share the 2019-12-25..2020-01-24 month
    assert br.check_budget_alert(_txn(1, day='2020-01-01'), prior, budgets) is None
    assert br.check_budget_alert(_txn(80, day='2020-01-01'), prior, budgets) is AlertLevel.WARNING
    assert br.check_budget_alert(_txn(10, day='2024-07-10'), prior, budgets) is AlertLevel.EXCEEDED


def test_budget_alert_does_not_double_count_edits() -> None:
    original = _txn(50, txn_id='abc')
    edited = _txn(60, txn_id='abc')
    assert br.check_budget_alert(edited, [original], {'Groceries': 100}, PERIOD) is None


def test_budget_progress_rows() -> None:
    rows = br.budget_progress({'Groceries': 100, 'Snacks': 0}, {'Groceries': 120})
    assert len(rows) == 1
    row = rows[0]
    assert row['category'] == 'Groceries'
    assert row['percentage'] == pytest.approx(120)
    assert row['alert'] is AlertLevel.EXCEEDED
