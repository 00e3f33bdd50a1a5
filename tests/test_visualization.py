"""Smoke tests for the Plotly chart builders."""

from __future__ import annotations

from receipt_tracker import visualization as viz
from receipt_tracker.models import AlertLevel


def test_empty_inputs_give_placeholder() -> None:
    for fig in (
        viz.create_expense_breakdown_chart({}),
        viz.create_rule_chart({'buckets': {}}),
        viz.create_budget_progress_chart([]),
    ):
        assert fig.layout.title.text == "No data to display"


def test_expense_breakdown_skips_zero_categories() -> None:
    fig = viz.create_expense_breakdown_chart({'Groceries': 20.0, 'Snacks': 0.0})
    assert list(fig.data[0].labels) == ['Groceries']


def test_rule_chart_has_target_and_actual() -> None:
    summary = {'buckets': {'Needs': {'spent': 10.0, 'target': 50.0}}}
    fig = viz.create_rule_chart(summary)
    assert [trace.name for trace in fig.data] == ['Target', 'Actual']
    assert list(fig.data[0].x) == ['Needs', 'Wants', 'Savings']


def test_budget_progress_is_capped() -> None:
    rows = [{'category': 'Groceries', 'spent': 150.0, 'budget': 100.0, 'percentage': 150.0, 'alert': AlertLevel.EXCEEDED}]
    fig = viz.create_budget_progress_chart(rows)
    assert list(fig.data[0].x) == [100.0]
    assert list(fig.data[0].text) == ['150%']
