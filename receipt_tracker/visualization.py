"""Plotly charts for the expense dashboard.

Each function accepts the plain dictionaries produced by
:mod:`receipt_tracker.budget_rules` and returns a
``plotly.graph_objects.Figure`` that Streamlit renders via
``st.plotly_chart``.  When there is nothing to plot, a blank figure titled
"No data to display" is returned instead of raising.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .models import AlertLevel, Bucket

ALERT_COLORS = {
    None: '#22c55e',
    AlertLevel.WARNING: '#f59e0b',
    AlertLevel.EXCEEDED: '#ef4444',
}


def _empty_figure() -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title="No data to display")
    return fig


def create_expense_breakdown_chart(category_totals: Mapping[str, float], title: str | None = None) -> go.Figure:
    """Donut chart of spend per category.

    Categories with no positive spend are left out.
    """
    rows = [(cat, float(value)) for cat, value in category_totals.items() if value and value > 0]
    if not rows:
        return _empty_figure()
    df = pd.DataFrame(rows, columns=["Category", "Amount"]).sort_values("Amount", ascending=False)
    fig = px.pie(df, names="Category", values="Amount", hole=0.5)
    fig.update_layout(title=title or "Expense breakdown")
    return fig


def create_rule_chart(summary: Mapping[str, Any], title: str | None = None) -> go.Figure:
    """Grouped bars of actual vs target spend per 50/30/20 bucket.

    Args:
        summary: Result of :func:`budget_rules.rule_summary`
        title: Chart title

    Returns:
        Bar chart, or the empty figure when there is neither income nor spend
    """
    buckets: Dict[str, Dict[str, float]] = summary.get('buckets', {}) or {}
    names = [bucket.value for bucket in Bucket]
    spent = [float(buckets.get(name, {}).get('spent', 0.0)) for name in names]
    target = [float(buckets.get(name, {}).get('target', 0.0)) for name in names]
    if not any(spent) and not any(target):
        return _empty_figure()
    fig = go.Figure()
    fig.add_trace(go.Bar(name='Target', x=names, y=target))
    fig.add_trace(go.Bar(name='Actual', x=names, y=spent))
    fig.update_layout(
        title=title or "50/30/20 rule",
        barmode='group',
        xaxis_title="Bucket",
        yaxis_title="Amount",
    )
    return fig


def create_budget_progress_chart(progress: Sequence[Mapping[str, Any]], title: str | None = None) -> go.Figure:
    """Horizontal progress bars of spend against each category budget.

    Bars are capped at 100% of the budget width; the hover text carries the
    real percentage.
    """
    if not progress:
        return _empty_figure()
    categories: List[str] = [row['category'] for row in progress]
    percentages = np.array([float(row['percentage']) for row in progress])
    colors = [ALERT_COLORS.get(row.get('alert'), ALERT_COLORS[None]) for row in progress]
    fig = go.Figure(go.Bar(
        x=np.clip(percentages, 0, 100),
        y=categories,
        orientation='h',
        marker_color=colors,
        text=[f"{p:.0f}%" for p in percentages],
        textposition='auto',
    ))
    fig.update_layout(
        title=title or "Budget progress",
        xaxis=dict(title="% of budget", range=[0, 100]),
        yaxis_title="Category",
    )
    return fig
