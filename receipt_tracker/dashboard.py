"""Streamlit app for the Receipt Tracker.

This module only renders state and forwards user intents to
:class:`receipt_tracker.tracker.ExpenseTracker`; all business rules live in
the core modules.  The tracker instance is kept in ``st.session_state`` so
it survives Streamlit reruns, and its asynchronous intents are driven with
``asyncio.run``.

To run the dashboard from the command line::

    streamlit run receipt_tracker/Home.py
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Optional

import pandas as pd
import streamlit as st

from . import visualization as viz
from .currency import supported_currencies
from .filters import ALL_CATEGORIES
from .models import FALLBACK_CATEGORY, INCOME_CATEGORY, MAX_CUSTOM_CATEGORIES, Bucket
from .periods import to_date
from .tracker import ExpenseTracker
from .workflow import WorkflowState

_LEVEL_ICONS = {'success': '✅', 'error': '❌', 'warning': '⚠️', 'info': 'ℹ️'}


def get_tracker() -> ExpenseTracker:
    if 'tracker' not in st.session_state:
        st.session_state['tracker'] = ExpenseTracker()
    return st.session_state['tracker']


def _show_notifications(tracker: ExpenseTracker) -> None:
    for note in tracker.drain_notifications():
        st.toast(note.message, icon=_LEVEL_ICONS.get(note.level, 'ℹ️'))


def render_sidebar(tracker: ExpenseTracker) -> None:
    st.sidebar.header("Settings")
    currencies = supported_currencies()
    current = tracker.primary_currency
    selected = st.sidebar.selectbox(
        "Primary currency",
        options=currencies,
        index=currencies.index(current) if current in currencies else 0,
    )
    if selected != current:
        tracker.change_currency(selected)
        st.rerun()


def render_summary(tracker: ExpenseTracker) -> None:
    totals = tracker.totals()
    period = tracker.current_period()
    monthly = tracker.period_totals(period)

    col1, col2, col3 = st.columns(3)
    col1.metric("Total income", tracker.format(totals['total_income']))
    col2.metric("Total expenses", tracker.format(totals['total_expenses']))
    col3.metric("Balance", tracker.format(totals['net_balance']))
    if totals['top_category']:
        st.caption(f"Top spending category: **{totals['top_category']}**")

    st.subheader(f"Financial month {period.start_date} to {period.end_date}")
    summary = tracker.rule_summary(period)
    left, right = st.columns(2)
    with left:
        st.plotly_chart(
            viz.create_expense_breakdown_chart(monthly['monthly_category_totals']),
            use_container_width=True,
        )
    with right:
        st.plotly_chart(viz.create_rule_chart(summary), use_container_width=True)
        st.caption(f"Unallocated income: {tracker.format(summary['unallocated_income'])}")

    progress = tracker.budget_progress(period)
    if progress:
        st.plotly_chart(viz.create_budget_progress_chart(progress), use_container_width=True)


def render_receipt_upload(tracker: ExpenseTracker) -> None:
    st.subheader("Scan a receipt")
    workflow = tracker.workflow

    if workflow.state in (WorkflowState.IDLE, WorkflowState.FILE_SELECTED):
        uploader_key = f"receipt_{workflow.generation}"
        uploaded = st.file_uploader("Receipt image", type=["png", "jpg", "jpeg", "webp"], key=uploader_key)
        # The uploader keeps its file across reruns; only a new upload starts a cycle.
        token = (uploader_key, uploaded.name, uploaded.size) if uploaded is not None else None
        if token is not None and st.session_state.get('receipt_token') != token:
            st.session_state['receipt_token'] = token
            asyncio.run(tracker.select_receipt(uploaded.name, uploaded.getvalue()))

    if workflow.state is WorkflowState.FILE_SELECTED:
        if workflow.preview:
            st.image(workflow.preview, width=280)
        merchant = st.text_input("Merchant (optional)", value=workflow.merchant)
        if merchant != workflow.merchant:
            workflow.set_merchant(merchant)
        if workflow.last_error:
            st.error(workflow.last_error)
        process_col, cancel_col = st.columns(2)
        if process_col.button("Process receipt", type="primary"):
            with st.spinner("Analyzing receipt..."):
                asyncio.run(tracker.process_receipt())
            st.rerun()
        if cancel_col.button("Cancel"):
            tracker.cancel_receipt()
            st.rerun()

    elif workflow.state is WorkflowState.TAX_PENDING and workflow.pending_tax is not None:
        tax = workflow.pending_tax
        st.info(f"The receipt lists a tax of {tax.amount:.2f} {tax.currency}. Add it as an expense?")
        yes_col, no_col = st.columns(2)
        if yes_col.button("Add tax"):
            tracker.confirm_tax(True)
            st.rerun()
        if no_col.button("Skip tax"):
            tracker.confirm_tax(False)
            st.rerun()

    elif workflow.state is WorkflowState.ITEMS_PENDING and workflow.current_item is not None:
        item = workflow.current_item
        st.write(
            f"**{item.name}** from {item.merchant or 'unknown merchant'}: "
            f"{item.original_amount:.2f} {item.original_currency} ({tracker.format(item.amount)})"
        )
        st.caption(f"{len(workflow.pending_items)} item(s) left")
        options = tracker.categories
        default = item.suggested_category if item.suggested_category in options else FALLBACK_CATEGORY
        category = st.selectbox("Category", options=options, index=options.index(default))
        assign_col, skip_col = st.columns(2)
        if assign_col.button("Assign"):
            tracker.assign_category(category)
            st.rerun()
        if skip_col.button("Add the rest to Others"):
            tracker.skip_remaining_items()
            st.rerun()


def render_manual_entry(tracker: ExpenseTracker) -> None:
    with st.expander("Add a transaction manually"):
        kind = st.radio("Type", options=["expense", "income"], horizontal=True)
        with st.form("manual_entry", clear_on_submit=True):
            name = st.text_input("Name")
            amount = st.number_input("Amount", min_value=0.0, step=0.01, format="%.2f")
            currencies = supported_currencies()
            currency = st.selectbox("Currency", options=currencies, index=currencies.index(tracker.primary_currency))
            txn_date = st.date_input("Date", value=date.today())
            merchant = ''
            category: Optional[str] = INCOME_CATEGORY
            if kind == "expense":
                merchant = st.text_input("Merchant")
                category = st.selectbox("Category", options=tracker.categories)
            tags = st.text_input("Tags (comma separated)")
            if st.form_submit_button("Add"):
                tracker.add_manual_transaction(
                    kind, name, amount,
                    currency=currency,
                    txn_date=txn_date.isoformat(),
                    merchant=merchant,
                    category=category,
                    tags=tags,
                )


def render_transactions(tracker: ExpenseTracker) -> None:
    st.subheader("Transactions")
    search_col, category_col = st.columns([2, 1])
    search = search_col.text_input("Search", placeholder="Name, merchant or tag")
    category = category_col.selectbox(
        "Category filter",
        options=[ALL_CATEGORIES, INCOME_CATEGORY] + tracker.categories,
    )
    transactions = tracker.transactions(search=search, category=category)
    if not transactions:
        st.info("No transactions yet.")
        return

    df = pd.DataFrame([t.to_dict() for t in transactions])
    df['tags'] = df['tags'].apply(lambda tags: ', '.join(tags))
    st.dataframe(
        df[['date', 'name', 'merchant', 'category', 'amount', 'originalAmount', 'originalCurrency', 'tags']],
        use_container_width=True,
        hide_index=True,
    )

    labels = {t.id: f"{t.date} · {t.name} · {tracker.format(t.amount)}" for t in transactions}
    selected = st.selectbox("Select a transaction", options=list(labels), format_func=labels.get)
    txn = tracker.store.get_transaction(selected)
    if txn is None:
        return
    with st.form(f"edit_{txn.id}"):
        name = st.text_input("Name", value=txn.name)
        amount_col, currency_col = st.columns(2)
        amount = amount_col.number_input("Original amount", min_value=0.0, value=float(txn.original_amount), step=0.01)
        currencies = supported_currencies()
        currency = currency_col.selectbox(
            "Currency", options=currencies,
            index=currencies.index(txn.original_currency) if txn.original_currency in currencies else 0,
        )
        txn_date = st.date_input("Date", value=to_date(txn.date))
        merchant = st.text_input("Merchant", value=txn.merchant, disabled=txn.is_income)
        options = [INCOME_CATEGORY] if txn.is_income else tracker.categories
        category = st.selectbox(
            "Category", options=options,
            index=options.index(txn.category) if txn.category in options else 0,
        )
        tags = st.text_input("Tags", value=', '.join(txn.tags))
        save_col, delete_col = st.columns(2)
        if save_col.form_submit_button("Save"):
            tracker.update_transaction(txn.copy(
                name=name, original_amount=amount, original_currency=currency,
                date=txn_date.isoformat(), merchant=merchant, category=category, tags=tags,
            ))
            st.rerun()
        if delete_col.form_submit_button("Delete"):
            tracker.delete_transaction(txn.id)
            st.rerun()


def render_settings(tracker: ExpenseTracker) -> None:
    with st.expander("Categories and 50/30/20 mapping"):
        st.caption(f"Up to {MAX_CUSTOM_CATEGORIES} custom categories. {FALLBACK_CATEGORY} is always available.")
        rule_map = tracker.category_rule_map
        editor = pd.DataFrame({
            'Category': [c for c in tracker.categories if c != FALLBACK_CATEGORY],
            'Bucket': [rule_map.get(c, Bucket.WANTS.value) for c in tracker.categories if c != FALLBACK_CATEGORY],
        })
        edited = st.data_editor(
            editor,
            num_rows="dynamic",
            column_config={
                'Bucket': st.column_config.SelectboxColumn(options=[b.value for b in Bucket], required=True),
            },
            key="category_editor",
        )
        if st.button("Save categories"):
            rows = edited.dropna(subset=['Category'])
            names = [str(name).strip() for name in rows['Category']]
            mapping = dict(zip(names, rows['Bucket']))
            mapping[FALLBACK_CATEGORY] = rule_map.get(FALLBACK_CATEGORY, Bucket.WANTS.value)
            tracker.save_categories(names, mapping)
            st.rerun()

    with st.expander("Monthly budgets"):
        budgets = tracker.budgets
        values = {}
        for category in tracker.categories:
            values[category] = st.number_input(
                category, min_value=0.0, value=float(budgets.get(category, 0.0)), step=10.0,
                key=f"budget_{category}",
            )
        if st.button("Save budgets"):
            tracker.save_budgets(values)
            st.rerun()


def render_advisor(tracker: ExpenseTracker) -> None:
    st.subheader("AI advisor")
    if st.button("Get feedback on my spending"):
        with st.spinner("Thinking..."):
            asyncio.run(tracker.request_feedback())
    if tracker.feedback:
        st.markdown(tracker.feedback)

    question = st.text_input("Ask about your transactions", placeholder="How much did I spend on groceries last month?")
    if st.button("Ask") and question:
        with st.spinner("Looking through your transactions..."):
            asyncio.run(tracker.ask_question(question))
    if tracker.answer:
        st.markdown(tracker.answer)


def main() -> None:
    """Entry point for the Streamlit app."""
    st.set_page_config(page_title="Receipt Tracker", page_icon="🧾", layout="wide")
    st.title("Receipt Tracker")
    tracker = get_tracker()

    render_sidebar(tracker)
    summary_tab, receipts_tab, transactions_tab, settings_tab, advisor_tab = st.tabs(
        ["Overview", "Receipts", "Transactions", "Settings", "Advisor"]
    )
    with summary_tab:
        render_summary(tracker)
    with receipts_tab:
        render_receipt_upload(tracker)
        render_manual_entry(tracker)
    with transactions_tab:
        render_transactions(tracker)
    with settings_tab:
        render_settings(tracker)
    with advisor_tab:
        render_advisor(tracker)

    _show_notifications(tracker)
