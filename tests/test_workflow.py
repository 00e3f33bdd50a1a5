"""Tests for the receipt workflow state machine."""

from __future__ import annotations

import asyncio

import pytest

from receipt_tracker.errors import ValidationError, WorkflowStateError
from receipt_tracker.models import ReceiptData, ReceiptItem
from receipt_tracker.storage import ITEM_CATEGORY_KEY
from receipt_tracker.store import TransactionStore
from receipt_tracker.workflow import ReceiptWorkflow, WorkflowState

from conftest import FakeGateway


def _sample_receipt(tax=None, items=None) -> ReceiptData:
    if items is None:
        items = [ReceiptItem('Milk', 20.9), ReceiptItem('Bread', 31.35)]
    return ReceiptData(
        merchant='LIDL SVERIGE',
        date='2024-07-02',
        currency='SEK',
        items=items,
        total=sum(i.price for i in items),
        tax=tax,
    )


def _selected(store, gateway, png_bytes) -> ReceiptWorkflow:
    workflow = ReceiptWorkflow(store, gateway)
    workflow.select_file('receipt.png', png_bytes)
    return workflow


def test_lidl_receipt_in_foreign_currency(store, png_bytes) -> None:
    gateway = FakeGateway(receipt=_sample_receipt())
    workflow = _selected(store, gateway, png_bytes)
    workflow.set_merchant('Lidl')

    receipt = asyncio.run(workflow.submit())

    assert receipt is not None
    assert gateway.extract_calls == ['USD']
    assert workflow.state is WorkflowState.ITEMS_PENDING
    assert workflow.file_name is None and workflow.preview is None
    item = workflow.current_item
    assert item.name == 'Milk'
    assert item.merchant == 'Lidl'
    assert item.original_currency == 'SEK'
    assert item.amount == pytest.approx(2.0)

    milk = workflow.assign_category('Groceries')
    bread = workflow.assign_category('Groceries')
    assert workflow.state is WorkflowState.IDLE
    assert milk.original_amount == 20.9 and milk.original_currency == 'SEK'
    assert bread.amount == pytest.approx(3.0)
    assert {t.merchant for t in store.transactions} == {'Lidl'}


def test_extracted_merchant_used_without_override(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())
    assert workflow.current_item.merchant == 'LIDL SVERIGE'


def test_tax_is_offered_first(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt(tax=5.0)), png_bytes)
    asyncio.run(workflow.submit())
    assert workflow.state is WorkflowState.TAX_PENDING

    tax = workflow.confirm_tax(True)
    assert tax.name == 'Tax'
    assert tax.category == 'Others'
    assert tax.original_currency == 'SEK'
    assert workflow.state is WorkflowState.ITEMS_PENDING


def test_declined_tax_creates_nothing(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt(tax=5.0, items=[])), png_bytes)
    asyncio.run(workflow.submit())
    assert workflow.confirm_tax(False) is None
    assert workflow.state is WorkflowState.IDLE
    assert store.transactions == []


def test_zero_items_returns_to_idle(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt(items=[])), png_bytes)
    receipt = asyncio.run(workflow.submit())
    assert receipt is not None
    assert workflow.state is WorkflowState.IDLE
    assert store.transactions == []


def test_non_positive_prices_are_skipped(store, png_bytes) -> None:
    items = [ReceiptItem('Discount', -5.0), ReceiptItem('Free bag', 0.0), ReceiptItem('Milk', 10.0)]
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt(items=items)), png_bytes)
    asyncio.run(workflow.submit())
    assert [i.name for i in workflow.pending_items] == ['Milk']


def test_failure_keeps_file_selected(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(fail=True), png_bytes)
    assert asyncio.run(workflow.submit()) is None
    assert workflow.state is WorkflowState.FILE_SELECTED
    assert workflow.preview == png_bytes
    assert workflow.last_error
    assert store.transactions == []


def test_stale_extraction_is_discarded(store, png_bytes) -> None:
    gateway = FakeGateway(receipt=_sample_receipt())
    workflow = _selected(store, gateway, png_bytes)
    gateway.on_extract = workflow.cancel
    assert asyncio.run(workflow.submit()) is None
    assert workflow.state is WorkflowState.IDLE
    assert workflow.pending_items == []


def test_skip_remaining_books_others(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())
    created = workflow.skip_remaining()
    assert [t.category for t in created] == ['Others', 'Others']
    assert workflow.state is WorkflowState.IDLE


def test_unknown_category_keeps_item_queued(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())
    with pytest.raises(ValidationError):
        workflow.assign_category('Nope')
    assert workflow.current_item.name == 'Milk'


def test_assigned_category_is_suggested_next_time(store, png_bytes) -> None:
    gateway = FakeGateway(receipt=_sample_receipt())
    workflow = _selected(store, gateway, png_bytes)
    asyncio.run(workflow.submit())
    workflow.assign_category('Snacks')
    workflow.skip_remaining()

    workflow.select_file('again.png', png_bytes)
    asyncio.run(workflow.submit())
    assert workflow.current_item.suggested_category == 'Snacks'


def test_detect_merchant_fills_blank_field(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(merchant='ICA'), png_bytes)
    assert asyncio.run(workflow.detect_merchant()) == 'ICA'
    assert workflow.merchant == 'ICA'
    assert workflow.is_detecting_merchant is False


def test_detect_merchant_keeps_typed_value(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(merchant='ICA'), png_bytes)
    workflow.set_merchant('Coop')
    asyncio.run(workflow.detect_merchant())
    assert workflow.merchant == 'Coop'


def test_select_while_processing_is_rejected(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())
    with pytest.raises(WorkflowStateError):
        workflow.select_file('other.png', png_bytes)


def test_empty_file_is_rejected(store) -> None:
    workflow = ReceiptWorkflow(store, FakeGateway())
    with pytest.raises(ValidationError):
        workflow.select_file('empty.png', b'')
    assert workflow.state is WorkflowState.IDLE


def test_stale_merchant_detection_is_discarded(store, png_bytes) -> None:
    gateway = FakeGateway(merchant='ICA')
    workflow = _selected(store, gateway, png_bytes)
    gateway.on_detect = lambda: workflow.select_file('other.png', png_bytes)
    assert asyncio.run(workflow.detect_merchant()) is None
    assert workflow.merchant == ''
    assert workflow.file_name == 'other.png'


def test_merchant_detection_after_cancel_is_discarded(store, png_bytes) -> None:
    gateway = FakeGateway(merchant='ICA')
    workflow = _selected(store, gateway, png_bytes)
    gateway.on_detect = workflow.cancel
    assert asyncio.run(workflow.detect_merchant()) is None
    assert workflow.merchant == ''
    assert workflow.state is WorkflowState.IDLE


def test_cancel_clears_selection(store, png_bytes) -> None:
    workflow = _selected(store, FakeGateway(), png_bytes)
    generation = workflow.generation
    workflow.cancel()
    assert workflow.state is WorkflowState.IDLE
    assert workflow.preview is None
    assert workflow.generation == generation + 1


def test_two_item_receipt_creates_two_grocery_transactions(storage, png_bytes) -> None:
    alerts = []
    store = TransactionStore(storage, on_budget_alert=lambda txn, level: alerts.append(level))
    receipt = ReceiptData(
        merchant='Lidl',
        date='2024-06-01',
        currency='SEK',
        items=[ReceiptItem('Milk 1L', 15), ReceiptItem('Bread', 25)],
        total=40,
        tax=None,
    )
    workflow = _selected(store, FakeGateway(receipt=receipt), png_bytes)
    asyncio.run(workflow.submit())

    assert workflow.state is WorkflowState.ITEMS_PENDING
    assert len(workflow.pending_items) == 2
    assert all(item.suggested_category is None for item in workflow.pending_items)
    assert workflow.pending_items[1].amount == pytest.approx(25 / 10.45)

    workflow.assign_category('Groceries')
    workflow.assign_category('Groceries')
    txns = store.transactions
    assert [t.category for t in txns] == ['Groceries', 'Groceries']
    assert {t.original_currency for t in txns} == {'SEK'}
    assert alerts == []


def test_failed_save_keeps_item_queued(failing_storage, png_bytes) -> None:
    store = TransactionStore(failing_storage)
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())

    failing_storage.failing = True
    with pytest.raises(OSError):
        workflow.assign_category('Groceries')
    assert workflow.current_item.name == 'Milk'
    assert store.transactions == []

    failing_storage.failing = False
    workflow.assign_category('Groceries')
    assert [t.name for t in store.transactions] == ['Milk']
    assert workflow.current_item.name == 'Bread'


def test_failed_skip_creates_nothing(failing_storage, png_bytes) -> None:
    store = TransactionStore(failing_storage)
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())

    failing_storage.failing = True
    with pytest.raises(OSError):
        workflow.skip_remaining()
    assert store.transactions == []
    assert [i.name for i in workflow.pending_items] == ['Milk', 'Bread']
    assert workflow.state is WorkflowState.ITEMS_PENDING


def test_unsaved_item_memory_does_not_block_assignment(failing_storage, png_bytes) -> None:
    store = TransactionStore(failing_storage)
    workflow = _selected(store, FakeGateway(receipt=_sample_receipt()), png_bytes)
    asyncio.run(workflow.submit())

    failing_storage.failing = True
    failing_storage.fail_keys = {ITEM_CATEGORY_KEY}
    milk = workflow.assign_category('Snacks')
    assert milk.category == 'Snacks'
    assert workflow.current_item.name == 'Bread'
    assert store.suggest_category('Milk') is None
