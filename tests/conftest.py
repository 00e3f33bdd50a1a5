"""Shared fixtures for the receipt tracker tests."""

from __future__ import annotations

import io
from typing import List, Optional, Set

import pytest
from PIL import Image

from receipt_tracker.errors import AdvisoryFailed, ExtractionFailed
from receipt_tracker.models import ReceiptData
from receipt_tracker.storage import LocalStorage
from receipt_tracker.store import TransactionStore


class FakeGateway:
    """In-memory AdvisoryGateway double."""

    def __init__(
        self,
        receipt: Optional[ReceiptData] = None,
        merchant: str = '',
        feedback: str = 'Looking good!',
        answer: str = 'You spent $10.00.',
        fail: bool = False,
    ):
        self.receipt = receipt
        self.merchant = merchant
        self.feedback = feedback
        self.answer = answer
        self.fail = fail
        self.extract_calls: List[str] = []
        self.on_extract = None
        self.on_detect = None

    async def extract_receipt(self, image_bytes, fallback_currency='USD'):
        self.extract_calls.append(fallback_currency)
        if self.on_extract is not None:
            self.on_extract()
        if self.fail:
            raise ExtractionFailed("Failed to analyze receipt.")
        return self.receipt

    async def detect_merchant(self, image_bytes):
        if self.on_detect is not None:
            self.on_detect()
        return self.merchant

    async def get_feedback(self, transactions, primary_currency, category_rule_map, period=None):
        if self.fail:
            raise AdvisoryFailed("down")
        return self.feedback

    async def answer_query(self, question, transactions, primary_currency):
        if self.fail:
            raise AdvisoryFailed("down")
        return self.answer


class FailingStorage(LocalStorage):
    """LocalStorage whose writes raise while ``failing`` is set.

    With ``fail_keys`` only writes to those keys raise.
    """

    def __init__(self, storage_dir):
        super().__init__(storage_dir)
        self.failing = False
        self.fail_keys: Set[str] = set()

    def set(self, key, value) -> None:
        if self.failing and (not self.fail_keys or key in self.fail_keys):
            raise OSError(f"disk full while writing {key}")
        super().set(key, value)


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "storage")


@pytest.fixture
def store(storage) -> TransactionStore:
    return TransactionStore(storage)


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', (4, 4), color='white').save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def failing_storage(tmp_path) -> FailingStorage:
    return FailingStorage(tmp_path / "storage")
