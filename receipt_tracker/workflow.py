"""Receipt ingestion workflow.

One receipt at a time moves through these states::

    IDLE -> FILE_SELECTED -> SUBMITTING -> [TAX_PENDING] -> [ITEMS_PENDING] -> IDLE

Every new file selection or cancellation bumps ``generation``.  Results of
asynchronous gateway calls are applied only if the generation they were
started under is still current, so a late merchant detection or extraction
for an abandoned receipt is discarded instead of overwriting newer state.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from .currency import convert
from .errors import GatewayError, ValidationError, WorkflowStateError
from .gateway import AdvisoryGateway
from .logger import get_logger
from .models import FALLBACK_CATEGORY, PendingItem, PendingTax, ReceiptData, Transaction
from .settings import get_default
from .store import TransactionStore

logger = get_logger(__name__)

TAX_TRANSACTION_NAME: str = get_default('tax', 'transaction_name', default='Tax')


class WorkflowState(str, Enum):
    IDLE = 'idle'
    FILE_SELECTED = 'file_selected'
    SUBMITTING = 'submitting'
    TAX_PENDING = 'tax_pending'
    ITEMS_PENDING = 'items_pending'


class ReceiptWorkflow:
    """Turns one receipt image into categorized transactions."""

    def __init__(self, store: TransactionStore, gateway: AdvisoryGateway):
        self.store = store
        self.gateway = gateway
        self.state = WorkflowState.IDLE
        self.generation = 0
        self.file_name: Optional[str] = None
        self.preview: Optional[bytes] = None
        self.merchant = ''
        self.is_detecting_merchant = False
        self.pending_tax: Optional[PendingTax] = None
        self.pending_items: List[PendingItem] = []
        self.last_error: Optional[str] = None

    @property
    def current_item(self) -> Optional[PendingItem]:
        return self.pending_items[0] if self.pending_items else None

    def _transition(self, state: WorkflowState) -> None:
        logger.debug(f"Receipt workflow {self.state.value} -> {state.value} (generation {self.generation})")
        self.state = state

    def _require(self, *states: WorkflowState) -> None:
        if self.state not in states:
            allowed = ', '.join(s.value for s in states)
            raise WorkflowStateError(f"Cannot do that while {self.state.value} (expected {allowed})")

    def _clear_file(self) -> None:
        self.file_name = None
        self.preview = None
        self.merchant = ''
        self.is_detecting_merchant = False

    # ------------------------------------------------------------------
    # File selection
    # ------------------------------------------------------------------
    def select_file(self, name: str, data: bytes) -> int:
        """Start a fresh cycle with a picked or captured image.

        Returns:
            The generation of the new cycle

        Raises:
            WorkflowStateError: If another receipt is still being processed
            ValidationError: If ``data`` is empty
        """
        self._require(WorkflowState.IDLE, WorkflowState.FILE_SELECTED)
        if not data:
            raise ValidationError("The selected file is empty")
        self.generation += 1
        self._clear_file()
        self.file_name = name
        self.preview = bytes(data)
        self.last_error = None
        self._transition(WorkflowState.FILE_SELECTED)
        return self.generation

    def set_merchant(self, text: str) -> None:
        """Set the manually entered merchant override."""
        self._require(WorkflowState.FILE_SELECTED)
        self.merchant = str(text or '')

    async def detect_merchant(self) -> Optional[str]:
        """Best-effort merchant pre-detection for the selected file.

        Failures degrade to an empty string.  The detected name only fills the
        merchant field when the user has not typed one.

        Returns:
            The detected merchant, or ``None`` when the result was discarded
            because the file changed in the meantime
        """
        self._require(WorkflowState.FILE_SELECTED)
        generation = self.generation
        data = self.preview or b''
        self.is_detecting_merchant = True
        try:
            detected = (await self.gateway.detect_merchant(data) or '').strip()
        except Exception as e:
            logger.info(f"Merchant detection failed: {e}")
            detected = ''

        active = (WorkflowState.FILE_SELECTED, WorkflowState.SUBMITTING)
        if generation != self.generation or self.state not in active:
            logger.info(f"Discarding merchant detection for stale generation {generation}")
            return None
        self.is_detecting_merchant = False
        if detected and not self.merchant.strip():
            self.merchant = detected
        return detected

    def cancel(self) -> None:
        """Discard the selected file, preview and merchant.

        Cancelling while the extraction is in flight makes its result stale.
        """
        self._require(WorkflowState.IDLE, WorkflowState.FILE_SELECTED, WorkflowState.SUBMITTING)
        if self.state is WorkflowState.IDLE:
            return
        self.generation += 1
        self._clear_file()
        self.last_error = None
        self._transition(WorkflowState.IDLE)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    async def submit(self) -> Optional[ReceiptData]:
        """Send the selected image for extraction and queue its items.

        On failure the workflow returns to ``FILE_SELECTED`` with the file kept
        and ``last_error`` set.

        Returns:
            The extracted receipt, or ``None`` on failure or stale result
        """
        self._require(WorkflowState.FILE_SELECTED)
        generation = self.generation
        data = self.preview or b''
        self.last_error = None
        self._transition(WorkflowState.SUBMITTING)

        try:
            receipt = await self.gateway.extract_receipt(data, fallback_currency=self.store.primary_currency)
        except GatewayError as e:
            return self._extraction_failed(generation, str(e))
        except Exception as e:
            logger.error(f"Unexpected receipt extraction error: {e}", exc_info=True)
            return self._extraction_failed(generation, "Failed to process receipt.")

        if generation != self.generation:
            logger.info(f"Discarding extraction result for stale generation {generation}")
            return None

        self._queue(receipt)
        return receipt

    def _extraction_failed(self, generation: int, message: str) -> None:
        if generation != self.generation:
            logger.info(f"Ignoring extraction failure for stale generation {generation}")
            return None
        logger.warning(f"Receipt extraction failed: {message}")
        self.last_error = message
        self._transition(WorkflowState.FILE_SELECTED)
        return None

    def _queue(self, receipt: ReceiptData) -> None:
        override = self.merchant.strip()
        merchant = override or receipt.merchant
        primary = self.store.primary_currency

        items: List[PendingItem] = []
        for item in receipt.items:
            if item.price <= 0:
                logger.info(f"Skipping receipt line {item.name!r} with non-positive price {item.price}")
                continue
            items.append(PendingItem(
                name=item.name,
                original_amount=item.price,
                original_currency=receipt.currency,
                amount=convert(item.price, receipt.currency, primary),
                date=receipt.date,
                merchant=merchant,
                suggested_category=self.store.suggest_category(item.name),
            ))

        self.pending_items = items
        self.pending_tax = (
            PendingTax(amount=receipt.tax, currency=receipt.currency, date=receipt.date, merchant=merchant)
            if receipt.tax else None
        )
        self._clear_file()
        logger.info(f"Receipt extracted: {len(items)} items, tax={receipt.tax}")
        self._advance()

    def _advance(self) -> None:
        if self.pending_tax is not None:
            self._transition(WorkflowState.TAX_PENDING)
        elif self.pending_items:
            self._transition(WorkflowState.ITEMS_PENDING)
        else:
            self._transition(WorkflowState.IDLE)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def confirm_tax(self, book: bool) -> Optional[Transaction]:
        """Book the pending tax as an ``Others`` expense, or drop it."""
        self._require(WorkflowState.TAX_PENDING)
        tax = self.pending_tax
        created = None
        if book and tax is not None:
            created = self.store.add_transaction({
                'name': TAX_TRANSACTION_NAME,
                'originalAmount': tax.amount,
                'originalCurrency': tax.currency,
                'date': tax.date,
                'merchant': tax.merchant,
                'category': FALLBACK_CATEGORY,
            })
        self.pending_tax = None
        self._advance()
        return created

    @staticmethod
    def _entry(item: PendingItem, category: str) -> Dict[str, Any]:
        return {
            'name': item.name,
            'originalAmount': item.original_amount,
            'originalCurrency': item.original_currency,
            'date': item.date,
            'merchant': item.merchant,
            'category': category,
        }

    def assign_category(self, category: str) -> Transaction:
        """Create a transaction for the current item and move to the next one.

        Raises:
            ValidationError: If the category is unknown; the item stays queued
            OSError: If the transaction could not be saved; the item stays queued
        """
        self._require(WorkflowState.ITEMS_PENDING)
        item = self.pending_items[0]
        created = self.store.add_transaction(self._entry(item, category))
        self.pending_items = self.pending_items[1:]
        self._advance()
        try:
            self.store.remember_item_category(item.name, category)
        except OSError as e:
            logger.warning(f"Could not remember the category of {item.name!r}: {e}")
        return created

    def skip_remaining(self) -> List[Transaction]:
        """Book every remaining item under ``Others`` in one step.

        Either all items are booked or, if saving fails, none are and the
        queue is left untouched.
        """
        self._require(WorkflowState.ITEMS_PENDING)
        created = self.store.add_transactions(
            [self._entry(item, FALLBACK_CATEGORY) for item in self.pending_items]
        )
        self.pending_items = []
        self._advance()
        return created
