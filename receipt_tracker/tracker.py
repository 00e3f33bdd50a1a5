"""Application facade used by the presentation layer.

:class:`ExpenseTracker` wires the store, the receipt workflow and the AI
gateway together.  It exposes read accessors for the derived figures and
intent handlers for every user action.  Intent handlers validate their input,
never raise for user or service errors, and report the outcome through a
queue of :class:`Notification` objects that the UI shows as toasts.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional

from . import budget_rules
from .currency import format_currency
from .errors import GatewayError, ReceiptTrackerError, ValidationError
from .filters import filter_transactions, sort_by_date
from .gateway import AdvisoryGateway, GeminiGateway
from .logger import get_logger
from .models import INCOME_CATEGORY, AlertLevel, Transaction
from .periods import FinancialPeriod, financial_month_range
from .storage import LocalStorage
from .store import TransactionStore
from .workflow import ReceiptWorkflow, WorkflowState

logger = get_logger(__name__)

MAX_NOTIFICATIONS = 20

FEEDBACK_FALLBACK = "Sorry, I couldn't generate feedback right now. Please try again later."
QUERY_FALLBACK = "Sorry, I couldn't answer that right now. Please try again later."
NO_DATA_MESSAGE = "No transaction data available to analyze."


@dataclass(frozen=True)
class Notification:
    message: str
    level: str = 'info'  # success | error | warning | info


class ExpenseTracker:
    """Entry point for the UI: read accessors plus intent handlers."""

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        gateway: Optional[AdvisoryGateway] = None,
        storage: Optional[LocalStorage] = None,
    ):
        self.store = store if store is not None else TransactionStore(storage)
        self.store.on_budget_alert = self._on_budget_alert
        self.gateway = gateway if gateway is not None else GeminiGateway()
        self.workflow = ReceiptWorkflow(self.store, self.gateway)
        self.notifications: Deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)
        self.feedback = ''
        self.answer = ''

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def notify(self, message: str, level: str = 'info') -> None:
        self.notifications.append(Notification(message, level))

    def drain_notifications(self) -> List[Notification]:
        drained = list(self.notifications)
        self.notifications.clear()
        return drained

    def _on_budget_alert(self, txn: Transaction, level: AlertLevel) -> None:
        if level is AlertLevel.EXCEEDED:
            self.notify(f"Budget exceeded for {txn.category}!", 'error')
        else:
            self.notify(f"Heads up: you've used over {budget_rules.WARNING_RATIO:.0%} of your {txn.category} budget.", 'warning')

    def _fail(self, action: str, error: Exception) -> None:
        if isinstance(error, ValidationError):
            logger.info(f"{action} rejected: {error}")
            self.notify(str(error), 'error')
        else:
            logger.warning(f"{action} failed: {error}", exc_info=True)
            self.notify(f"{action} failed. Please try again.", 'error')

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def primary_currency(self) -> str:
        return self.store.primary_currency

    @property
    def categories(self) -> List[str]:
        return self.store.categories

    @property
    def category_rule_map(self) -> Dict[str, str]:
        return self.store.category_rule_map

    @property
    def budgets(self) -> Dict[str, float]:
        return self.store.budgets

    def transactions(self, **filters: Any) -> List[Transaction]:
        """Transactions for display, most recent first, optionally filtered."""
        if filters:
            return filter_transactions(self.store.transactions, **filters)
        return sort_by_date(self.store.transactions)

    def merchants(self) -> List[str]:
        return self.store.merchants()

    def current_period(self) -> FinancialPeriod:
        return financial_month_range()

    def totals(self) -> Dict[str, Any]:
        return budget_rules.totals(self.store.transactions)

    def period_totals(self, period: Optional[FinancialPeriod] = None) -> Dict[str, Any]:
        return budget_rules.period_totals(
            self.store.transactions,
            period or self.current_period(),
            self.store.category_rule_map,
        )

    def rule_summary(self, period: Optional[FinancialPeriod] = None) -> Dict[str, Any]:
        return budget_rules.rule_summary(self.period_totals(period))

    def budget_progress(self, period: Optional[FinancialPeriod] = None) -> List[Dict[str, Any]]:
        monthly = self.period_totals(period)['monthly_category_totals']
        return budget_rules.budget_progress(self.store.budgets, monthly)

    def format(self, amount: float) -> str:
        return format_currency(amount, self.store.primary_currency)

    # ------------------------------------------------------------------
    # Transaction intents
    # ------------------------------------------------------------------
    def add_manual_transaction(
        self,
        kind: str,
        name: str,
        amount: Any,
        currency: Optional[str] = None,
        txn_date: Optional[str] = None,
        merchant: str = '',
        category: Optional[str] = None,
        tags: Any = None,
    ) -> Optional[Transaction]:
        """Add an expense or income entered by hand.

        Income is always booked under the ``Income`` category and merchant.

        Returns:
            The created transaction, or ``None`` if the input was rejected
        """
        try:
            if kind not in ('expense', 'income'):
                raise ValidationError(f"Unknown transaction type: {kind!r}")
            is_income = kind == 'income'
            created = self.store.add_transaction({
                'name': name,
                'originalAmount': amount,
                'originalCurrency': currency or self.store.primary_currency,
                'date': txn_date or date.today().isoformat(),
                'merchant': INCOME_CATEGORY if is_income else merchant,
                'category': INCOME_CATEGORY if is_income else (category or self.store.categories[0]),
                'tags': tags,
            })
        except (ValidationError, OSError) as e:
            self._fail("Adding the transaction", e)
            return None
        self.notify(f"Added {created.name} ({self.format(created.amount)}).", 'success')
        return created

    def update_transaction(self, updated: Transaction) -> Optional[Transaction]:
        try:
            stored = self.store.update_transaction(updated)
        except (ValidationError, OSError) as e:
            self._fail("Updating the transaction", e)
            return None
        if stored is None:
            self.notify("That transaction no longer exists.", 'warning')
            return None
        self.notify("Transaction updated.", 'success')
        return stored

    def delete_transaction(self, transaction_id: str) -> bool:
        try:
            removed = self.store.delete_transaction(transaction_id)
        except OSError as e:
            self._fail("Deleting the transaction", e)
            return False
        if removed:
            self.notify("Transaction deleted.", 'success')
        return removed

    # ------------------------------------------------------------------
    # Configuration intents
    # ------------------------------------------------------------------
    def change_currency(self, currency: str) -> bool:
        try:
            self.store.set_primary_currency(currency)
        except (ValidationError, OSError) as e:
            self._fail("Changing the currency", e)
            return False
        self.notify(f"Primary currency set to {currency}.", 'success')
        return True

    def save_categories(self, categories: Iterable[str], rule_map: Mapping[str, Any]) -> bool:
        try:
            reassigned = self.store.save_categories(categories, rule_map)
        except (ValidationError, OSError) as e:
            self._fail("Saving categories", e)
            return False
        message = "Categories saved."
        if reassigned:
            message += f" {reassigned} transaction(s) moved to Others."
        self.notify(message, 'success')
        return True

    def save_budgets(self, budgets: Mapping[str, Any]) -> bool:
        try:
            self.store.save_budgets(budgets)
        except OSError as e:
            self._fail("Saving budgets", e)
            return False
        self.notify("Budgets saved.", 'success')
        return True

    # ------------------------------------------------------------------
    # Receipt intents
    # ------------------------------------------------------------------
    async def select_receipt(self, name: str, data: bytes, detect: bool = True) -> bool:
        """Select a receipt image and pre-detect its merchant."""
        try:
            self.workflow.select_file(name, data)
        except ReceiptTrackerError as e:
            self._fail("Selecting the receipt", e)
            return False
        if detect:
            await self.workflow.detect_merchant()
        return True

    async def process_receipt(self) -> bool:
        """Submit the selected receipt for extraction.

        Returns:
            True when items (or tax) were extracted and queued, or the receipt
            was empty; False on failure
        """
        if self.workflow.state is not WorkflowState.FILE_SELECTED:
            self.notify("Select a receipt image first.", 'warning')
            return False
        receipt = await self.workflow.submit()
        if receipt is None:
            if self.workflow.last_error:
                self.notify(self.workflow.last_error, 'error')
            return False
        if not receipt.items and not receipt.tax:
            self.notify("No items were found on the receipt.", 'warning')
        else:
            self.notify('Receipt processed successfully!', 'success')
        return True

    def cancel_receipt(self) -> None:
        try:
            self.workflow.cancel()
        except ReceiptTrackerError as e:
            self._fail("Cancelling the receipt", e)

    def confirm_tax(self, book: bool) -> Optional[Transaction]:
        try:
            return self.workflow.confirm_tax(book)
        except (ReceiptTrackerError, OSError) as e:
            self._fail("Booking the tax", e)
            return None

    def assign_category(self, category: str) -> Optional[Transaction]:
        try:
            return self.workflow.assign_category(category)
        except (ReceiptTrackerError, OSError) as e:
            self._fail("Categorizing the item", e)
            return None

    def skip_remaining_items(self) -> List[Transaction]:
        try:
            created = self.workflow.skip_remaining()
        except (ReceiptTrackerError, OSError) as e:
            self._fail("Skipping items", e)
            return []
        if created:
            self.notify(f"{len(created)} item(s) added to Others.", 'success')
        return created

    # ------------------------------------------------------------------
    # Advisory intents
    # ------------------------------------------------------------------
    async def request_feedback(self) -> str:
        """Ask the AI service for feedback on the spending history."""
        transactions = self.store.transactions
        if not transactions:
            self.notify('Not enough data for feedback. Please add more transactions.', 'error')
            self.feedback = NO_DATA_MESSAGE
            return self.feedback
        try:
            self.feedback = await self.gateway.get_feedback(
                transactions,
                self.store.primary_currency,
                self.store.category_rule_map,
                self.current_period(),
            )
        except GatewayError as e:
            logger.warning(f"Feedback unavailable: {e}")
            self.notify('Failed to get AI feedback.', 'error')
            self.feedback = FEEDBACK_FALLBACK
        return self.feedback

    async def ask_question(self, question: str) -> str:
        """Answer a free-text question about the transaction history."""
        question = (question or '').strip()
        if not question:
            self.notify("Please enter a question.", 'warning')
            return self.answer
        try:
            self.answer = await self.gateway.answer_query(
                question,
                self.store.transactions,
                self.store.primary_currency,
            )
        except GatewayError as e:
            logger.warning(f"Query unavailable: {e}")
            self.notify('Failed to get an answer.', 'error')
            self.answer = QUERY_FALLBACK
        return self.answer
