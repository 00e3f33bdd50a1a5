"""Transaction store: the authoritative in-memory state and its persistence.

The store owns the transaction list together with the category list, the
50/30/20 rule map, the budgets and the primary currency.  Every mutation
builds the complete new state first, writes the affected keys to
:class:`~receipt_tracker.storage.LocalStorage`, and swaps the new state in
only once every write has succeeded.  Readers only ever receive copies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from . import budget_rules
from .currency import DEFAULT_CURRENCY, convert, is_supported
from .errors import ValidationError
from .logger import get_logger
from .models import (
    FALLBACK_CATEGORY,
    INCOME_CATEGORY,
    AlertLevel,
    Bucket,
    CategorySet,
    Transaction,
    new_transaction_id,
    parse_tags,
)
from .periods import to_date
from .settings import get_default
from .storage import (
    BUDGETS_KEY,
    CATEGORIES_KEY,
    CURRENCY_KEY,
    ITEM_CATEGORY_KEY,
    RULE_MAP_KEY,
    TRANSACTIONS_KEY,
    LocalStorage,
)

logger = get_logger(__name__)

DEFAULT_BUCKET = Bucket.parse(get_default('rule_503020', 'default_bucket', default='Wants')) or Bucket.WANTS

BudgetAlertListener = Callable[[Transaction, AlertLevel], None]


def normalize_item_name(name: str) -> str:
    return ' '.join(str(name or '').split()).lower()


@dataclass
class TrackerSettings:
    """User configuration owned by the store."""

    categories: CategorySet
    category_rule_map: Dict[str, str] = field(default_factory=dict)
    budgets: Dict[str, float] = field(default_factory=dict)
    primary_currency: str = DEFAULT_CURRENCY
    item_category_map: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def defaults(cls) -> 'TrackerSettings':
        categories = CategorySet(get_default('categories', 'starter', default=[]) or [])
        starter_map = get_default('rule_503020', 'starter_map', default={}) or {}
        return cls(
            categories=categories,
            category_rule_map=normalize_rule_map(starter_map, categories),
            budgets={},
            primary_currency=DEFAULT_CURRENCY,
        )


def normalize_rule_map(rule_map: Mapping[str, Any], categories: CategorySet) -> Dict[str, str]:
    """Keep valid entries for configured categories; give the rest the default bucket."""
    normalized: Dict[str, str] = {}
    for category in categories:
        bucket = Bucket.parse(rule_map.get(category)) if category in rule_map else None
        normalized[category] = (bucket or DEFAULT_BUCKET).value
    return normalized


def normalize_budgets(budgets: Mapping[str, Any]) -> Dict[str, float]:
    """Drop non-positive and non-numeric budgets; they mean "not tracked"."""
    normalized: Dict[str, float] = {}
    for category, value in (budgets or {}).items():
        try:
            amount = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(amount) and amount > 0:
            normalized[str(category)] = amount
    return normalized


class TransactionStore:
    """Owns transactions and settings and keeps them persisted."""

    def __init__(
        self,
        storage: Optional[LocalStorage] = None,
        on_budget_alert: Optional[BudgetAlertListener] = None,
    ):
        """Initialize the store, restoring persisted state.

        Args:
            storage: Storage backend, defaults to ``LocalStorage()``
            on_budget_alert: Called with the transaction and alert level when
                an add or edit pushes a category budget to warning/exceeded
        """
        self.storage = storage if storage is not None else LocalStorage()
        self.on_budget_alert = on_budget_alert
        self._transactions: List[Transaction] = []
        self._settings = TrackerSettings.defaults()
        self._restore()

    # ------------------------------------------------------------------
    # Restore and migration
    # ------------------------------------------------------------------
    def _restore(self) -> None:
        defaults = TrackerSettings.defaults()

        stored_categories = self.storage.get(CATEGORIES_KEY)
        if isinstance(stored_categories, list):
            categories = CategorySet(stored_categories)
        else:
            categories = defaults.categories

        stored_map = self.storage.get(RULE_MAP_KEY)
        if isinstance(stored_map, dict):
            rule_map = normalize_rule_map(stored_map, categories)
        else:
            rule_map = normalize_rule_map(defaults.category_rule_map, categories)

        currency = self.storage.get(CURRENCY_KEY)
        if not isinstance(currency, str) or not is_supported(currency):
            if currency is not None:
                logger.warning(f"Stored primary currency {currency!r} is not supported; using {DEFAULT_CURRENCY}")
            currency = DEFAULT_CURRENCY

        stored_budgets = self.storage.get(BUDGETS_KEY)
        budgets = normalize_budgets(stored_budgets) if isinstance(stored_budgets, dict) else {}

        stored_items = self.storage.get(ITEM_CATEGORY_KEY)
        item_map = {
            normalize_item_name(k): str(v)
            for k, v in (stored_items.items() if isinstance(stored_items, dict) else [])
            if str(v) in categories
        }

        self._settings = TrackerSettings(
            categories=categories,
            category_rule_map=rule_map,
            budgets=budgets,
            primary_currency=currency,
            item_category_map=item_map,
        )

        raw = self.storage.get(TRANSACTIONS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Stored transactions are not a list; starting empty")
            raw = []
        transactions, changed = self._migrate(raw)
        self._transactions = transactions
        if changed:
            logger.info(f"Migrated {len(transactions)} stored transactions")
            try:
                self.storage.set(TRANSACTIONS_KEY, [t.to_dict() for t in transactions])
            except OSError as e:
                logger.warning(f"Could not save migrated transactions; they stay in memory: {e}")

    def _migrate(self, raw: List[Any]) -> Tuple[List[Transaction], bool]:
        """Upgrade stored records to the current shape.

        Returns:
            The restored transactions and whether anything had to change
        """
        currency = self._settings.primary_currency
        migrated: List[Transaction] = []
        seen_ids = set()
        changed = False
        for entry in raw:
            if not isinstance(entry, dict):
                logger.warning(f"Dropping malformed stored transaction: {entry!r}")
                changed = True
                continue
            record = dict(entry)
            if record.get('originalAmount') is None:
                record['originalAmount'] = record.get('amount', 0.0)
                changed = True
            if not record.get('originalCurrency'):
                record['originalCurrency'] = currency
                changed = True
            if 'merchant' not in record or 'tags' not in record:
                changed = True
            txn = Transaction.from_dict(record)
            if not entry.get('id') or txn.id in seen_ids:
                txn.id = new_transaction_id()
                changed = True
            seen_ids.add(txn.id)
            if not txn.is_income and txn.category not in self._settings.categories:
                logger.warning(f"Healing transaction {txn.id}: category {txn.category!r} -> {FALLBACK_CATEGORY}")
                txn.category = FALLBACK_CATEGORY
                changed = True
            amount = self._converted(txn.original_amount, txn.original_currency)
            if amount != txn.amount:
                txn.amount = amount
                changed = True
            migrated.append(txn)
        return migrated, changed

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def transactions(self) -> List[Transaction]:
        return [t.copy() for t in self._transactions]

    @property
    def categories(self) -> List[str]:
        return self._settings.categories.names

    @property
    def category_rule_map(self) -> Dict[str, str]:
        return dict(self._settings.category_rule_map)

    @property
    def budgets(self) -> Dict[str, float]:
        return dict(self._settings.budgets)

    @property
    def primary_currency(self) -> str:
        return self._settings.primary_currency

    @property
    def item_category_map(self) -> Dict[str, str]:
        return dict(self._settings.item_category_map)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for txn in self._transactions:
            if txn.id == transaction_id:
                return txn.copy()
        return None

    def merchants(self) -> List[str]:
        """Distinct known merchants for autocompletion."""
        names = {
            t.merchant.strip() for t in self._transactions
            if t.merchant and t.merchant.strip() and t.merchant != INCOME_CATEGORY
        }
        return sorted(names, key=str.lower)

    def suggest_category(self, item_name: str) -> Optional[str]:
        category = self._settings.item_category_map.get(normalize_item_name(item_name))
        return category if category in self._settings.categories else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_transaction(self, data: Mapping[str, Any]) -> Transaction:
        """Create a transaction from ``data`` and prepend it to the list.

        ``data`` uses the persisted field names (``name``, ``originalAmount``,
        ``originalCurrency``, ``date``, ``merchant``, ``category``, ``tags``);
        ``id`` and ``amount`` are always assigned here.

        Raises:
            ValidationError: If any field is invalid; nothing is stored
            OSError: If the write fails; nothing is stored
        """
        return self.add_transactions([data])[0]

    def add_transactions(self, batch: Iterable[Mapping[str, Any]]) -> List[Transaction]:
        """Create several transactions in one all-or-nothing step.

        Every entry is validated before anything is stored.  The budget check
        runs once per created transaction, in order.

        Returns:
            The created transactions, in the order given
        """
        created = [self._build(data, transaction_id=new_transaction_id()) for data in batch]
        if not created:
            return []
        prior = self._transactions
        self._commit(TRANSACTIONS_KEY, transactions=list(reversed(created)) + prior)
        for txn in created:
            logger.info(f"Added transaction {txn.id} ({txn.name!r}, {txn.category})")
        seen = list(prior)
        for txn in created:
            self._notify_budget(txn, seen)
            seen.append(txn)
        return [txn.copy() for txn in created]

    def update_transaction(self, updated: Transaction) -> Optional[Transaction]:
        """Replace the transaction with the same id, recomputing its amount.

        Returns:
            The stored transaction, or ``None`` if the id no longer exists

        Raises:
            ValidationError: If any field is invalid; nothing is changed
        """
        index = next((i for i, t in enumerate(self._transactions) if t.id == updated.id), None)
        if index is None:
            logger.info(f"Update ignored: transaction {updated.id} not found")
            return None
        txn = self._build(updated.to_dict(), transaction_id=updated.id)
        new_list = list(self._transactions)
        new_list[index] = txn
        self._commit(TRANSACTIONS_KEY, transactions=new_list)
        logger.info(f"Updated transaction {txn.id}")
        self._notify_budget(txn, new_list)
        return txn.copy()

    def delete_transaction(self, transaction_id: str) -> bool:
        """Remove a transaction; deleting an unknown id is a no-op.

        Returns:
            True if a transaction was removed
        """
        remaining = [t for t in self._transactions if t.id != transaction_id]
        if len(remaining) == len(self._transactions):
            return False
        self._commit(TRANSACTIONS_KEY, transactions=remaining)
        logger.info(f"Deleted transaction {transaction_id}")
        return True

    def set_primary_currency(self, new_currency: str) -> None:
        """Switch the primary currency and recompute every amount.

        Raises:
            ValidationError: If the currency is not supported
        """
        if not is_supported(new_currency):
            raise ValidationError(f"Unsupported currency: {new_currency!r}")
        rewritten = [
            t.copy(amount=convert(t.original_amount, t.original_currency, new_currency))
            for t in self._transactions
        ]
        self._commit(
            CURRENCY_KEY, TRANSACTIONS_KEY,
            transactions=rewritten,
            settings=replace(self._settings, primary_currency=new_currency),
        )
        logger.info(f"Primary currency set to {new_currency}; recomputed {len(rewritten)} amounts")

    def save_categories(self, new_categories: Iterable[str], new_rule_map: Mapping[str, Any]) -> int:
        """Replace the category list and the rule map.

        ``Others`` is always re-appended.  Transactions whose category was
        removed are moved to ``Others`` in the same step; budgets and
        remembered item categories for removed categories are dropped.

        Returns:
            Number of transactions that were reassigned

        Raises:
            ValidationError: If a name is reserved or there are too many categories
        """
        categories = CategorySet.validated(new_categories)
        rule_map = normalize_rule_map(new_rule_map or {}, categories)

        reassigned = 0
        healed: List[Transaction] = []
        for txn in self._transactions:
            if not txn.is_income and txn.category not in categories:
                healed.append(txn.copy(category=FALLBACK_CATEGORY))
                reassigned += 1
            else:
                healed.append(txn)

        settings = TrackerSettings(
            categories=categories,
            category_rule_map=rule_map,
            budgets={k: v for k, v in self._settings.budgets.items() if k in categories},
            primary_currency=self._settings.primary_currency,
            item_category_map={k: v for k, v in self._settings.item_category_map.items() if v in categories},
        )
        self._commit(
            CATEGORIES_KEY, RULE_MAP_KEY, TRANSACTIONS_KEY, BUDGETS_KEY, ITEM_CATEGORY_KEY,
            transactions=healed,
            settings=settings,
        )
        if reassigned:
            logger.warning(f"Reassigned {reassigned} transactions to {FALLBACK_CATEGORY}")
        logger.info(f"Saved {len(categories)} categories")
        return reassigned

    def save_budgets(self, new_budgets: Mapping[str, Any]) -> Dict[str, float]:
        """Replace the budgets, dropping non-positive entries and unknown categories."""
        budgets = {
            k: v for k, v in normalize_budgets(new_budgets).items()
            if k in self._settings.categories
        }
        self._commit(BUDGETS_KEY, settings=replace(self._settings, budgets=budgets))
        logger.info(f"Saved {len(budgets)} budgets")
        return dict(budgets)

    def remember_item_category(self, item_name: str, category: str) -> None:
        key = normalize_item_name(item_name)
        if not key or category not in self._settings.categories:
            return
        if self._settings.item_category_map.get(key) == category:
            return
        item_map = dict(self._settings.item_category_map)
        item_map[key] = category
        self._commit(ITEM_CATEGORY_KEY, settings=replace(self._settings, item_category_map=item_map))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _converted(self, amount: float, currency: str) -> float:
        return convert(amount, currency, self._settings.primary_currency)

    def _build(self, data: Mapping[str, Any], transaction_id: str) -> Transaction:
        name = str(data.get('name') or '').strip()
        if not name:
            raise ValidationError("Transaction name cannot be empty")

        try:
            original_amount = float(data.get('originalAmount'))
        except (TypeError, ValueError):
            raise ValidationError(f"Amount must be a number (got {data.get('originalAmount')!r})") from None
        if not math.isfinite(original_amount) or original_amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        currency = str(data.get('originalCurrency') or self._settings.primary_currency).strip().upper()
        if not is_supported(currency):
            raise ValidationError(f"Unsupported currency: {currency!r}")

        raw_date = data.get('date') or date.today().isoformat()
        try:
            txn_date = to_date(raw_date).isoformat()
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid date: {raw_date!r}") from None

        category = str(data.get('category') or FALLBACK_CATEGORY).strip()
        if category != INCOME_CATEGORY and category not in self._settings.categories:
            raise ValidationError(f"Unknown category: {category!r}")

        merchant = INCOME_CATEGORY if category == INCOME_CATEGORY else str(data.get('merchant') or '').strip()

        return Transaction(
            id=transaction_id,
            name=name,
            original_amount=original_amount,
            original_currency=currency,
            amount=self._converted(original_amount, currency),
            date=txn_date,
            merchant=merchant,
            category=category,
            tags=parse_tags(data.get('tags')),
        )

    def _notify_budget(self, txn: Transaction, prior: List[Transaction]) -> Optional[AlertLevel]:
        level = budget_rules.check_budget_alert(txn, prior, self._settings.budgets)
        if level is not None:
            logger.info(f"Budget {level.value} for {txn.category}")
            if self.on_budget_alert is not None:
                self.on_budget_alert(txn.copy(), level)
        return level

    @staticmethod
    def _payload(key: str, transactions: List[Transaction], settings: TrackerSettings) -> Any:
        if key == TRANSACTIONS_KEY:
            return [t.to_dict() for t in transactions]
        if key == CATEGORIES_KEY:
            return settings.categories.names
        if key == RULE_MAP_KEY:
            return dict(settings.category_rule_map)
        if key == CURRENCY_KEY:
            return settings.primary_currency
        if key == BUDGETS_KEY:
            return dict(settings.budgets)
        if key == ITEM_CATEGORY_KEY:
            return dict(settings.item_category_map)
        raise KeyError(key)

    def _commit(
        self,
        *keys: str,
        transactions: Optional[List[Transaction]] = None,
        settings: Optional[TrackerSettings] = None,
    ) -> None:
        """Write the candidate state under ``keys``, then make it current.

        If a write fails the in-memory state is left as it was, the keys that
        were already written are put back, and the ``OSError`` propagates.
        """
        new_transactions = self._transactions if transactions is None else transactions
        new_settings = self._settings if settings is None else settings
        written: List[str] = []
        try:
            for key in keys:
                self.storage.set(key, self._payload(key, new_transactions, new_settings))
                written.append(key)
        except OSError:
            for key in written:
                try:
                    self.storage.set(key, self._payload(key, self._transactions, self._settings))
                except OSError as e:
                    logger.error(f"Could not restore stored '{key}' after a failed write: {e}")
            raise
        self._transactions = new_transactions
        self._settings = new_settings
