"""Core data types for transactions, categories and extracted receipts."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import ValidationError
from .settings import get_default

INCOME_CATEGORY: str = get_default('categories', 'income', default='Income')
FALLBACK_CATEGORY: str = get_default('categories', 'fallback', default='Others')
MAX_CUSTOM_CATEGORIES: int = int(get_default('categories', 'max_custom', default=15))
RESERVED_CATEGORIES = {INCOME_CATEGORY.lower(), FALLBACK_CATEGORY.lower()}


class Bucket(str, Enum):
    """The three 50/30/20 allocation buckets."""

    NEEDS = 'Needs'
    WANTS = 'Wants'
    SAVINGS = 'Savings'

    @classmethod
    def parse(cls, value: Any) -> Optional['Bucket']:
        try:
            return cls(str(value).strip().title())
        except ValueError:
            return None


class AlertLevel(str, Enum):
    WARNING = 'warning'
    EXCEEDED = 'exceeded'


def new_transaction_id() -> str:
    return uuid.uuid4().hex


def parse_tags(raw: Any) -> List[str]:
    """Normalize tags from a comma-separated string or an iterable.

    Tags are trimmed, empty entries are removed and duplicates are dropped
    keeping the first occurrence.

    Example:
        >>> parse_tags(' work, lunch,, work ')
        ['work', 'lunch']
    """
    if raw is None:
        return []
    items: Iterable[Any] = raw.split(',') if isinstance(raw, str) else raw
    tags: List[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass
class Transaction:
    """One inflow or outflow.

    ``amount`` is ``original_amount`` expressed in the primary currency and is
    owned by the store: it is recomputed whenever the original value, the
    original currency or the primary currency changes.
    """

    name: str
    original_amount: float
    original_currency: str
    date: str
    category: str
    merchant: str = ''
    tags: List[str] = field(default_factory=list)
    amount: float = 0.0
    id: str = field(default_factory=new_transaction_id)

    @property
    def is_income(self) -> bool:
        return self.category == INCOME_CATEGORY

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the persisted (camelCase) field names."""
        return {
            'id': self.id,
            'name': self.name,
            'originalAmount': self.original_amount,
            'originalCurrency': self.original_currency,
            'amount': self.amount,
            'date': self.date,
            'merchant': self.merchant,
            'category': self.category,
            'tags': list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=str(data.get('id') or new_transaction_id()),
            name=str(data.get('name') or ''),
            original_amount=_to_float(data.get('originalAmount')),
            original_currency=str(data.get('originalCurrency') or ''),
            amount=_to_float(data.get('amount')),
            date=str(data.get('date') or ''),
            merchant=str(data.get('merchant') or ''),
            category=str(data.get('category') or FALLBACK_CATEGORY),
            tags=parse_tags(data.get('tags')),
        )

    def copy(self, **changes: Any) -> 'Transaction':
        values = asdict(self)
        values.update(changes)
        values['tags'] = parse_tags(values.get('tags'))
        return Transaction(**values)


class CategorySet:
    """The user's configurable expense categories.

    ``Others`` is always present (and always last); ``Income`` is a closed,
    reserved label and can never be a member.
    """

    def __init__(self, names: Iterable[str] = ()):
        custom: List[str] = []
        for raw in names:
            name = str(raw).strip()
            if not name or name.lower() in RESERVED_CATEGORIES:
                continue
            if name not in custom:
                custom.append(name)
        self._custom = custom

    @classmethod
    def validated(cls, names: Iterable[str]) -> 'CategorySet':
        """Build a category set, rejecting reserved names and overflow."""
        names = [str(n).strip() for n in names]
        for name in names:
            if name.lower() == INCOME_CATEGORY.lower():
                raise ValidationError(f"'{INCOME_CATEGORY}' is reserved and cannot be used as a category")
        result = cls(names)
        if len(result.custom) > MAX_CUSTOM_CATEGORIES:
            raise ValidationError(
                f"At most {MAX_CUSTOM_CATEGORIES} custom categories are allowed "
                f"(got {len(result.custom)})"
            )
        return result

    @property
    def custom(self) -> List[str]:
        return list(self._custom)

    @property
    def names(self) -> List[str]:
        return self._custom + [FALLBACK_CATEGORY]

    def __contains__(self, name: object) -> bool:
        return name == FALLBACK_CATEGORY or name in self._custom

    def __iter__(self):
        return iter(self.names)

    def __len__(self) -> int:
        return len(self._custom) + 1

    def __eq__(self, other: object) -> bool:
        return isinstance(other, CategorySet) and self.names == other.names

    def __repr__(self) -> str:
        return f"CategorySet({self.names!r})"


@dataclass
class ReceiptItem:
    name: str
    price: float


@dataclass
class ReceiptData:
    """Structured result of a receipt extraction."""

    merchant: str
    date: str
    currency: str
    items: List[ReceiptItem]
    total: float
    tax: Optional[float] = None


@dataclass
class PendingItem:
    """An extracted line item waiting for a category."""

    name: str
    original_amount: float
    original_currency: str
    amount: float
    date: str
    merchant: str
    suggested_category: Optional[str] = None


@dataclass
class PendingTax:
    amount: float
    currency: str
    date: str
    merchant: str


def _to_float(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0
