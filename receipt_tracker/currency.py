"""Currency conversion and formatting.

Rates come from the static table in ``settings/defaults.json`` and are
expressed relative to a reference currency (rate 1.0).  They are not fetched
live, so converted amounts are an approximation.
"""

from __future__ import annotations

from typing import Dict, List, Union

from .settings import get_default

_CURRENCY_TABLE: Dict[str, Dict[str, object]] = get_default('currency', 'supported', default={}) or {}

EXCHANGE_RATES: Dict[str, float] = {
    code: float(entry.get('rate', 1.0)) for code, entry in _CURRENCY_TABLE.items()
}
CURRENCY_SYMBOLS: Dict[str, str] = {
    code: str(entry.get('symbol') or code) for code, entry in _CURRENCY_TABLE.items()
}
DEFAULT_CURRENCY: str = get_default('currency', 'default', default='USD')


def supported_currencies() -> List[str]:
    return list(EXCHANGE_RATES)


def is_supported(code: str) -> bool:
    return code in EXCHANGE_RATES


def convert(amount: Union[float, int], from_currency: str, to_currency: str) -> float:
    """Convert ``amount`` between two currencies via the reference unit.

    Same-currency conversion returns ``amount`` untouched.  Unknown codes are
    treated as the reference unit (rate 1.0) rather than raising.

    Example:
        >>> round(convert(10, 'USD', 'EUR'), 2)
        9.2
        >>> convert(10, 'SEK', 'SEK')
        10
    """
    if from_currency == to_currency:
        return amount
    in_reference = amount / (EXCHANGE_RATES.get(from_currency) or 1.0)
    return in_reference * (EXCHANGE_RATES.get(to_currency) or 1.0)


def format_currency(amount: Union[float, int], currency_code: str) -> str:
    """Format an amount with the currency symbol and exactly two decimals.

    No locale grouping is applied; the code itself is used when no symbol is
    configured.

    Example:
        >>> format_currency(1234.5, 'USD')
        '$1234.50'
        >>> format_currency(3, 'CHF')
        'CHF3.00'
    """
    symbol = CURRENCY_SYMBOLS.get(currency_code, currency_code)
    return f"{symbol}{float(amount):.2f}"
