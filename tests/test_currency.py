"""Unit tests for receipt_tracker.currency."""

from __future__ import annotations

import pytest

from receipt_tracker import currency


def test_same_currency_is_identity() -> None:
    assert currency.convert(12.34, 'SEK', 'SEK') == 12.34


def test_convert_usd_to_eur() -> None:
    assert currency.convert(10, 'USD', 'EUR') == pytest.approx(9.2)


def test_convert_via_reference_currency() -> None:
    # 10.45 SEK is one reference dollar
    assert currency.convert(10.45, 'SEK', 'GBP') == pytest.approx(0.79)


def test_unknown_currency_uses_unit_rate() -> None:
    assert currency.convert(5, 'XYZ', 'USD') == pytest.approx(5)


def test_format_currency_two_decimals() -> None:
    assert currency.format_currency(1234.5, 'USD') == '$1234.50'
    assert currency.format_currency(3, 'EUR') == '€3.00'
    assert currency.format_currency(7.126, 'SEK') == 'kr7.13'


def test_format_unknown_code_uses_code() -> None:
    assert currency.format_currency(1, 'CHF') == 'CHF1.00'


def test_supported_currencies() -> None:
    assert set(currency.supported_currencies()) == {'USD', 'EUR', 'GBP', 'JPY', 'SEK'}
    assert currency.is_supported('JPY')
    assert not currency.is_supported('CHF')


def test_round_trip_for_every_pair() -> None:
    codes = currency.supported_currencies()
    for a in codes:
        for b in codes:
            assert currency.convert(currency.convert(42.5, a, b), b, a) == pytest.approx(42.5)
