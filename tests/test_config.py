"""Tests for configuration and defaults loading."""

from __future__ import annotations

from receipt_tracker import config
from receipt_tracker.settings import get_default, load_defaults


def test_gemini_key_takes_precedence(monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
    assert config.get_api_key() == "gemini-key"


def test_google_key_fallback(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", " google-key ")
    assert config.get_api_key() == "google-key"


def test_missing_key(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    assert config.get_api_key() is None


def test_defaults_file() -> None:
    defaults = load_defaults()
    assert defaults['categories']['fallback'] == 'Others'
    assert get_default('categories', 'max_custom') == 15
    assert get_default('rule_503020', 'targets') == {'Needs': 0.5, 'Wants': 0.3, 'Savings': 0.2}
    assert get_default('does', 'not', 'exist', default='x') == 'x'
