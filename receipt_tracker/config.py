"""Configuration management for the receipt tracker.

This module centralizes all configuration values including paths,
credentials for the AI service, and environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

# Base project root - assumes this file is in receipt_tracker/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("RECEIPT_TRACKER_DATA_DIR", _PROJECT_ROOT / "data"))
STORAGE_DIR = Path(
    os.getenv("RECEIPT_TRACKER_STORAGE_DIR", DATA_DIR / "storage")
).resolve()

# AI service
MODEL_NAME = os.getenv("RECEIPT_TRACKER_MODEL", "gemini-2.5-flash")

# Logging
LOG_LEVEL = os.getenv("RECEIPT_TRACKER_LOG_LEVEL", "INFO").upper()


def get_api_key() -> Optional[str]:
    """Return the generative AI API key, or ``None`` when it is not configured.

    ``GEMINI_API_KEY`` takes precedence over ``GOOGLE_API_KEY``.
    """
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, STORAGE_DIR]:
        directory.mkdir(parents=True, exist_ok=True)
