"""Durable key/value storage backed by one JSON file per key.

This module handles all file operations for the persisted state: loading,
saving and removing entries from disk.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from . import config
from .logger import get_logger

logger = get_logger(__name__)

# Persisted state layout, one entry per key.
TRANSACTIONS_KEY = 'transactions'
CATEGORIES_KEY = 'expenseCategories'
RULE_MAP_KEY = 'categoryRuleMap'
CURRENCY_KEY = 'primaryCurrency'
BUDGETS_KEY = 'budgets'
ITEM_CATEGORY_KEY = 'itemCategoryMap'


def _safe_key(key: str) -> str:
    cleaned = ''.join(c for c in key if c.isalnum() or c in {'_', '-'})
    if not cleaned:
        raise ValueError(f"Invalid storage key: {key!r}")
    return cleaned


class LocalStorage:
    """Handles storage of plain JSON values keyed by name."""

    def __init__(self, storage_dir: Optional[Path] = None):
        """Initialize storage.

        Args:
            storage_dir: Optional custom directory for the JSON files.
                        Defaults to STORAGE_DIR from config.
        """
        self.storage_dir = Path(storage_dir) if storage_dir is not None else config.STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def get_path(self, key: str) -> Path:
        return self.storage_dir / f"{_safe_key(key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """Load the value stored under ``key``.

        A missing key is not an error and returns ``default``; so does an
        unreadable or corrupted file, which is logged.
        """
        target = self.get_path(key)
        if not target.exists():
            return default
        try:
            with target.open('r', encoding='utf-8') as handle:
                return json.load(handle)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not load stored '{key}' from {target}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        """Write ``value`` under ``key``.

        The file is replaced atomically, so readers see either the previous or
        the new value.

        Raises:
            OSError: If the file cannot be written
        """
        target = self.get_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix='.tmp', dir=str(target.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(value, handle, indent=2, sort_keys=True, ensure_ascii=False)
            os.replace(tmp_name, target)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise OSError(f"Failed to save '{key}' to {target}: {e}") from e
        logger.debug(f"Saved '{key}' to {target}")

    def remove(self, key: str) -> None:
        """Delete the entry for ``key``; missing entries are ignored."""
        target = self.get_path(key)
        if not target.exists():
            return
        try:
            target.unlink()
        except OSError as e:
            raise OSError(f"Failed to delete {target}: {e}") from e

    def keys(self) -> List[str]:
        if not self.storage_dir.exists():
            return []
        return sorted(path.stem for path in self.storage_dir.glob('*.json'))
