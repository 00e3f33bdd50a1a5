"""Loader for the static product defaults."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

# Configuration directory
SETTINGS_DIR = Path(__file__).parent


@lru_cache(maxsize=None)
def load_defaults(name: str = 'defaults') -> Dict[str, Any]:
    """Load a defaults file by name.

    Args:
        name: Name of the settings file (without .json extension)

    Returns:
        Dictionary containing the settings

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        json.JSONDecodeError: If the settings file is invalid JSON

    Example:
        >>> load_defaults()['currency']['default']
        'USD'
    """
    path = SETTINGS_DIR / f"{name}.json"

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def get_default(*keys: str, default: Any = None) -> Any:
    """Get a nested default value by key path.

    Args:
        *keys: Path to the nested value (e.g., 'categories', 'fallback')
        default: Value returned if the key path doesn't exist

    Returns:
        The value at the specified path, or ``default`` if not found

    Example:
        >>> get_default('categories', 'max_custom')
        15
    """
    try:
        value = load_defaults()
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError, FileNotFoundError):
        return default
