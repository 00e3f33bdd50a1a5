"""Static product defaults and their loader.

Defaults are stored in JSON files next to this module so they can be
modified without code changes.
"""

from .defaults import load_defaults, get_default

__all__ = ['load_defaults', 'get_default']
