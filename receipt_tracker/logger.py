"""Logging setup shared by every module of the receipt tracker."""

from __future__ import annotations

import logging
import sys

from .config import LOG_LEVEL

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(LOG_LEVEL)
    # Streamlit re-executes modules on every rerun; only attach one handler.
    if not any(getattr(h, "_receipt_tracker", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._receipt_tracker = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
