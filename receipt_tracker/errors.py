"""Exception types raised by the receipt tracker core."""

from __future__ import annotations


class ReceiptTrackerError(Exception):
    """Base class for all receipt tracker errors."""


class ValidationError(ReceiptTrackerError, ValueError):
    """User input was rejected before it reached the store."""


class WorkflowStateError(ReceiptTrackerError, RuntimeError):
    """A receipt workflow intent was issued in a state that cannot accept it."""


class GatewayError(ReceiptTrackerError):
    """The external AI service failed or returned unusable data."""


class ExtractionFailed(GatewayError):
    """Receipt extraction failed: service unreachable, malformed response or unreadable image."""


class AdvisoryFailed(GatewayError):
    """Free-text feedback or question answering failed."""
