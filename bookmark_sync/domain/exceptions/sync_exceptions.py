"""Error taxonomy for the bookmark sync engine.

The engines convert every failure inside a queued task into one of these
before deciding between retry and abandonment.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all sync errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        """Initialize sync exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(SyncError):
    """Raised when a referenced mapping or local entity is missing.

    Treated as "nothing to do": never retried.
    """


class UnavailableError(SyncError):
    """Raised when the native bookmark tree API is not present in this context."""


class ValidationError(SyncError):
    """Raised when a mapping or settings write carries malformed fields."""


class TransientError(SyncError):
    """Raised for failures worth retrying with backoff."""


def is_retryable(error: BaseException) -> bool:
    """Return True when a failed sync task should be re-enqueued.

    Missing entities, malformed records and a missing host API are permanent;
    everything else is treated as transient.
    """
    return not isinstance(error, NotFoundError | UnavailableError | ValidationError)
