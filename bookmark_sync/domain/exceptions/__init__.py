from bookmark_sync.domain.exceptions.sync_exceptions import (
    NotFoundError,
    SyncError,
    TransientError,
    UnavailableError,
    ValidationError,
    is_retryable,
)

__all__ = [
    "NotFoundError",
    "SyncError",
    "TransientError",
    "UnavailableError",
    "ValidationError",
    "is_retryable",
]
