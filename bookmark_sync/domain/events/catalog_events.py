"""Domain events for local catalog mutations.

The catalog store publishes these after a bookmark write commits; the
outbound sync engine subscribes to them to mirror the change onto the
native bookmark tree.
"""

from dataclasses import dataclass
from datetime import datetime

from bookmark_sync.domain.models.catalog import Bookmark


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    occurred_at: datetime
    aggregate_id: str | None = None

    def __post_init__(self) -> None:
        """Validate event data after initialization."""
        if not isinstance(self.occurred_at, datetime):
            raise TypeError("occurred_at must be a datetime")


@dataclass(frozen=True)
class BookmarkEvent(DomainEvent):
    """A bookmark write; carries the bookmark as it looks after the write."""

    bookmark: Bookmark | None = None

    def __post_init__(self) -> None:
        """Validate event data."""
        super().__post_init__()
        if self.bookmark is None:
            raise ValueError("bookmark is required")
        if not self.bookmark.id:
            raise ValueError("bookmark.id must not be empty")


@dataclass(frozen=True)
class BookmarkCreated(BookmarkEvent):
    """Event raised when a bookmark is added to the catalog."""


@dataclass(frozen=True)
class BookmarkUpdated(BookmarkEvent):
    """Event raised when a bookmark's fields or placement change."""

    previous: Bookmark | None = None


@dataclass(frozen=True)
class BookmarkDeleted(BookmarkEvent):
    """Event raised when a bookmark is removed; ``bookmark`` is the last snapshot."""
