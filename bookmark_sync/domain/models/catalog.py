"""Local catalog domain models.

The catalog is a two-level model: a Board holds Categories, a Bookmark
optionally points at one Category. Timestamps are epoch milliseconds.
"""

import uuid
from dataclasses import dataclass, field


@dataclass
class Board:
    """Top-level grouping; a native folder at depth 1 maps to one."""

    id: str
    title: str
    sort_order: int = 0
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Category:
    """Second-level grouping inside a Board."""

    id: str
    board_id: str
    title: str
    sort_order: int = 0


@dataclass
class Bookmark:
    """A saved link in the local catalog."""

    id: str
    url: str
    title: str
    category_id: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    notes: str | None = None
    visit_count: int = 1


def new_entity_id() -> str:
    """Generate an id for a new board, category or bookmark."""
    return uuid.uuid4().hex
