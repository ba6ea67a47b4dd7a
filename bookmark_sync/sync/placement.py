"""Translation between native folder depth and the board / category model.

A native tree is arbitrarily deep, the catalog has two levels. The rule,
shared by the initial import and the inbound engine:

- a folder at depth 1 becomes a board, a folder at depth 2 a category of
  the board above it, deeper folders resolve to their ancestors' placement;
- a bookmark lands in the category of its depth-2 ancestor (or directly on
  its depth-1 board), and bookmarks with no board context land in the
  default ``Imported / Unfiled`` placement;
- a bookmark whose folder sits deeper than depth 2 is flattened and keeps
  its folder path in a note.

Depth counts from the tree root, which is depth 0.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.models.catalog import Board, Category, new_entity_id
from bookmark_sync.sync.constants import (
    DEFAULT_BOARD_TITLE,
    DEFAULT_CATEGORY_TITLE,
    FLATTEN_NOTE_PREFIX,
    MAX_MAPPED_DEPTH,
    NOTE_PATH_SEPARATOR,
)

if TYPE_CHECKING:
    from bookmark_sync.sync.protocols import CatalogStore


def normalize_title(title: str | None) -> str:
    return (title or "").strip()


def title_key(title: str | None) -> str:
    return normalize_title(title).lower()


@dataclass(frozen=True)
class PlacementPlan:
    """Titles a node resolves to, before any catalog lookup."""

    board_title: str | None = None
    category_title: str | None = None
    use_default: bool = False
    for_bookmark: bool = False
    flatten_path: tuple[str, ...] = ()
    inherited: bool = False

    @property
    def note(self) -> str | None:
        if not self.flatten_path:
            return None
        return FLATTEN_NOTE_PREFIX + NOTE_PATH_SEPARATOR.join(self.flatten_path)


@dataclass(frozen=True)
class Placement:
    board_id: str | None = None
    category_id: str | None = None
    note: str | None = None
    inherited: bool = False


def plan_placement(
    depth: int,
    ancestor_titles: Sequence[str],
    folder_title: str | None = None,
    *,
    import_hierarchy: bool = True,
) -> PlacementPlan:
    """Plan the placement of a node from its depth and its ancestors' titles.

    Args:
        depth: Depth of the node itself (the tree root is 0).
        ancestor_titles: Titles of every ancestor, root first, one per level.
        folder_title: The node's own title when it is a folder, ``None`` for
            a bookmark.
        import_hierarchy: When false, folders carry no placement and every
            bookmark goes to the default placement.
    """
    titles = list(ancestor_titles)

    if folder_title is not None:
        if not import_hierarchy or depth <= 0:
            return PlacementPlan()
        if depth == 1:
            return PlacementPlan(board_title=folder_title)
        board_title = titles[1] if len(titles) > 1 else None
        if depth == 2:
            return PlacementPlan(board_title=board_title, category_title=folder_title)
        return PlacementPlan(
            board_title=board_title,
            category_title=titles[2] if len(titles) > 2 else None,
            inherited=True,
        )

    if not import_hierarchy or len(titles) < 2:
        return PlacementPlan(use_default=True, for_bookmark=True)

    flatten_path: tuple[str, ...] = ()
    if len(titles) > MAX_MAPPED_DEPTH + 1:
        flatten_path = tuple(normalize_title(t) for t in titles if normalize_title(t))
    return PlacementPlan(
        board_title=titles[1],
        category_title=titles[2] if len(titles) > 2 else None,
        for_bookmark=True,
        flatten_path=flatten_path,
    )


class PlacementResolver:
    """Resolve plans to board and category ids, creating them on demand.

    Boards are matched by case-insensitive trimmed title, categories by
    ``(board_id, title)``. New sort orders continue from the highest
    existing one.

    With ``buffered=True`` nothing is written: new boards and categories are
    collected until :meth:`drain_pending` so that the caller can commit them
    together with other rows.
    """

    def __init__(self, catalog: CatalogStore, *, buffered: bool = False) -> None:
        self._catalog = catalog
        self._buffered = buffered
        self._boards: dict[str, Board] = {}
        self._categories: dict[str, Category] = {}
        self._next_board_sort = 0
        self._next_category_sort: dict[str, int] = {}
        self._pending_boards: list[Board] = []
        self._pending_categories: list[Category] = []
        self.boards_created = 0
        self.categories_created = 0

    async def load(self) -> None:
        boards = await self._catalog.async_list_boards()
        categories = await self._catalog.async_list_categories()

        self._boards = {title_key(board.title): board for board in boards}
        self._next_board_sort = max((board.sort_order for board in boards), default=-1) + 1

        self._categories = {}
        self._next_category_sort = {}
        for category in categories:
            self._categories[self._category_key(category.board_id, category.title)] = category
            current = self._next_category_sort.get(category.board_id, 0)
            self._next_category_sort[category.board_id] = max(current, category.sort_order + 1)

    @staticmethod
    def _category_key(board_id: str, title: str) -> str:
        return f"{board_id}::{title_key(title)}"

    async def ensure_board(self, title: str | None) -> Board:
        board_title = normalize_title(title) or DEFAULT_BOARD_TITLE
        key = title_key(board_title)
        cached = self._boards.get(key)
        if cached is not None:
            return cached

        timestamp = now_ms()
        board = Board(
            id=new_entity_id(),
            title=board_title,
            sort_order=self._next_board_sort,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self._next_board_sort += 1
        if self._buffered:
            self._pending_boards.append(board)
        else:
            board = await self._catalog.async_create_board(board)
        self._boards[key] = board
        self.boards_created += 1
        return board

    async def ensure_category(self, board_id: str, title: str | None) -> Category:
        category_title = normalize_title(title) or DEFAULT_CATEGORY_TITLE
        key = self._category_key(board_id, category_title)
        cached = self._categories.get(key)
        if cached is not None:
            return cached

        sort_order = self._next_category_sort.get(board_id, 0)
        category = Category(
            id=new_entity_id(), board_id=board_id, title=category_title, sort_order=sort_order
        )
        self._next_category_sort[board_id] = sort_order + 1
        if self._buffered:
            self._pending_categories.append(category)
        else:
            category = await self._catalog.async_create_category(category)
        self._categories[key] = category
        self.categories_created += 1
        return category

    async def ensure_defaults(self) -> tuple[Board, Category]:
        board = await self.ensure_board(DEFAULT_BOARD_TITLE)
        category = await self.ensure_category(board.id, DEFAULT_CATEGORY_TITLE)
        return board, category

    async def resolve(self, plan: PlacementPlan) -> Placement:
        if plan.use_default:
            board, category = await self.ensure_defaults()
            return Placement(board.id, category.id, plan.note)
        if plan.board_title is None:
            return Placement()

        board = await self.ensure_board(plan.board_title)
        if plan.category_title is not None:
            category = await self.ensure_category(board.id, plan.category_title)
            return Placement(board.id, category.id, plan.note, plan.inherited)
        if plan.for_bookmark and title_key(board.title) == title_key(DEFAULT_BOARD_TITLE):
            category = await self.ensure_category(board.id, DEFAULT_CATEGORY_TITLE)
            return Placement(board.id, category.id, plan.note)
        return Placement(board.id, None, plan.note, plan.inherited)

    def drain_pending(self) -> tuple[list[Board], list[Category]]:
        boards, categories = self._pending_boards, self._pending_categories
        self._pending_boards, self._pending_categories = [], []
        return boards, categories
