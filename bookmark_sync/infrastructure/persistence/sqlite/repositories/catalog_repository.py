"""SQLite implementation of the local catalog store.

Boards, categories and bookmarks live in the same database as the mapping
table, so a catalog write and the mapping that correlates it can commit in
one transaction. Bookmark writes publish catalog events after commit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from bookmark_sync.core.time_utils import now_ms, utc_now
from bookmark_sync.db.models import BoardModel, BookmarkModel, CategoryModel
from bookmark_sync.domain.events.catalog_events import (
    BookmarkCreated,
    BookmarkDeleted,
    BookmarkUpdated,
)
from bookmark_sync.domain.exceptions import NotFoundError
from bookmark_sync.domain.models.catalog import Board, Bookmark, Category, new_entity_id
from bookmark_sync.domain.models.mapping import Mapping
from bookmark_sync.infrastructure.messaging.event_bus import EventBus
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository
from bookmark_sync.infrastructure.persistence.sqlite.repositories.mapping_repository import (
    delete_mapping_rows,
    normalize_mapping,
    put_mapping_row,
)

logger = logging.getLogger(__name__)

_BOOKMARK_FIELDS = frozenset(
    {"url", "title", "category_id", "tags", "notes", "visit_count", "updated_at"}
)


def _board_from_row(row: BoardModel) -> Board:
    return Board(
        id=row.id,
        title=row.title,
        sort_order=row.sort_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _category_from_row(row: CategoryModel) -> Category:
    return Category(id=row.id, board_id=row.board_id, title=row.title, sort_order=row.sort_order)


def _bookmark_from_row(row: BookmarkModel) -> Bookmark:
    return Bookmark(
        id=row.id,
        url=row.url,
        title=row.title,
        category_id=row.category_id,
        tags=list(row.tags or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
        notes=row.notes,
        visit_count=row.visit_count,
    )


def _insert_board(board: Board) -> None:
    BoardModel.insert(
        id=board.id,
        title=board.title,
        sort_order=board.sort_order,
        created_at=board.created_at,
        updated_at=board.updated_at,
    ).execute()


def _insert_category(category: Category) -> None:
    CategoryModel.insert(
        id=category.id,
        board_id=category.board_id,
        title=category.title,
        sort_order=category.sort_order,
    ).execute()


def _insert_bookmark(bookmark: Bookmark) -> None:
    BookmarkModel.insert(
        id=bookmark.id,
        url=bookmark.url,
        title=bookmark.title,
        category_id=bookmark.category_id,
        tags=list(bookmark.tags),
        notes=bookmark.notes,
        visit_count=bookmark.visit_count,
        created_at=bookmark.created_at,
        updated_at=bookmark.updated_at,
    ).execute()


def _stamp(entity: Any) -> Any:
    """Fill in a missing id and missing timestamps on a new entity."""
    changes: dict[str, Any] = {}
    if not entity.id:
        changes["id"] = new_entity_id()
    if hasattr(entity, "created_at"):
        created = entity.created_at or now_ms()
        changes["created_at"] = created
        changes["updated_at"] = entity.updated_at or created
    return replace(entity, **changes) if changes else entity


class SqliteCatalogRepository(SqliteBaseRepository):
    """Key-indexed CRUD store for boards, categories and bookmarks.

    Every write that takes a ``mapping`` or ``native_ids`` argument updates the
    mapping table in the same transaction as the catalog row.
    """

    def __init__(self, session_manager: Any, event_bus: EventBus | None = None) -> None:
        super().__init__(session_manager)
        self._event_bus = event_bus

    async def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def async_list_boards(self) -> list[Board]:
        def _query() -> list[Board]:
            rows = BoardModel.select().order_by(BoardModel.sort_order, BoardModel.id)
            return [_board_from_row(row) for row in rows]

        return await self._execute(_query, operation_name="list_boards", read_only=True)

    async def async_list_categories(self, board_id: str | None = None) -> list[Category]:
        def _query() -> list[Category]:
            query = CategoryModel.select()
            if board_id is not None:
                query = query.where(CategoryModel.board_id == board_id)
            rows = query.order_by(CategoryModel.sort_order, CategoryModel.id)
            return [_category_from_row(row) for row in rows]

        return await self._execute(_query, operation_name="list_categories", read_only=True)

    async def async_list_bookmarks(self) -> list[Bookmark]:
        def _query() -> list[Bookmark]:
            rows = BookmarkModel.select().order_by(BookmarkModel.created_at, BookmarkModel.id)
            return [_bookmark_from_row(row) for row in rows]

        return await self._execute(_query, operation_name="list_bookmarks", read_only=True)

    async def async_get_board(self, board_id: str) -> Board | None:
        def _query() -> Board | None:
            row = BoardModel.get_or_none(BoardModel.id == board_id)
            return _board_from_row(row) if row else None

        return await self._execute(_query, operation_name="get_board", read_only=True)

    async def async_get_category(self, category_id: str) -> Category | None:
        def _query() -> Category | None:
            row = CategoryModel.get_or_none(CategoryModel.id == category_id)
            return _category_from_row(row) if row else None

        return await self._execute(_query, operation_name="get_category", read_only=True)

    async def async_get_bookmark(self, bookmark_id: str) -> Bookmark | None:
        def _query() -> Bookmark | None:
            row = BookmarkModel.get_or_none(BookmarkModel.id == bookmark_id)
            return _bookmark_from_row(row) if row else None

        return await self._execute(_query, operation_name="get_bookmark", read_only=True)

    async def async_find_bookmark_by_url(self, url: str) -> Bookmark | None:
        """Exact URL lookup; the oldest bookmark wins when several share a URL."""

        def _query() -> Bookmark | None:
            row = (
                BookmarkModel.select()
                .where(BookmarkModel.url == url)
                .order_by(BookmarkModel.created_at, BookmarkModel.id)
                .first()
            )
            return _bookmark_from_row(row) if row else None

        return await self._execute(_query, operation_name="find_bookmark_by_url", read_only=True)

    # ------------------------------------------------------------------
    # Boards and categories
    # ------------------------------------------------------------------

    async def async_create_board(self, board: Board) -> Board:
        record = _stamp(board)
        await self._execute(_insert_board, record, operation_name="create_board")
        logger.debug("board_created", extra={"board_id": record.id, "title": record.title})
        return record

    async def async_create_category(self, category: Category) -> Category:
        record = _stamp(category)
        await self._execute(_insert_category, record, operation_name="create_category")
        logger.debug(
            "category_created",
            extra={"category_id": record.id, "board_id": record.board_id, "title": record.title},
        )
        return record

    async def async_delete_category(
        self, category_id: str, *, native_ids: Iterable[str] = ()
    ) -> bool:
        """Delete a category, detach its bookmarks and drop the given mappings."""
        mapping_ids = list(native_ids)

        def _delete() -> bool:
            BookmarkModel.update(category_id=None).where(
                BookmarkModel.category_id == category_id
            ).execute()
            deleted = CategoryModel.delete().where(CategoryModel.id == category_id).execute()
            delete_mapping_rows(mapping_ids)
            return bool(deleted)

        return await self._transaction(_delete, operation_name="delete_category")

    async def async_delete_board(self, board_id: str, *, native_ids: Iterable[str] = ()) -> bool:
        """Delete a board with its categories; their bookmarks become unfiled."""
        mapping_ids = list(native_ids)

        def _delete() -> bool:
            category_ids = [
                row.id
                for row in CategoryModel.select(CategoryModel.id).where(
                    CategoryModel.board_id == board_id
                )
            ]
            if category_ids:
                BookmarkModel.update(category_id=None).where(
                    BookmarkModel.category_id.in_(category_ids)
                ).execute()
                CategoryModel.delete().where(CategoryModel.id.in_(category_ids)).execute()
            deleted = BoardModel.delete().where(BoardModel.id == board_id).execute()
            delete_mapping_rows(mapping_ids)
            return bool(deleted)

        return await self._transaction(_delete, operation_name="delete_board")

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def async_create_bookmark(
        self, bookmark: Bookmark, *, mapping: Mapping | None = None
    ) -> Bookmark:
        """Insert a bookmark, optionally with the mapping that correlates it.

        Raises:
            ValidationError: if ``mapping`` is malformed (nothing is written).
        """
        record = _stamp(bookmark)
        mapping_record = (
            normalize_mapping(replace(mapping, local_id=record.id)) if mapping else None
        )

        def _create() -> None:
            _insert_bookmark(record)
            if mapping_record is not None:
                put_mapping_row(mapping_record)

        await self._transaction(_create, operation_name="create_bookmark")
        logger.debug(
            "bookmark_created",
            extra={
                "local_id": record.id,
                "native_id": mapping_record.native_id if mapping_record else None,
            },
        )
        await self._publish(
            BookmarkCreated(occurred_at=utc_now(), aggregate_id=record.id, bookmark=record)
        )
        return record

    async def async_update_bookmark(
        self,
        bookmark_id: str,
        changes: dict[str, Any],
        *,
        mapping: Mapping | None = None,
    ) -> Bookmark:
        """Apply field changes to a bookmark.

        ``updated_at`` defaults to now unless ``changes`` carries one.

        Raises:
            NotFoundError: if the bookmark does not exist.
            ValueError: if ``changes`` names an unknown field.
        """
        unknown = set(changes) - _BOOKMARK_FIELDS
        if unknown:
            msg = f"Unknown bookmark fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        mapping_record = normalize_mapping(mapping) if mapping else None
        values = {"updated_at": now_ms(), **changes}

        def _update() -> tuple[Bookmark, Bookmark]:
            row = BookmarkModel.get_or_none(BookmarkModel.id == bookmark_id)
            if row is None:
                msg = f"Bookmark {bookmark_id} not found"
                raise NotFoundError(msg, {"local_id": bookmark_id})
            previous = _bookmark_from_row(row)
            BookmarkModel.update(**values).where(BookmarkModel.id == bookmark_id).execute()
            if mapping_record is not None:
                put_mapping_row(mapping_record)
            return previous, replace(previous, **values)

        previous, current = await self._transaction(_update, operation_name="update_bookmark")
        await self._publish(
            BookmarkUpdated(
                occurred_at=utc_now(),
                aggregate_id=bookmark_id,
                bookmark=current,
                previous=previous,
            )
        )
        return current

    async def async_delete_bookmark(
        self, bookmark_id: str, *, native_ids: Iterable[str] = ()
    ) -> Bookmark | None:
        """Delete a bookmark and the given mappings; returns the deleted snapshot."""
        mapping_ids = list(native_ids)

        def _delete() -> Bookmark | None:
            row = BookmarkModel.get_or_none(BookmarkModel.id == bookmark_id)
            delete_mapping_rows(mapping_ids)
            if row is None:
                return None
            row.delete_instance()
            return _bookmark_from_row(row)

        snapshot = await self._transaction(_delete, operation_name="delete_bookmark")
        if snapshot is not None:
            await self._publish(
                BookmarkDeleted(occurred_at=utc_now(), aggregate_id=bookmark_id, bookmark=snapshot)
            )
        return snapshot

    # ------------------------------------------------------------------
    # Bulk import
    # ------------------------------------------------------------------

    async def async_import_batch(
        self,
        *,
        boards: list[Board],
        categories: list[Category],
        bookmarks: list[Bookmark],
        mappings: list[Mapping],
    ) -> None:
        """Commit one chunk of an initial import atomically, without catalog events."""
        mapping_records = [normalize_mapping(mapping) for mapping in mappings]

        def _write() -> None:
            for board in boards:
                _insert_board(board)
            for category in categories:
                _insert_category(category)
            for bookmark in bookmarks:
                _insert_bookmark(bookmark)
            for record in mapping_records:
                put_mapping_row(record)

        await self._transaction(_write, operation_name="import_batch")
        logger.debug(
            "import_batch_committed",
            extra={
                "boards": len(boards),
                "categories": len(categories),
                "bookmarks": len(bookmarks),
                "mappings": len(mapping_records),
            },
        )


__all__ = ["SqliteCatalogRepository"]
