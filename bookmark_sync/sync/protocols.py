"""Protocol definitions (ports) for the stores the sync engines consume.

The SQLite repositories satisfy these; the engines depend only on the
protocols.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from bookmark_sync.config.sync import SyncSettings
    from bookmark_sync.domain.models.catalog import Board, Bookmark, Category
    from bookmark_sync.domain.models.mapping import Mapping, NodeType


class CatalogStore(Protocol):
    async def async_list_boards(self) -> list[Board]: ...

    async def async_list_categories(self, board_id: str | None = None) -> list[Category]: ...

    async def async_list_bookmarks(self) -> list[Bookmark]: ...

    async def async_get_board(self, board_id: str) -> Board | None: ...

    async def async_get_category(self, category_id: str) -> Category | None: ...

    async def async_get_bookmark(self, bookmark_id: str) -> Bookmark | None: ...

    async def async_find_bookmark_by_url(self, url: str) -> Bookmark | None: ...

    async def async_create_board(self, board: Board) -> Board: ...

    async def async_create_category(self, category: Category) -> Category: ...

    async def async_delete_board(
        self, board_id: str, *, native_ids: Iterable[str] = ()
    ) -> bool: ...

    async def async_delete_category(
        self, category_id: str, *, native_ids: Iterable[str] = ()
    ) -> bool: ...

    async def async_create_bookmark(
        self, bookmark: Bookmark, *, mapping: Mapping | None = None
    ) -> Bookmark: ...

    async def async_update_bookmark(
        self, bookmark_id: str, changes: dict[str, Any], *, mapping: Mapping | None = None
    ) -> Bookmark: ...

    async def async_delete_bookmark(
        self, bookmark_id: str, *, native_ids: Iterable[str] = ()
    ) -> Bookmark | None: ...

    async def async_import_batch(
        self,
        *,
        boards: list[Board],
        categories: list[Category],
        bookmarks: list[Bookmark],
        mappings: list[Mapping],
    ) -> None: ...


class MappingStore(Protocol):
    async def async_put(self, mapping: Mapping) -> Mapping: ...

    async def async_get_by_native_id(self, native_id: str) -> Mapping | None: ...

    async def async_get_all_by_local_id(self, local_id: str) -> list[Mapping]: ...

    async def async_delete_by_native_id(self, native_id: str) -> bool: ...

    async def async_list_by_node_type(self, node_type: NodeType | str) -> list[Mapping]: ...

    async def async_list_all(self) -> list[Mapping]: ...

    async def async_find_folder(
        self, board_id: str, category_id: str | None = None
    ) -> Mapping | None: ...

    async def async_clear(self) -> int: ...

    async def async_get_sync_settings(self) -> SyncSettings: ...

    async def async_save_sync_settings(
        self, changes: dict[str, Any] | None = None, **kwargs: Any
    ) -> SyncSettings: ...
