"""Outbound sync: local catalog bookmark writes -> native tree.

Tasks come from catalog events on the event bus (or the ``enqueue_*``
methods) and drain in paced batches. Every native write is registered in
``pending_native_ops`` so the inbound engine drops its echo.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from functools import partial
from typing import TYPE_CHECKING

from bookmark_sync.domain.events.catalog_events import (
    BookmarkCreated,
    BookmarkDeleted,
    BookmarkEvent,
    BookmarkUpdated,
)
from bookmark_sync.domain.models.mapping import Mapping, NodeType

if TYPE_CHECKING:
    from bookmark_sync.adapters.native.gateway import NativeTreeGateway
    from bookmark_sync.config.sync import SyncSettings
    from bookmark_sync.domain.models.catalog import Board, Bookmark, Category
    from bookmark_sync.infrastructure.messaging.event_bus import EventBus
    from bookmark_sync.sync.protocols import CatalogStore, MappingStore
    from bookmark_sync.sync.queue import RetryQueue
    from bookmark_sync.sync.state import SyncState

logger = logging.getLogger(__name__)

TASK_CREATE = "create"
TASK_UPDATE = "update"
TASK_DELETE = "delete"


@dataclass(frozen=True)
class BookmarkContext:
    bookmark: Bookmark
    category: Category | None
    board: Board | None
    settings: SyncSettings


class OutboundSyncEngine:
    def __init__(
        self,
        catalog: CatalogStore,
        mappings: MappingStore,
        gateway: NativeTreeGateway,
        state: SyncState,
        queue: RetryQueue,
        event_bus: EventBus | None = None,
    ) -> None:
        self._catalog = catalog
        self._mappings = mappings
        self._gateway = gateway
        self._state = state
        self._queue = queue
        self._event_bus = event_bus
        self._subscribed = False

    @property
    def queue(self) -> RetryQueue:
        return self._queue

    def start(self) -> None:
        if self._event_bus is None or self._subscribed:
            return
        self._event_bus.subscribe(BookmarkEvent, self._on_bookmark_event)
        self._subscribed = True
        logger.info("outbound_sync_started")

    async def stop(self) -> None:
        if self._event_bus is not None and self._subscribed:
            self._event_bus.unsubscribe(BookmarkEvent, self._on_bookmark_event)
            self._subscribed = False
        await self._queue.stop()
        logger.info("outbound_sync_stopped")

    async def wait_idle(self) -> None:
        await self._queue.wait_idle()

    async def _on_bookmark_event(self, event: BookmarkEvent) -> None:
        bookmark = event.bookmark
        if bookmark is None:
            return
        if bookmark.id in self._state.pending_local_ops:
            logger.debug(
                "outbound_event_suppressed",
                extra={"local_id": bookmark.id, "event_kind": type(event).__name__},
            )
            return
        if isinstance(event, BookmarkCreated):
            self.enqueue_create(bookmark)
        elif isinstance(event, BookmarkUpdated):
            self.enqueue_update(bookmark)
        elif isinstance(event, BookmarkDeleted):
            self.enqueue_delete(bookmark)

    def enqueue_create(self, bookmark: Bookmark) -> None:
        self._enqueue(TASK_CREATE, bookmark)

    def enqueue_update(self, bookmark: Bookmark) -> None:
        self._enqueue(TASK_UPDATE, bookmark)

    def enqueue_delete(self, bookmark: Bookmark) -> None:
        self._enqueue(TASK_DELETE, bookmark)

    def _enqueue(self, task_kind: str, bookmark: Bookmark) -> None:
        self._queue.enqueue(
            partial(self._process, task_kind, bookmark), task_kind=task_kind, key=bookmark.id
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _process(self, task_kind: str, bookmark: Bookmark) -> None:
        settings = await self._mappings.async_get_sync_settings()
        if not settings.enable_bidirectional:
            logger.debug("outbound_sync_disabled", extra={"local_id": bookmark.id})
            return

        context = await self._build_context(bookmark, settings)
        if task_kind == TASK_CREATE:
            await self.handle_create(context)
        elif task_kind == TASK_UPDATE:
            await self.handle_update(context)
        elif task_kind == TASK_DELETE:
            await self.handle_delete(context)

    async def _build_context(self, bookmark: Bookmark, settings: SyncSettings) -> BookmarkContext:
        category = (
            await self._catalog.async_get_category(bookmark.category_id)
            if bookmark.category_id
            else None
        )
        board = await self._catalog.async_get_board(category.board_id) if category else None
        return BookmarkContext(bookmark=bookmark, category=category, board=board, settings=settings)

    # ------------------------------------------------------------------
    # Native folders
    # ------------------------------------------------------------------

    async def _create_folder(
        self, parent_id: str, title: str, board: Board, category: Category | None
    ) -> str:
        created = await self._gateway.create(parent_id, title)
        self._state.pending_native_ops.mark(created.id)
        try:
            await self._mappings.async_put(
                Mapping(
                    native_id=created.id,
                    node_type=NodeType.FOLDER,
                    board_id=board.id,
                    category_id=category.id if category else None,
                )
            )
        finally:
            self._state.pending_native_ops.release(created.id)
        logger.info(
            "outbound_folder_created",
            extra={"native_id": created.id, "board_id": board.id, "title": title},
        )
        return created.id

    async def _ensure_board_folder(self, board: Board, root_id: str) -> str:
        existing = await self._mappings.async_find_folder(board.id, None)
        if existing is not None:
            return existing.native_id
        return await self._create_folder(root_id, board.title, board, None)

    async def _ensure_category_folder(
        self, board: Board, category: Category, root_id: str
    ) -> str:
        existing = await self._mappings.async_find_folder(board.id, category.id)
        if existing is not None:
            return existing.native_id
        board_folder_id = await self._ensure_board_folder(board, root_id)
        return await self._create_folder(board_folder_id, category.title, board, category)

    async def _ensure_parent(self, context: BookmarkContext) -> str:
        root_id = await self._state.ensure_mirror_root(
            self._gateway, context.settings.mirror_root_name
        )
        if context.board is None:
            return root_id
        if context.category is None:
            return await self._ensure_board_folder(context.board, root_id)
        return await self._ensure_category_folder(context.board, context.category, root_id)

    def _bookmark_mapping(self, context: BookmarkContext, native_id: str) -> Mapping:
        return Mapping(
            native_id=native_id,
            node_type=NodeType.BOOKMARK,
            local_id=context.bookmark.id,
            board_id=context.board.id if context.board else None,
            category_id=context.category.id if context.category else None,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_create(self, context: BookmarkContext) -> None:
        parent_id = await self._ensure_parent(context)
        bookmark = context.bookmark
        created = await self._gateway.create(parent_id, bookmark.title, bookmark.url)
        self._state.pending_native_ops.mark(created.id)
        try:
            await self._mappings.async_put(self._bookmark_mapping(context, created.id))
        finally:
            self._state.pending_native_ops.release(created.id)
        logger.info(
            "outbound_bookmark_created",
            extra={"native_id": created.id, "local_id": bookmark.id},
        )

    async def handle_update(self, context: BookmarkContext) -> None:
        bookmark = context.bookmark
        mappings = await self._mappings.async_get_all_by_local_id(bookmark.id)
        if not mappings:
            await self.handle_create(context)
            return

        mapping = mappings[0]
        native_id = mapping.native_id
        if context.category is None and context.board is None and mapping.board_id:
            # Uncategorized bookmarks stay on the board folder they were mapped from.
            board = await self._catalog.async_get_board(mapping.board_id)
            if board is not None:
                context = replace(context, board=board)
        board_id = context.board.id if context.board else None
        category_id = context.category.id if context.category else None
        if mapping.category_id != category_id or mapping.board_id != board_id:
            parent_id = await self._ensure_parent(context)
            await self._state.pending_native_ops.run(
                native_id, partial(self._gateway.move, native_id, parent_id)
            )
            logger.info(
                "outbound_bookmark_moved",
                extra={"native_id": native_id, "local_id": bookmark.id, "parent_id": parent_id},
            )

        await self._state.pending_native_ops.run(
            native_id,
            partial(self._gateway.update, native_id, title=bookmark.title, url=bookmark.url),
        )
        await self._mappings.async_put(self._bookmark_mapping(context, native_id))
        logger.debug(
            "outbound_bookmark_updated", extra={"native_id": native_id, "local_id": bookmark.id}
        )

    async def handle_delete(self, context: BookmarkContext) -> None:
        bookmark = context.bookmark
        mappings = await self._mappings.async_get_all_by_local_id(bookmark.id)
        remove_native = context.settings.delete_behavior == "delete"
        for mapping in mappings:
            if remove_native:
                await self._state.pending_native_ops.run(
                    mapping.native_id, partial(self._gateway.remove, mapping.native_id)
                )
            await self._mappings.async_delete_by_native_id(mapping.native_id)
        logger.info(
            "outbound_bookmark_deleted",
            extra={
                "local_id": bookmark.id,
                "mappings_removed": len(mappings),
                "native_removed": remove_native,
            },
        )
