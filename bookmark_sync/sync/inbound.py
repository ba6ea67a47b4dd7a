"""Inbound sync: native tree notifications -> local catalog.

Host listeners only enqueue. Every task re-checks the native guard, reads
the current sync settings and is a no-op while sync is disabled. Local
writes run under ``pending_local_ops`` so the outbound engine ignores the
catalog events they publish.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import partial
from typing import TYPE_CHECKING, Any

from bookmark_sync.adapters.native.gateway import parse_node
from bookmark_sync.adapters.native.models import NativeEventKind, NativeNode
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.core.url_utils import canonical_url
from bookmark_sync.domain.exceptions import NotFoundError
from bookmark_sync.domain.models.catalog import Bookmark, new_entity_id
from bookmark_sync.domain.models.mapping import Mapping, NodeType
from bookmark_sync.sync.conflicts import resolve_bookmark_conflict
from bookmark_sync.sync.placement import (
    Placement,
    PlacementResolver,
    normalize_title,
    plan_placement,
)

if TYPE_CHECKING:
    from bookmark_sync.adapters.native.gateway import NativeTreeGateway
    from bookmark_sync.config.sync import SyncSettings
    from bookmark_sync.sync.protocols import CatalogStore, MappingStore
    from bookmark_sync.sync.queue import RetryQueue
    from bookmark_sync.sync.state import SyncState

logger = logging.getLogger(__name__)


def collect_subtree_ids(node: dict[str, Any] | None) -> list[str]:
    """Ids of a removed node's subtree as reported by the host, parents first."""
    if not node:
        return []
    ids: list[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.get("id") is not None:
            ids.append(str(current["id"]))
        stack.extend(reversed(current.get("children") or []))
    return ids


class InboundSyncEngine:
    """Applies native created / changed / removed / moved events to the catalog."""

    def __init__(
        self,
        catalog: CatalogStore,
        mappings: MappingStore,
        gateway: NativeTreeGateway,
        state: SyncState,
        queue: RetryQueue,
    ) -> None:
        self._catalog = catalog
        self._mappings = mappings
        self._gateway = gateway
        self._state = state
        self._queue = queue
        self._listeners = {
            NativeEventKind.CREATED: self._on_created,
            NativeEventKind.CHANGED: self._on_changed,
            NativeEventKind.REMOVED: self._on_removed,
            NativeEventKind.MOVED: self._on_moved,
        }

    @property
    def queue(self) -> RetryQueue:
        return self._queue

    def start(self) -> None:
        """Register host listeners once per engine state."""
        if self._state.listeners_registered:
            return
        for kind, callback in self._listeners.items():
            self._gateway.subscribe(kind, callback)
        self._state.listeners_registered = True
        logger.info("inbound_sync_started")

    async def stop(self) -> None:
        if self._state.listeners_registered:
            for kind, callback in self._listeners.items():
                self._gateway.unsubscribe(kind, callback)
            self._state.listeners_registered = False
        await self._queue.stop()
        logger.info("inbound_sync_stopped")

    async def wait_idle(self) -> None:
        await self._queue.wait_idle()

    # ------------------------------------------------------------------
    # Host listeners
    # ------------------------------------------------------------------

    def _accept(self, kind: NativeEventKind, native_id: str) -> bool:
        if native_id in self._state.pending_native_ops:
            logger.debug(
                "inbound_event_suppressed",
                extra={"event_kind": kind.value, "native_id": native_id},
            )
            return False
        return True

    def _on_created(self, native_id: str, payload: dict[str, Any]) -> None:
        if self._accept(NativeEventKind.CREATED, native_id):
            self._queue.enqueue(
                partial(self.handle_created, native_id, payload),
                task_kind=NativeEventKind.CREATED.value,
                key=native_id,
            )

    def _on_changed(self, native_id: str, payload: dict[str, Any]) -> None:
        if self._accept(NativeEventKind.CHANGED, native_id):
            self._queue.enqueue(
                partial(self.handle_changed, native_id, payload),
                task_kind=NativeEventKind.CHANGED.value,
                key=native_id,
            )

    def _on_removed(self, native_id: str, payload: dict[str, Any]) -> None:
        if self._accept(NativeEventKind.REMOVED, native_id):
            self._queue.enqueue(
                partial(self.handle_removed, native_id, payload),
                task_kind=NativeEventKind.REMOVED.value,
                key=native_id,
            )

    def _on_moved(self, native_id: str, payload: dict[str, Any]) -> None:
        if self._accept(NativeEventKind.MOVED, native_id):
            self._queue.enqueue(
                partial(self.handle_moved, native_id, payload),
                task_kind=NativeEventKind.MOVED.value,
                key=native_id,
            )

    # ------------------------------------------------------------------
    # Task helpers
    # ------------------------------------------------------------------

    async def _active_settings(self, native_id: str) -> SyncSettings | None:
        if native_id in self._state.pending_native_ops:
            return None
        settings = await self._mappings.async_get_sync_settings()
        if not settings.enable_bidirectional:
            logger.debug("inbound_sync_disabled", extra={"native_id": native_id})
            return None
        return settings

    async def _resolve_placement(self, node: NativeNode, settings: SyncSettings) -> Placement:
        ancestors = await self._gateway.ancestors(node.parent_id)
        plan = plan_placement(
            len(ancestors),
            [ancestor.title for ancestor in ancestors],
            node.title if node.is_folder else None,
            import_hierarchy=settings.import_folder_hierarchy,
        )
        resolver = PlacementResolver(self._catalog)
        await resolver.load()
        return await resolver.resolve(plan)

    async def _find_by_canonical_url(self, canonical: str) -> Bookmark | None:
        direct = await self._catalog.async_find_bookmark_by_url(canonical)
        if direct is not None:
            return direct
        for bookmark in await self._catalog.async_list_bookmarks():
            if canonical_url(bookmark.url) == canonical:
                return bookmark
        return None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_created(self, native_id: str, payload: dict[str, Any]) -> None:
        settings = await self._active_settings(native_id)
        if settings is None:
            return

        existing = await self._mappings.async_get_by_native_id(native_id)
        if existing is not None:
            await self._mappings.async_put(replace(existing, last_sync_at=now_ms()))
            logger.debug("inbound_created_echo", extra={"native_id": native_id})
            return

        node = parse_node(payload) if payload else await self._gateway.get(native_id)
        if node is None:
            msg = f"Native node {native_id} no longer exists"
            raise NotFoundError(msg, {"native_id": native_id})

        placement = await self._resolve_placement(node, settings)

        if node.is_folder:
            await self._mappings.async_put(
                Mapping(
                    native_id=native_id,
                    node_type=NodeType.FOLDER,
                    board_id=placement.board_id,
                    category_id=placement.category_id,
                    inherited=placement.inherited,
                )
            )
            logger.info(
                "inbound_folder_mapped",
                extra={"native_id": native_id, "board_id": placement.board_id},
            )
            return

        canonical = canonical_url(node.url)
        target_url = canonical or node.url or ""
        mapping = Mapping(
            native_id=native_id,
            node_type=NodeType.BOOKMARK,
            board_id=placement.board_id,
            category_id=placement.category_id,
        )

        match = await self._find_by_canonical_url(canonical) if canonical else None
        if match is not None:
            await self._mappings.async_put(replace(mapping, local_id=match.id))
            logger.info(
                "inbound_bookmark_linked",
                extra={"native_id": native_id, "local_id": match.id},
            )
            return

        timestamp = now_ms()
        bookmark = Bookmark(
            id=new_entity_id(),
            url=target_url,
            title=normalize_title(node.title) or target_url,
            category_id=placement.category_id,
            notes=placement.note,
            created_at=node.date_added or timestamp,
            updated_at=timestamp,
            visit_count=1,
        )
        await self._state.pending_local_ops.run(
            bookmark.id,
            partial(self._catalog.async_create_bookmark, bookmark, mapping=mapping),
        )
        logger.info(
            "inbound_bookmark_created",
            extra={"native_id": native_id, "local_id": bookmark.id},
        )

    async def handle_changed(self, native_id: str, payload: dict[str, Any]) -> None:
        settings = await self._active_settings(native_id)
        if settings is None:
            return

        mapping = await self._mappings.async_get_by_native_id(native_id)
        if mapping is None or mapping.is_folder or not mapping.local_id:
            return

        bookmark = await self._catalog.async_get_bookmark(mapping.local_id)
        if bookmark is None:
            msg = f"Bookmark {mapping.local_id} not found"
            raise NotFoundError(msg, {"native_id": native_id, "local_id": mapping.local_id})

        node = await self._gateway.get(native_id)
        title = payload.get("title")
        if title is None and node is not None:
            title = node.title
        raw_url = payload.get("url") or bookmark.url
        url = canonical_url(raw_url) or raw_url
        # A change notification without a modification time is treated as happening now.
        native_ts = node.date_group_modified if node and node.date_group_modified else now_ms()

        resolved = resolve_bookmark_conflict(
            bookmark,
            title=title,
            url=url,
            updated_at=native_ts,
            policy=settings.conflict_policy,
        )
        refreshed = replace(mapping, last_sync_at=now_ms())
        if resolved.title == bookmark.title and resolved.url == bookmark.url:
            await self._mappings.async_put(refreshed)
            return

        changes = {"title": resolved.title, "url": resolved.url, "updated_at": resolved.updated_at}
        update = partial(
            self._catalog.async_update_bookmark, bookmark.id, changes, mapping=refreshed
        )
        await self._state.pending_native_ops.run(
            native_id, partial(self._state.pending_local_ops.run, bookmark.id, update)
        )
        logger.info(
            "inbound_bookmark_updated",
            extra={"native_id": native_id, "local_id": bookmark.id},
        )

    async def handle_removed(self, native_id: str, payload: dict[str, Any]) -> None:
        settings = await self._active_settings(native_id)
        if settings is None:
            return

        removed_ids = [native_id]
        removed_ids.extend(
            child for child in collect_subtree_ids(payload.get("node")) if child != native_id
        )
        removed = set(removed_ids)

        mapped = []
        for removed_id in removed_ids:
            mapping = await self._mappings.async_get_by_native_id(removed_id)
            if mapping is not None:
                mapped.append(mapping)
        if not mapped:
            return

        folders = [mapping for mapping in mapped if mapping.is_folder]
        surviving_folders = [
            mapping
            for mapping in await self._mappings.async_list_by_node_type(NodeType.FOLDER)
            if mapping.native_id not in removed
        ]

        for mapping in mapped:
            if not mapping.is_folder:
                await self._remove_bookmark_mapping(mapping, removed)

        # Deepest folders first so categories go before their boards.
        for mapping in reversed(folders):
            await self._remove_folder_mapping(mapping, surviving_folders)

        logger.info(
            "inbound_subtree_removed",
            extra={"native_id": native_id, "mappings_removed": len(mapped)},
        )

    async def _remove_bookmark_mapping(self, mapping: Mapping, removed: set[str]) -> None:
        local_id = mapping.local_id
        if not local_id:
            await self._mappings.async_delete_by_native_id(mapping.native_id)
            return
        siblings = await self._mappings.async_get_all_by_local_id(local_id)
        if any(other.native_id not in removed for other in siblings):
            # Another native node still points at the same bookmark.
            await self._mappings.async_delete_by_native_id(mapping.native_id)
            return
        await self._state.pending_local_ops.run(
            local_id,
            partial(
                self._catalog.async_delete_bookmark, local_id, native_ids=[mapping.native_id]
            ),
        )

    async def _remove_folder_mapping(
        self, mapping: Mapping, surviving_folders: list[Mapping]
    ) -> None:
        if mapping.category_id:
            still_used = any(m.category_id == mapping.category_id for m in surviving_folders)
            if not still_used:
                await self._catalog.async_delete_category(
                    mapping.category_id, native_ids=[mapping.native_id]
                )
                return
        elif mapping.board_id:
            still_used = any(m.board_id == mapping.board_id for m in surviving_folders)
            if not still_used:
                await self._catalog.async_delete_board(
                    mapping.board_id, native_ids=[mapping.native_id]
                )
                return
        await self._mappings.async_delete_by_native_id(mapping.native_id)

    async def handle_moved(self, native_id: str, payload: dict[str, Any]) -> None:
        settings = await self._active_settings(native_id)
        if settings is None:
            return

        node = await self._gateway.get(native_id)
        if node is None:
            msg = f"Native node {native_id} no longer exists"
            raise NotFoundError(msg, {"native_id": native_id})
        placement = await self._resolve_placement(node, settings)

        if node.is_folder:
            await self._mappings.async_put(
                Mapping(
                    native_id=native_id,
                    node_type=NodeType.FOLDER,
                    board_id=placement.board_id,
                    category_id=placement.category_id,
                    inherited=placement.inherited,
                )
            )
            return

        mapping = await self._mappings.async_get_by_native_id(native_id)
        if mapping is None or not mapping.local_id:
            return

        moved = replace(
            mapping,
            board_id=placement.board_id,
            category_id=placement.category_id,
            last_sync_at=now_ms(),
        )
        update = partial(
            self._catalog.async_update_bookmark,
            mapping.local_id,
            {"category_id": placement.category_id},
            mapping=moved,
        )
        await self._state.pending_native_ops.run(
            native_id, partial(self._state.pending_local_ops.run, mapping.local_id, update)
        )
        logger.info(
            "inbound_bookmark_moved",
            extra={
                "native_id": native_id,
                "local_id": mapping.local_id,
                "parent_id": payload.get("parentId"),
            },
        )
