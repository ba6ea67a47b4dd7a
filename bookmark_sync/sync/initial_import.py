"""One-shot import of the whole native bookmark tree into the catalog.

The tree is walked with an explicit stack, so depth is bounded only by
memory. Catalog rows and mappings are buffered and committed in one
transaction per chunk of ``yield_every`` nodes; the loop yields to the event
loop between chunks. The import writes no catalog events, so nothing echoes
back to the native tree.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bookmark_sync.core.logging_utils import correlation_scope, generate_correlation_id
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.core.url_utils import canonical_url
from bookmark_sync.domain.models.catalog import Bookmark, new_entity_id
from bookmark_sync.domain.models.mapping import Mapping, NodeType
from bookmark_sync.sync.placement import PlacementResolver, normalize_title, plan_placement

if TYPE_CHECKING:
    from bookmark_sync.adapters.native.gateway import NativeTreeGateway
    from bookmark_sync.adapters.native.models import NativeNode
    from bookmark_sync.sync.protocols import CatalogStore, MappingStore
    from bookmark_sync.sync.state import SyncState

logger = logging.getLogger(__name__)

IMPORT_BATCH_SIZE = 500


@dataclass(frozen=True)
class _Frame:
    node: NativeNode
    depth: int
    ancestor_titles: tuple[str, ...]


@dataclass
class ImportResult:
    mirror_root_id: str | None = None
    nodes_visited: int = 0
    boards_created: int = 0
    categories_created: int = 0
    bookmarks_created: int = 0
    duplicates_skipped: int = 0
    mappings_written: int = 0
    duration_ms: int = 0
    correlation_id: str = field(default_factory=generate_correlation_id)


@dataclass
class _Chunk:
    bookmarks: list[Bookmark] = field(default_factory=list)
    mappings: list[Mapping] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.bookmarks or self.mappings)


class InitialImporter:
    """Import the native tree into boards, categories and bookmarks.

    Bookmarks are deduplicated by canonical URL against both the existing
    catalog and earlier nodes of the same pass; a duplicate only gets a
    mapping to the bookmark that already exists. Running the import twice
    therefore creates nothing new.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        mappings: MappingStore,
        gateway: NativeTreeGateway,
        state: SyncState,
        *,
        yield_every: int = IMPORT_BATCH_SIZE,
    ) -> None:
        self._catalog = catalog
        self._mappings = mappings
        self._gateway = gateway
        self._state = state
        self._yield_every = max(1, yield_every)

    async def run(self, *, import_folder_hierarchy: bool | None = None) -> ImportResult:
        result = ImportResult()
        with correlation_scope(result.correlation_id):
            return await self._run(result, import_folder_hierarchy)

    async def _run(
        self, result: ImportResult, import_folder_hierarchy: bool | None
    ) -> ImportResult:
        started = time.perf_counter()
        settings = await self._mappings.async_get_sync_settings()
        hierarchy = (
            settings.import_folder_hierarchy
            if import_folder_hierarchy is None
            else import_folder_hierarchy
        )
        logger.info("initial_import_started", extra={"import_folder_hierarchy": hierarchy})

        result.mirror_root_id = await self._state.ensure_mirror_root(
            self._gateway, settings.mirror_root_name
        )
        tree = await self._gateway.get_tree()

        resolver = PlacementResolver(self._catalog, buffered=True)
        await resolver.load()
        await resolver.ensure_defaults()
        known_urls = await self._load_known_urls()

        stack = [_Frame(node=root, depth=0, ancestor_titles=()) for root in reversed(tree)]
        chunk = _Chunk()
        sync_ts = now_ms()

        while stack:
            frame = stack.pop()
            node = frame.node
            result.nodes_visited += 1

            if node.is_folder:
                plan = plan_placement(
                    frame.depth, frame.ancestor_titles, node.title, import_hierarchy=hierarchy
                )
                placement = await resolver.resolve(plan)
                chunk.mappings.append(
                    Mapping(
                        native_id=node.id,
                        node_type=NodeType.FOLDER,
                        board_id=placement.board_id,
                        category_id=placement.category_id,
                        last_sync_at=sync_ts,
                        inherited=placement.inherited,
                    )
                )
                child_titles = (*frame.ancestor_titles, node.title)
                for child in reversed(node.children or []):
                    stack.append(
                        _Frame(node=child, depth=frame.depth + 1, ancestor_titles=child_titles)
                    )
            else:
                plan = plan_placement(
                    frame.depth, frame.ancestor_titles, import_hierarchy=hierarchy
                )
                placement = await resolver.resolve(plan)
                canonical = canonical_url(node.url)
                target_url = canonical or node.url or ""
                local_id = known_urls.get(canonical) if canonical else None
                if local_id is None:
                    local_id = new_entity_id()
                    chunk.bookmarks.append(
                        Bookmark(
                            id=local_id,
                            url=target_url,
                            title=normalize_title(node.title) or target_url,
                            category_id=placement.category_id,
                            notes=placement.note,
                            created_at=node.date_added or sync_ts,
                            updated_at=sync_ts,
                            visit_count=1,
                        )
                    )
                    if canonical:
                        known_urls[canonical] = local_id
                    result.bookmarks_created += 1
                else:
                    result.duplicates_skipped += 1
                chunk.mappings.append(
                    Mapping(
                        native_id=node.id,
                        node_type=NodeType.BOOKMARK,
                        local_id=local_id,
                        board_id=placement.board_id,
                        category_id=placement.category_id,
                        last_sync_at=sync_ts,
                    )
                )

            if result.nodes_visited % self._yield_every == 0:
                result.mappings_written += await self._flush(resolver, chunk)
                chunk = _Chunk()
                await asyncio.sleep(0)

        result.mappings_written += await self._flush(resolver, chunk)

        result.boards_created = resolver.boards_created
        result.categories_created = resolver.categories_created
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "initial_import_completed",
            extra={
                "nodes_visited": result.nodes_visited,
                "boards_created": result.boards_created,
                "categories_created": result.categories_created,
                "bookmarks_created": result.bookmarks_created,
                "duplicates_skipped": result.duplicates_skipped,
                "mappings_written": result.mappings_written,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _load_known_urls(self) -> dict[str, str]:
        known: dict[str, str] = {}
        for bookmark in await self._catalog.async_list_bookmarks():
            canonical = canonical_url(bookmark.url)
            if canonical and canonical not in known:
                known[canonical] = bookmark.id
        return known

    async def _flush(self, resolver: PlacementResolver, chunk: _Chunk) -> int:
        boards, categories = resolver.drain_pending()
        if not (boards or categories or chunk):
            return 0
        await self._catalog.async_import_batch(
            boards=boards,
            categories=categories,
            bookmarks=chunk.bookmarks,
            mappings=chunk.mappings,
        )
        return len(chunk.mappings)
