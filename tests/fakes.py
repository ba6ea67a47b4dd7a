"""In-memory stand-ins for the host bookmarks API and helpers to build stores."""

from __future__ import annotations

import copy
import itertools
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any

from bookmark_sync.adapters.native.gateway import NativeTreeGateway
from bookmark_sync.config.sync import SyncEngineConfig, SyncSettings
from bookmark_sync.db.session import DatabaseSessionManager
from bookmark_sync.infrastructure.messaging.event_bus import EventBus
from bookmark_sync.infrastructure.persistence.sqlite.repositories.catalog_repository import (
    SqliteCatalogRepository,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories.mapping_repository import (
    SqliteMappingRepository,
)
from bookmark_sync.sync.engine import SyncEngine


def folder(node_id: str, title: str, children: list[dict[str, Any]] | None = None, **extra: Any):
    return {"id": node_id, "title": title, "children": children or [], **extra}


def bookmark(node_id: str, title: str, url: str, **extra: Any) -> dict[str, Any]:
    return {"id": node_id, "title": title, "url": url, "dateAdded": 1_700_000_000_000, **extra}


def folder_chain(levels: int, leaf: dict[str, Any], prefix: str = "level") -> dict[str, Any]:
    """Nest ``leaf`` under ``levels`` single-child folders, built bottom-up without recursion."""
    node = leaf
    for level in range(levels, 0, -1):
        node = folder(f"{prefix}-{level}", f"Level {level}", [node])
    return node


def browser_tree() -> list[dict[str, Any]]:
    """A bare browser profile: an untitled root with the two standard folders."""
    return [
        folder(
            "0",
            "",
            [
                folder("1", "Bookmarks bar", unmodifiable=None),
                folder("2", "Other bookmarks"),
            ],
        )
    ]


class FakeBookmarksApi:
    """Mutable bookmark tree that fires host-style events on every change.

    Calling the mutators directly plays the part of a user editing the
    native tree; the sync engine calls the same methods through the gateway.
    """

    def __init__(self, tree: list[dict[str, Any]] | None = None) -> None:
        self._nodes: dict[str, dict[str, Any]] = {}
        self._children: dict[str, list[str]] = defaultdict(list)
        self._root_ids: list[str] = []
        self._listeners: dict[str, list[Any]] = defaultdict(list)
        self._ids = itertools.count(1000)
        self.calls: list[tuple[str, str]] = []
        self.fire_events = True
        for root in tree if tree is not None else browser_tree():
            self._ingest(root, None)

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------

    def _ingest(self, root: dict[str, Any], root_parent_id: str | None) -> None:
        stack: list[tuple[dict[str, Any], str | None]] = [(root, root_parent_id)]
        while stack:
            raw, parent_id = stack.pop()
            node = {key: value for key, value in raw.items() if key != "children"}
            node["id"] = str(node["id"])
            node["parentId"] = parent_id
            if "url" not in node:
                node["children"] = True
            self._nodes[node["id"]] = node
            if parent_id is None:
                self._root_ids.append(node["id"])
            else:
                self._children[parent_id].append(node["id"])
            stack.extend((child, node["id"]) for child in reversed(raw.get("children") or []))

    def _flat_snapshot(self, node_id: str) -> dict[str, Any]:
        node = {key: value for key, value in self._nodes[node_id].items() if key != "children"}
        parent_id = node.get("parentId")
        if parent_id is not None:
            node["index"] = self._children[parent_id].index(node_id)
        return node

    def _snapshot(self, node_id: str, *, deep: bool) -> dict[str, Any]:
        top = self._flat_snapshot(node_id)
        if not deep:
            return top
        stack = [top]
        while stack:
            current = stack.pop()
            if "url" in current:
                continue
            current["children"] = [
                self._flat_snapshot(child) for child in self._children[current["id"]]
            ]
            stack.extend(current["children"])
        return top

    def _fire(self, event: str, native_id: str, payload: dict[str, Any]) -> None:
        if not self.fire_events:
            return
        for callback in list(self._listeners[event]):
            callback(native_id, copy.deepcopy(payload))

    def emit(self, event: str, native_id: str, payload: dict[str, Any]) -> None:
        """Deliver a host event as-is, bypassing ``fire_events``."""
        for callback in list(self._listeners[event]):
            callback(native_id, copy.deepcopy(payload))

    def _require(self, native_id: str) -> dict[str, Any]:
        node = self._nodes.get(native_id)
        if node is None:
            msg = f"Can't find bookmark for id {native_id}"
            raise KeyError(msg)
        return node

    def node(self, native_id: str) -> dict[str, Any] | None:
        return self._snapshot(native_id, deep=True) if native_id in self._nodes else None

    def children_of(self, native_id: str) -> list[dict[str, Any]]:
        return [self._snapshot(child, deep=False) for child in self._children[native_id]]

    def find_by_title(self, title: str) -> list[dict[str, Any]]:
        return [
            self._snapshot(node_id, deep=False)
            for node_id, node in self._nodes.items()
            if node.get("title") == title
        ]

    def set_modified(self, native_id: str, timestamp: int) -> None:
        self._require(native_id)["dateGroupModified"] = timestamp

    def listener_count(self, event: str) -> int:
        return len(self._listeners[event])

    # ------------------------------------------------------------------
    # BookmarksApi
    # ------------------------------------------------------------------

    async def get_tree(self) -> list[dict[str, Any]]:
        return [self._snapshot(root, deep=True) for root in self._root_ids]

    async def get(self, native_id: str) -> list[dict[str, Any]]:
        if native_id not in self._nodes:
            return []
        return [self._snapshot(native_id, deep=False)]

    async def create(self, details: dict[str, Any]) -> dict[str, Any]:
        parent_id = str(details["parentId"])
        parent = self._require(parent_id)
        if "url" in parent:
            msg = "Parent must be a folder"
            raise ValueError(msg)
        node_id = str(next(self._ids))
        node: dict[str, Any] = {
            "id": node_id,
            "title": details.get("title", ""),
            "parentId": parent_id,
            "dateAdded": 1_700_000_000_000,
        }
        if details.get("url"):
            node["url"] = details["url"]
        else:
            node["children"] = True
        self._nodes[node_id] = node
        self._children[parent_id].append(node_id)
        self.calls.append(("create", node_id))
        snapshot = self._snapshot(node_id, deep=False)
        self._fire("created", node_id, snapshot)
        return snapshot

    async def update(self, native_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        node = self._require(native_id)
        for key in ("title", "url"):
            if key in changes:
                node[key] = changes[key]
        self.calls.append(("update", native_id))
        self._fire("changed", native_id, {"title": node.get("title"), "url": node.get("url")})
        return self._snapshot(native_id, deep=False)

    async def move(self, native_id: str, destination: dict[str, Any]) -> dict[str, Any]:
        node = self._require(native_id)
        new_parent = str(destination["parentId"])
        self._require(new_parent)
        old_parent = node["parentId"]
        old_index = self._children[old_parent].index(native_id)
        self._children[old_parent].remove(native_id)
        index = destination.get("index")
        siblings = self._children[new_parent]
        if index is None or index > len(siblings):
            siblings.append(native_id)
        else:
            siblings.insert(index, native_id)
        node["parentId"] = new_parent
        self.calls.append(("move", native_id))
        self._fire(
            "moved",
            native_id,
            {
                "parentId": new_parent,
                "oldParentId": old_parent,
                "index": siblings.index(native_id),
                "oldIndex": old_index,
            },
        )
        return self._snapshot(native_id, deep=False)

    async def remove(self, native_id: str) -> None:
        if self._children.get(native_id):
            msg = "Can't remove non-empty folder"
            raise ValueError(msg)
        self._remove(native_id, "remove")

    async def remove_tree(self, native_id: str) -> None:
        self._remove(native_id, "remove_tree")

    def _remove(self, native_id: str, call: str) -> None:
        self._require(native_id)
        snapshot = self._snapshot(native_id, deep=True)
        parent_id = snapshot.get("parentId")
        index = snapshot.get("index")
        stack = [native_id]
        while stack:
            current = stack.pop()
            stack.extend(self._children.pop(current, []))
            self._nodes.pop(current, None)
        if parent_id is not None:
            self._children[parent_id].remove(native_id)
        self.calls.append((call, native_id))
        self._fire("removed", native_id, {"parentId": parent_id, "index": index, "node": snapshot})

    def add_listener(self, event: str, callback: Any) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Any) -> None:
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)


class StoreFixture:
    """Temp-file SQLite database with both repositories and an event bus."""

    def __init__(self, defaults: SyncSettings | None = None) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self._tmpdir.name) / "bookmarks.db")
        self.session = DatabaseSessionManager(path=self.db_path)
        self.session.migrate()
        self.event_bus = EventBus()
        self.catalog = SqliteCatalogRepository(self.session, self.event_bus)
        self.mappings = SqliteMappingRepository(self.session, defaults)

    def close(self) -> None:
        self.session.close()
        self._tmpdir.cleanup()


def fast_engine_config(**overrides: Any) -> SyncEngineConfig:
    values: dict[str, Any] = {
        "retry_base_delay_ms": 1,
        "retry_max_delay_ms": 5,
        "outbound_batch_delay_ms": 0,
    }
    values.update(overrides)
    return SyncEngineConfig(**values)


def build_engine(store: StoreFixture, api: FakeBookmarksApi | None, **config: Any) -> SyncEngine:
    return SyncEngine(
        catalog=store.catalog,
        mappings=store.mappings,
        gateway=NativeTreeGateway(api),
        event_bus=store.event_bus,
        engine_config=fast_engine_config(**config),
    )
