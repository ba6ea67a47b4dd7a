"""Thin async facade over the host's native bookmark tree.

No sync policy lives here: the gateway only translates between the host
api's dict payloads and :class:`NativeNode`, and picks where the mirror
root folder goes.
"""

from __future__ import annotations

import logging
from typing import Any

from bookmark_sync.adapters.native.models import NativeEventKind, NativeNode
from bookmark_sync.adapters.native.protocols import BookmarksApi, NativeEventCallback
from bookmark_sync.domain.exceptions import UnavailableError

logger = logging.getLogger(__name__)

PREFERRED_MIRROR_PARENTS = (
    "bookmarks bar",
    "bookmarks toolbar",
    "bookmarks menu",
    "other bookmarks",
)
FALLBACK_ROOT_ID = "0"


def _title_key(title: str | None) -> str:
    return (title or "").strip().lower()


def parse_node(raw: dict[str, Any]) -> NativeNode:
    """Validate one host node, ignoring any ``children`` it carries."""
    fields = {key: value for key, value in raw.items() if key != "children"}
    return NativeNode.model_validate(fields)


def parse_tree(raw_nodes: list[dict[str, Any]]) -> list[NativeNode]:
    """Build :class:`NativeNode` trees from host dicts without recursing.

    Each node is validated on its own and attached to its parent afterwards,
    so tree depth is bounded by memory rather than by validator nesting.
    """
    roots: list[NativeNode] = []
    stack: list[tuple[dict[str, Any], list[NativeNode]]] = [
        (raw, roots) for raw in reversed(raw_nodes)
    ]
    while stack:
        raw, siblings = stack.pop()
        node = parse_node(raw)
        siblings.append(node)
        raw_children = raw.get("children")
        if raw_children is not None:
            node.children = []
            stack.extend((child, node.children) for child in reversed(raw_children))
    return roots


def find_writable_folder(nodes: list[NativeNode] | None, title: str) -> NativeNode | None:
    """Depth-first search for a writable folder titled ``title`` (case-insensitive)."""
    wanted = _title_key(title)
    stack = list(reversed(nodes or []))
    while stack:
        node = stack.pop()
        if node.is_writable_folder and _title_key(node.title) == wanted:
            return node
        stack.extend(reversed(node.children or []))
    return None


def pick_mirror_parent(root: NativeNode | None) -> NativeNode | None:
    candidates = (root.children or []) if root else []
    if not candidates:
        return None
    for title in PREFERRED_MIRROR_PARENTS:
        match = find_writable_folder(candidates, title)
        if match is not None:
            return match
    return next((child for child in candidates if child.is_writable_folder), None)


class NativeTreeGateway:
    """Async wrapper around a :class:`BookmarksApi`.

    Constructed without an api (the host does not expose bookmarks in this
    context) every call raises :class:`UnavailableError`.
    """

    def __init__(self, api: BookmarksApi | None) -> None:
        self._api = api

    @property
    def available(self) -> bool:
        return self._api is not None

    def _require_api(self) -> BookmarksApi:
        if self._api is None:
            msg = "Bookmarks API is not available in this context"
            raise UnavailableError(msg)
        return self._api

    async def get_tree(self) -> list[NativeNode]:
        raw = await self._require_api().get_tree()
        return parse_tree(raw)

    async def get(self, native_id: str) -> NativeNode | None:
        raw = await self._require_api().get(native_id)
        if not raw:
            return None
        return parse_node(raw[0])

    async def ancestors(self, parent_id: str | None) -> list[NativeNode]:
        """Walk the parent chain starting at ``parent_id``; returns root first."""
        chain: list[NativeNode] = []
        seen: set[str] = set()
        current = parent_id
        while current and current not in seen:
            seen.add(current)
            node = await self.get(current)
            if node is None:
                break
            chain.append(node)
            current = node.parent_id
        chain.reverse()
        return chain

    async def create(self, parent_id: str, title: str, url: str | None = None) -> NativeNode:
        details: dict[str, Any] = {"parentId": parent_id, "title": title}
        if url is not None:
            details["url"] = url
        created = await self._require_api().create(details)
        return parse_node(created)

    async def update(
        self, native_id: str, *, title: str | None = None, url: str | None = None
    ) -> NativeNode:
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if url is not None:
            changes["url"] = url
        updated = await self._require_api().update(native_id, changes)
        return parse_node(updated)

    async def move(self, native_id: str, parent_id: str, index: int | None = None) -> NativeNode:
        destination: dict[str, Any] = {"parentId": parent_id}
        if index is not None:
            destination["index"] = index
        moved = await self._require_api().move(native_id, destination)
        return parse_node(moved)

    async def remove(self, native_id: str) -> bool:
        """Remove a bookmark, or a folder with its subtree. No-op if the node is gone."""
        api = self._require_api()
        node = await self.get(native_id)
        if node is None:
            logger.debug("native_remove_missing", extra={"native_id": native_id})
            return False
        if node.is_folder:
            await api.remove_tree(native_id)
        else:
            await api.remove(native_id)
        return True

    async def ensure_mirror_root(self, name: str) -> str:
        """Return the id of the mirror root folder, creating it if needed."""
        api = self._require_api()
        tree = await self.get_tree()
        root = tree[0] if tree else None
        existing = find_writable_folder(root.children if root else None, name)
        if existing is not None:
            return existing.id

        parent = pick_mirror_parent(root)
        parent_id = parent.id if parent else (root.id if root else FALLBACK_ROOT_ID)
        raw = await api.create({"parentId": parent_id, "title": name})
        created = parse_node(raw)
        logger.info(
            "mirror_root_created",
            extra={"native_id": created.id, "parent_id": parent_id, "title": name},
        )
        return created.id

    def subscribe(self, kind: NativeEventKind | str, callback: NativeEventCallback) -> None:
        self._require_api().add_listener(NativeEventKind(kind).value, callback)

    def unsubscribe(self, kind: NativeEventKind | str, callback: NativeEventCallback) -> None:
        self._require_api().remove_listener(NativeEventKind(kind).value, callback)
