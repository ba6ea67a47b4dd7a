"""Protocol definitions (ports) for the host's native bookmarks API.

The sync engines never talk to a host directly; they receive an object that
satisfies :class:`BookmarksApi` (a browser bridge in production, an in-memory
fake in tests).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

# (native_id, payload) -> None. Payload shapes follow the host:
#   created: the created node
#   changed: {"title": ..., "url": ...}
#   removed: {"parentId": ..., "index": ..., "node": <removed subtree>}
#   moved:   {"parentId": ..., "oldParentId": ..., "index": ..., "oldIndex": ...}
NativeEventCallback = Callable[[str, dict[str, Any]], None]


class BookmarksApi(Protocol):
    async def get_tree(self) -> list[dict[str, Any]]: ...

    async def get(self, native_id: str) -> list[dict[str, Any]]: ...

    async def create(self, details: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, native_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def move(self, native_id: str, destination: dict[str, Any]) -> dict[str, Any]: ...

    async def remove(self, native_id: str) -> None: ...

    async def remove_tree(self, native_id: str) -> None: ...

    def add_listener(self, event: str, callback: NativeEventCallback) -> None: ...

    def remove_listener(self, event: str, callback: NativeEventCallback) -> None: ...
