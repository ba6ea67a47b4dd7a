"""Mutable state shared by the engines of one :class:`SyncEngine`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bookmark_sync.adapters.native.gateway import NativeTreeGateway
from bookmark_sync.sync.guards import DEFAULT_GUARD_TTL_SEC, ReentrancyGuard

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Guards plus the cached mirror root folder id.

    ``pending_native_ops`` holds native ids the outbound side is writing,
    ``pending_local_ops`` holds local bookmark ids the inbound side is writing.
    """

    guard_ttl: float = DEFAULT_GUARD_TTL_SEC
    pending_native_ops: ReentrancyGuard = field(init=False)
    pending_local_ops: ReentrancyGuard = field(init=False)
    mirror_root_id: str | None = None
    mirror_root_name: str | None = None
    listeners_registered: bool = False

    def __post_init__(self) -> None:
        self.pending_native_ops = ReentrancyGuard("pending_native_ops", self.guard_ttl)
        self.pending_local_ops = ReentrancyGuard("pending_local_ops", self.guard_ttl)

    async def ensure_mirror_root(self, gateway: NativeTreeGateway, name: str) -> str:
        """Return the mirror root id, asking the gateway only when the name changed."""
        if self.mirror_root_id is not None and self.mirror_root_name == name:
            return self.mirror_root_id
        self.mirror_root_id = await gateway.ensure_mirror_root(name)
        self.mirror_root_name = name
        logger.debug(
            "mirror_root_resolved", extra={"native_id": self.mirror_root_id, "title": name}
        )
        return self.mirror_root_id

    def forget_mirror_root(self) -> None:
        self.mirror_root_id = None
        self.mirror_root_name = None

    def reset(self) -> None:
        self.pending_native_ops.clear()
        self.pending_local_ops.clear()
        self.forget_mirror_root()
        self.listeners_registered = False
