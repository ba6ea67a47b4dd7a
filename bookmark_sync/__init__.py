"""Bidirectional sync between a native bookmark tree and the local catalog."""

from bookmark_sync.sync.engine import SyncEngine

__all__ = ["SyncEngine"]
