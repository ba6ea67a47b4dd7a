from bookmark_sync.adapters.native.gateway import NativeTreeGateway
from bookmark_sync.adapters.native.models import NativeEventKind, NativeNode
from bookmark_sync.adapters.native.protocols import BookmarksApi, NativeEventCallback

__all__ = [
    "BookmarksApi",
    "NativeEventCallback",
    "NativeEventKind",
    "NativeNode",
    "NativeTreeGateway",
]
