from bookmark_sync.domain.models.catalog import Board, Bookmark, Category, new_entity_id
from bookmark_sync.domain.models.mapping import Mapping, NodeType

__all__ = ["Board", "Bookmark", "Category", "Mapping", "NodeType", "new_entity_id"]
