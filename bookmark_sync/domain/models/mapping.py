"""Correlation records between native tree nodes and the local catalog."""

from dataclasses import dataclass
from enum import Enum


class NodeType(str, Enum):
    """Kind of native node a mapping describes."""

    BOOKMARK = "bookmark"
    FOLDER = "folder"


@dataclass
class Mapping:
    """Links one native node id to its local placement.

    ``local_id`` is only ever set for bookmark mappings; ``board_id`` and
    ``category_id`` are the placement the node currently resolves to.
    ``inherited`` marks a folder nested below a category folder: it resolves
    to its ancestor's placement but is not the folder for that placement.
    """

    native_id: str
    node_type: NodeType | str
    local_id: str | None = None
    board_id: str | None = None
    category_id: str | None = None
    last_sync_at: int = 0
    inherited: bool = False

    @property
    def is_folder(self) -> bool:
        return self.node_type == NodeType.FOLDER
