"""Pydantic models for native bookmark tree nodes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class NativeEventKind(str, Enum):
    """Native tree notifications the inbound engine consumes."""

    CREATED = "created"
    CHANGED = "changed"
    REMOVED = "removed"
    MOVED = "moved"


class NativeNode(BaseModel):
    """A node of the host bookmark tree; a node without ``url`` is a folder."""

    id: str
    title: str = ""
    url: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    index: int | None = None
    children: list[NativeNode] | None = None
    date_added: int | None = Field(default=None, alias="dateAdded")
    date_group_modified: int | None = Field(default=None, alias="dateGroupModified")
    unmodifiable: str | bool | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("date_added", "date_group_modified", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        if value is None:
            return None
        return int(value)

    @property
    def is_folder(self) -> bool:
        return not self.url

    @property
    def is_writable_folder(self) -> bool:
        return self.is_folder and not self.unmodifiable
