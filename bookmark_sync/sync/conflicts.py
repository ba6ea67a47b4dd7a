"""Last-writer-wins conflict resolution between local and native edits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from bookmark_sync.config.sync import LAST_WRITER_WINS
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.models.catalog import Bookmark

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConflictSource = Literal["local", "native"]


@dataclass(frozen=True)
class ConflictResolution(Generic[T]):
    value: T
    source: ConflictSource


@dataclass(frozen=True)
class ResolvedBookmark:
    title: str
    url: str
    updated_at: int


def _effective_native_timestamp(local_updated_at: int | None, native_updated_at: int | None) -> int:
    if native_updated_at is not None:
        return native_updated_at
    if local_updated_at is not None:
        return local_updated_at
    return now_ms()


def resolve_field(
    field: str,
    local: T,
    local_updated_at: int | None,
    native: T,
    native_updated_at: int | None,
    policy: str,
) -> ConflictResolution[T]:
    """Pick the local or native value of one field.

    Under any policy other than last-writer-wins the local value is kept.
    Otherwise the native value wins only when its timestamp is strictly newer;
    a missing local timestamp counts as equal to the native one.
    """
    if policy != LAST_WRITER_WINS:
        return ConflictResolution(local, "local")

    native_ts = _effective_native_timestamp(local_updated_at, native_updated_at)
    local_ts = local_updated_at if local_updated_at is not None else native_ts

    source: ConflictSource = "native" if native_ts > local_ts else "local"
    logger.debug(
        "conflict_field_resolved",
        extra={"field": field, "source": source, "local_ts": local_ts, "native_ts": native_ts},
    )
    return ConflictResolution(native if source == "native" else local, source)


def resolve_bookmark_conflict(
    bookmark: Bookmark,
    *,
    title: str | None,
    url: str | None,
    updated_at: int | None,
    policy: str,
) -> ResolvedBookmark:
    """Resolve title and url of ``bookmark`` against a native change.

    A native value that is missing falls back to the local one.
    """
    local_ts = bookmark.updated_at
    resolved_title = resolve_field(
        "title",
        bookmark.title,
        local_ts,
        title if title is not None else bookmark.title,
        updated_at,
        policy,
    )
    resolved_url = resolve_field(
        "url",
        bookmark.url,
        local_ts,
        url if url is not None else bookmark.url,
        updated_at,
        policy,
    )
    if "native" in (resolved_title.source, resolved_url.source):
        aggregate_ts = _effective_native_timestamp(local_ts, updated_at)
    else:
        aggregate_ts = bookmark.updated_at
    return ResolvedBookmark(
        title=resolved_title.value, url=resolved_url.value, updated_at=aggregate_ts
    )
