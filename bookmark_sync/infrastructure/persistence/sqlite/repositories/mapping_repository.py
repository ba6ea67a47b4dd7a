"""SQLite implementation of the mapping store.

Mappings correlate native bookmark tree node ids with local catalog ids.
The same table is written by the catalog repository inside its own
transactions, so the row helpers here are plain synchronous functions.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from bookmark_sync.config.sync import SyncSettings
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.db.models import MappingModel, SettingModel
from bookmark_sync.domain.exceptions import ValidationError
from bookmark_sync.domain.models.mapping import Mapping, NodeType
from bookmark_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

logger = logging.getLogger(__name__)

SYNC_SETTINGS_KEY = "bookmark_sync"


def _ensure_trimmed(value: Any, label: str) -> str:
    if not isinstance(value, str):
        msg = f"{label} must be a string"
        raise ValidationError(msg, {"field": label})
    trimmed = value.strip()
    if not trimmed:
        msg = f"{label} must not be empty"
        raise ValidationError(msg, {"field": label})
    return trimmed


def _optional_trimmed(value: Any, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        msg = f"{label} must be a string"
        raise ValidationError(msg, {"field": label})
    return value.strip() or None


def _ensure_node_type(value: Any) -> NodeType:
    try:
        return NodeType(value)
    except ValueError:
        msg = 'node_type must be "bookmark" or "folder"'
        raise ValidationError(msg, {"node_type": str(value)}) from None


def _ensure_timestamp(value: Any) -> int:
    if not value:
        return now_ms()
    if isinstance(value, bool) or not isinstance(value, int | float) or not math.isfinite(value):
        msg = "last_sync_at must be a finite number"
        raise ValidationError(msg, {"last_sync_at": repr(value)})
    return int(value)


def normalize_mapping(mapping: Mapping) -> Mapping:
    """Validate and trim a mapping before it is written.

    Raises:
        ValidationError: on empty ids, an unknown node type, a bookmark mapping
            without ``local_id`` or a non-finite timestamp.
    """
    node_type = _ensure_node_type(mapping.node_type)
    local_id = _optional_trimmed(mapping.local_id, "local_id")
    if node_type is NodeType.FOLDER:
        local_id = None
    elif local_id is None:
        msg = "bookmark mappings require local_id"
        raise ValidationError(msg, {"native_id": str(mapping.native_id)})

    return Mapping(
        native_id=_ensure_trimmed(mapping.native_id, "native_id"),
        local_id=local_id,
        node_type=node_type,
        board_id=_optional_trimmed(mapping.board_id, "board_id"),
        category_id=_optional_trimmed(mapping.category_id, "category_id"),
        last_sync_at=_ensure_timestamp(mapping.last_sync_at),
        inherited=bool(mapping.inherited) and node_type is NodeType.FOLDER,
    )


def row_to_mapping(row: MappingModel) -> Mapping:
    return Mapping(
        native_id=row.native_id,
        local_id=row.local_id,
        node_type=NodeType(row.node_type),
        board_id=row.board_id,
        category_id=row.category_id,
        last_sync_at=row.last_sync_at,
        inherited=bool(row.inherited),
    )


def put_mapping_row(mapping: Mapping) -> None:
    """Upsert an already-normalized mapping. Must run inside a bound session."""
    MappingModel.insert(
        native_id=mapping.native_id,
        local_id=mapping.local_id,
        node_type=NodeType(mapping.node_type).value,
        board_id=mapping.board_id,
        category_id=mapping.category_id,
        last_sync_at=mapping.last_sync_at,
        inherited=mapping.inherited,
    ).on_conflict_replace().execute()


def delete_mapping_rows(native_ids: list[str]) -> int:
    if not native_ids:
        return 0
    return MappingModel.delete().where(MappingModel.native_id.in_(native_ids)).execute()


class SqliteMappingRepository(SqliteBaseRepository):
    """Mapping and sync-settings persistence."""

    def __init__(self, session_manager: Any, defaults: SyncSettings | None = None) -> None:
        super().__init__(session_manager)
        self._defaults = defaults or SyncSettings()

    async def async_put(self, mapping: Mapping) -> Mapping:
        record = normalize_mapping(mapping)
        await self._execute(put_mapping_row, record, operation_name="put_mapping")
        return Mapping(**vars(record))

    async def async_put_many(self, mappings: list[Mapping]) -> int:
        records = [normalize_mapping(mapping) for mapping in mappings]

        def _write() -> int:
            for record in records:
                put_mapping_row(record)
            return len(records)

        return await self._transaction(_write, operation_name="put_mappings")

    async def async_get_by_native_id(self, native_id: str) -> Mapping | None:
        key = _ensure_trimmed(native_id, "native_id")

        def _query() -> Mapping | None:
            row = MappingModel.get_or_none(MappingModel.native_id == key)
            return row_to_mapping(row) if row else None

        return await self._execute(_query, operation_name="get_mapping", read_only=True)

    async def async_get_all_by_local_id(self, local_id: str) -> list[Mapping]:
        """All mappings pointing at one local bookmark, most recently synced first.

        Deduplicated imports can correlate several native nodes with one bookmark.
        """
        key = _ensure_trimmed(local_id, "local_id")

        def _query() -> list[Mapping]:
            rows = (
                MappingModel.select()
                .where(MappingModel.local_id == key)
                .order_by(MappingModel.last_sync_at.desc(), MappingModel.native_id)
            )
            return [row_to_mapping(row) for row in rows]

        return await self._execute(_query, operation_name="get_mappings_by_local", read_only=True)

    async def async_delete_by_native_id(self, native_id: str) -> bool:
        key = _ensure_trimmed(native_id, "native_id")
        deleted = await self._execute(
            delete_mapping_rows, [key], operation_name="delete_mapping"
        )
        return bool(deleted)

    async def async_list_by_node_type(self, node_type: NodeType | str) -> list[Mapping]:
        kind = _ensure_node_type(node_type)

        def _query() -> list[Mapping]:
            rows = MappingModel.select().where(MappingModel.node_type == kind.value)
            return [row_to_mapping(row) for row in rows]

        return await self._execute(_query, operation_name="list_mappings_by_type", read_only=True)

    async def async_list_all(self) -> list[Mapping]:
        def _query() -> list[Mapping]:
            return [row_to_mapping(row) for row in MappingModel.select()]

        return await self._execute(_query, operation_name="list_mappings", read_only=True)

    async def async_find_folder(
        self, board_id: str, category_id: str | None = None
    ) -> Mapping | None:
        """The folder standing for ``(board_id, category_id)``, oldest first.

        Folders that only inherit the placement from an ancestor never match.
        """

        def _query() -> Mapping | None:
            category_clause = (
                MappingModel.category_id.is_null(True)
                if category_id is None
                else MappingModel.category_id == category_id
            )
            row = (
                MappingModel.select()
                .where(
                    MappingModel.node_type == NodeType.FOLDER.value,
                    MappingModel.board_id == board_id,
                    category_clause,
                    MappingModel.inherited == False,  # noqa: E712
                )
                .order_by(MappingModel.last_sync_at, MappingModel.native_id)
                .first()
            )
            return row_to_mapping(row) if row else None

        return await self._execute(_query, operation_name="find_folder_mappings", read_only=True)

    async def async_clear(self) -> int:
        def _clear() -> int:
            return MappingModel.delete().execute()

        return await self._execute(_clear, operation_name="clear_mappings")

    async def async_get_sync_settings(self) -> SyncSettings:
        """Stored overrides merged over the configured defaults."""

        def _query() -> dict[str, Any] | None:
            row = SettingModel.get_or_none(SettingModel.key == SYNC_SETTINGS_KEY)
            return dict(row.value) if row and isinstance(row.value, dict) else None

        stored = await self._execute(_query, operation_name="get_sync_settings", read_only=True)
        merged = {**self._defaults.model_dump(), **(stored or {})}
        try:
            return SyncSettings.model_validate(merged)
        except PydanticValidationError as exc:
            logger.warning(
                "sync_settings_invalid_stored_values",
                extra={"error": str(exc), "stored_keys": sorted(stored or {})},
            )
            return self._defaults.model_copy()

    async def async_save_sync_settings(
        self, changes: dict[str, Any] | None = None, **kwargs: Any
    ) -> SyncSettings:
        """Merge a partial update into the current settings and persist the result.

        Raises:
            ValidationError: if the merged settings are invalid.
        """
        current = await self.async_get_sync_settings()
        update = {**(changes or {}), **kwargs}
        unknown = set(update) - set(SyncSettings.model_fields)
        if unknown:
            msg = f"Unknown sync settings: {', '.join(sorted(unknown))}"
            raise ValidationError(msg, {"unknown": sorted(unknown)})
        try:
            next_settings = SyncSettings.model_validate({**current.model_dump(), **update})
        except PydanticValidationError as exc:
            msg = f"Invalid sync settings: {exc}"
            raise ValidationError(msg) from exc

        payload = next_settings.model_dump()

        def _save() -> None:
            SettingModel.insert(
                key=SYNC_SETTINGS_KEY, value=payload, updated_at=now_ms()
            ).on_conflict(
                conflict_target=[SettingModel.key],
                update={SettingModel.value: payload, SettingModel.updated_at: now_ms()},
            ).execute()

        await self._execute(_save, operation_name="save_sync_settings")
        logger.info("sync_settings_saved", extra={"changed": sorted(update)})
        return next_settings


__all__ = [
    "SqliteMappingRepository",
    "delete_mapping_rows",
    "normalize_mapping",
    "put_mapping_row",
    "row_to_mapping",
]
