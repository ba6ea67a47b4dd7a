from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

logger = logging.getLogger(__name__)

LAST_WRITER_WINS = "last-writer-wins"
DEFAULT_MIRROR_ROOT_NAME = "Link-O-Saurus"


def _parse_bool(value: Any, default: bool) -> bool:
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    msg = f"Invalid boolean value: {value!r}"
    raise ValueError(msg)


class SyncSettings(BaseModel):
    """User-facing sync switches, persisted next to the mapping table.

    ``conflict_policy`` is an open string on purpose: only
    ``"last-writer-wins"`` is defined, any other value makes local edits win.
    """

    model_config = ConfigDict(validate_assignment=True)

    enable_bidirectional: bool = False
    mirror_root_name: str = DEFAULT_MIRROR_ROOT_NAME
    import_folder_hierarchy: bool = True
    conflict_policy: str = LAST_WRITER_WINS
    delete_behavior: Literal["delete", "archive"] = "delete"

    @field_validator("mirror_root_name", mode="before")
    @classmethod
    def _validate_mirror_root_name(cls, value: Any) -> str:
        name = str(value or "").strip()
        if not name:
            msg = "Mirror root name cannot be empty"
            raise ValueError(msg)
        if len(name) > 200:
            msg = "Mirror root name is too long"
            raise ValueError(msg)
        return name

    @field_validator("conflict_policy", mode="before")
    @classmethod
    def _validate_conflict_policy(cls, value: Any) -> str:
        policy = str(value or LAST_WRITER_WINS).strip().lower()
        if policy != LAST_WRITER_WINS:
            logger.info("sync_conflict_policy_local_wins", extra={"policy": policy})
        return policy

    @field_validator("delete_behavior", mode="before")
    @classmethod
    def _normalize_delete_behavior(cls, value: Any) -> str:
        return str(value or "delete").strip().lower()


class SyncDefaultsConfig(BaseModel):
    """Defaults for :class:`SyncSettings`, read from the environment."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enable_bidirectional: bool = Field(default=False, validation_alias="BOOKMARK_SYNC_ENABLED")
    mirror_root_name: str = Field(
        default=DEFAULT_MIRROR_ROOT_NAME, validation_alias="BOOKMARK_SYNC_MIRROR_ROOT_NAME"
    )
    import_folder_hierarchy: bool = Field(
        default=True, validation_alias="BOOKMARK_SYNC_IMPORT_FOLDER_HIERARCHY"
    )
    conflict_policy: str = Field(
        default=LAST_WRITER_WINS, validation_alias="BOOKMARK_SYNC_CONFLICT_POLICY"
    )
    delete_behavior: str = Field(default="delete", validation_alias="BOOKMARK_SYNC_DELETE_BEHAVIOR")

    @field_validator("enable_bidirectional", "import_folder_hierarchy", mode="before")
    @classmethod
    def _parse_bool_fields(cls, value: Any, info: ValidationInfo) -> bool:
        default = cls.model_fields[info.field_name].default
        return _parse_bool(value, default)

    @field_validator("delete_behavior", mode="before")
    @classmethod
    def _validate_delete_behavior(cls, value: Any) -> str:
        behavior = str(value or "delete").strip().lower()
        if behavior not in {"delete", "archive"}:
            msg = "Delete behavior must be 'delete' or 'archive'"
            raise ValueError(msg)
        return behavior

    def to_settings(self) -> SyncSettings:
        return SyncSettings(
            enable_bidirectional=self.enable_bidirectional,
            mirror_root_name=self.mirror_root_name,
            import_folder_hierarchy=self.import_folder_hierarchy,
            conflict_policy=self.conflict_policy,
            delete_behavior=self.delete_behavior,
        )


class SyncEngineConfig(BaseModel):
    """Timing and batching knobs of the sync engines."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    guard_ttl_sec: float = Field(default=10.0, validation_alias="SYNC_GUARD_TTL_SEC")
    max_task_age_sec: float = Field(default=300.0, validation_alias="SYNC_MAX_TASK_AGE_SEC")
    retry_base_delay_ms: int = Field(default=200, validation_alias="SYNC_RETRY_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(default=5000, validation_alias="SYNC_RETRY_MAX_DELAY_MS")
    outbound_batch_size: int = Field(default=50, validation_alias="SYNC_OUTBOUND_BATCH_SIZE")
    outbound_batch_delay_ms: int = Field(
        default=75, validation_alias="SYNC_OUTBOUND_BATCH_DELAY_MS"
    )
    outbound_retry_enabled: bool = Field(
        default=True, validation_alias="SYNC_OUTBOUND_RETRY_ENABLED"
    )
    import_yield_every: int = Field(default=500, validation_alias="SYNC_IMPORT_YIELD_EVERY")

    @field_validator("guard_ttl_sec", "max_task_age_sec", mode="before")
    @classmethod
    def _validate_positive_float(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a number"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be positive"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "retry_base_delay_ms",
        "retry_max_delay_ms",
        "outbound_batch_size",
        "import_yield_every",
        mode="before",
    )
    @classmethod
    def _validate_positive_int(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be positive"
            raise ValueError(msg)
        return parsed

    @field_validator("outbound_batch_delay_ms", mode="before")
    @classmethod
    def _validate_batch_delay(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 75))
        except ValueError as exc:
            msg = "Outbound batch delay must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 60_000:
            msg = "Outbound batch delay must be between 0 and 60000 ms"
            raise ValueError(msg)
        return parsed

    @field_validator("outbound_retry_enabled", mode="before")
    @classmethod
    def _parse_retry_flag(cls, value: Any) -> bool:
        return _parse_bool(value, True)
