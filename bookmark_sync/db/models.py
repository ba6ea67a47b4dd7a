"""Peewee ORM models for the catalog, mapping and settings tables."""

from __future__ import annotations

import peewee
from playhouse.sqlite_ext import JSONField

from bookmark_sync.core.time_utils import now_ms

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    class Meta:
        database = database_proxy
        legacy_table_names = False


class BoardModel(BaseModel):
    id = peewee.TextField(primary_key=True)
    title = peewee.TextField()
    sort_order = peewee.IntegerField(default=0)
    created_at = peewee.BigIntegerField(default=now_ms)
    updated_at = peewee.BigIntegerField(default=now_ms)

    class Meta:
        table_name = "boards"


class CategoryModel(BaseModel):
    id = peewee.TextField(primary_key=True)
    board_id = peewee.TextField()
    title = peewee.TextField()
    sort_order = peewee.IntegerField(default=0)

    class Meta:
        table_name = "categories"
        indexes = ((("board_id",), False),)


class BookmarkModel(BaseModel):
    id = peewee.TextField(primary_key=True)
    url = peewee.TextField()
    title = peewee.TextField()
    category_id = peewee.TextField(null=True)
    tags = JSONField(default=list)
    notes = peewee.TextField(null=True)
    visit_count = peewee.IntegerField(default=1)
    created_at = peewee.BigIntegerField(default=now_ms)
    updated_at = peewee.BigIntegerField(default=now_ms)

    class Meta:
        table_name = "bookmarks"
        indexes = (
            (("url",), False),
            (("category_id",), False),
        )


class MappingModel(BaseModel):
    native_id = peewee.TextField(primary_key=True)
    local_id = peewee.TextField(null=True)
    node_type = peewee.TextField()
    board_id = peewee.TextField(null=True)
    category_id = peewee.TextField(null=True)
    last_sync_at = peewee.BigIntegerField(default=now_ms)
    inherited = peewee.BooleanField(default=False)

    class Meta:
        table_name = "bookmark_mappings"
        indexes = (
            (("local_id",), False),
            (("node_type",), False),
            (("node_type", "board_id", "category_id"), False),
        )


class SettingModel(BaseModel):
    """Key/value store for persisted user settings (JSON values)."""

    key = peewee.TextField(primary_key=True)
    value = JSONField(null=True)
    updated_at = peewee.BigIntegerField(default=now_ms)

    class Meta:
        table_name = "sync_settings"


ALL_MODELS: tuple[type[BaseModel], ...] = (
    BoardModel,
    CategoryModel,
    BookmarkModel,
    MappingModel,
    SettingModel,
)
