"""SQLite repository adapters for the catalog and mapping stores."""

from bookmark_sync.infrastructure.persistence.sqlite.repositories.catalog_repository import (
    SqliteCatalogRepository,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories.mapping_repository import (
    SqliteMappingRepository,
)

__all__ = ["SqliteCatalogRepository", "SqliteMappingRepository"]
