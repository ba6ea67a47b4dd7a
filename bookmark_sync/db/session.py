"""Database session management for the catalog and mapping tables.

``DatabaseSessionManager`` owns the SQLite connection and runs blocking
Peewee calls on a worker thread with:
- a per-operation timeout
- retries with exponential backoff while the database is locked or busy
- a single application-level writer lock (SQLite allows one writer)
- explicit transactions for multi-row writes that must land together
- models bound to this session's database only while an operation runs, so
  several sessions can live in one process
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from bookmark_sync.db.models import ALL_MODELS, MappingModel

DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3

# Model binding is process-wide while active, so every bound section is serialized.
_MODEL_BINDING_LOCK = threading.RLock()


class RowSqliteDatabase(SqliteExtDatabase):
    """SQLite database subclass that configures the row factory for dict-like access."""

    def _connect(self) -> sqlite3.Connection:
        conn = super()._connect()
        conn.row_factory = sqlite3.Row
        return conn


@dataclass
class DatabaseSessionManager:
    """Peewee-backed session manager shared by every sqlite repository.

    Attributes:
        path: Path to the SQLite database file
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries for locked/busy database errors
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _write_lock: asyncio.Lock = field(init=False)

    def __post_init__(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = RowSqliteDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
                "foreign_keys": 1,
            },
            check_same_thread=False,
        )
        self._write_lock = asyncio.Lock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        return self._database

    @contextmanager
    def bound(self) -> Iterator[peewee.SqliteDatabase]:
        """Bind every model to this session's database for the enclosed block."""
        with (
            _MODEL_BINDING_LOCK,
            self._database.bind_ctx(ALL_MODELS),
            self._database.connection_context(),
        ):
            yield self._database

    def migrate(self) -> None:
        """Create tables if they do not exist yet and add columns newer code expects."""
        with self.bound():
            self._database.create_tables(ALL_MODELS, safe=True)
            self._ensure_column(MappingModel._meta.table_name, "inherited", "INTEGER DEFAULT 0")
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def _ensure_column(self, table: str, column: str, coltype: str) -> None:
        existing = {col.name for col in self._database.get_columns(table)}
        if column in existing:
            return
        self._database.execute_sql(f"ALTER TABLE {table} ADD COLUMN {column} {coltype}")
        self._logger.info("column_added", extra={"table": table, "column": column})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    async def _safe_db_operation(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute one database operation with timeout and locked-db retries.

        Raises:
            TimeoutError: If the operation times out
            peewee.OperationalError: If the database stays locked after retries
            peewee.IntegrityError: On constraint violations
        """

        def _op_wrapper() -> Any:
            with self.bound():
                return operation(*args, **kwargs)

        async def _run() -> Any:
            if read_only:
                # Readers skip the application writer lock.
                return await asyncio.to_thread(_op_wrapper)
            async with self._write_lock:
                return await asyncio.to_thread(_op_wrapper)

        return await self._run_with_retries(
            _run, timeout=timeout, operation_name=operation_name, kind="db"
        )

    async def _safe_db_transaction(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_transaction",
        **kwargs: Any,
    ) -> Any:
        """Execute ``operation`` inside one atomic transaction.

        Either every write made by ``operation`` is committed or none is.
        """

        def _execute_in_transaction() -> Any:
            with self.bound(), self._database.atomic():
                return operation(*args, **kwargs)

        async def _run() -> Any:
            async with self._write_lock:
                return await asyncio.to_thread(_execute_in_transaction)

        return await self._run_with_retries(
            _run, timeout=timeout, operation_name=operation_name, kind="db_transaction"
        )

    async def _run_with_retries(
        self,
        run: Callable[[], Any],
        *,
        timeout: float | None,
        operation_name: str,
        kind: str,
    ) -> Any:
        if timeout is None:
            timeout = self.operation_timeout

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(run(), timeout=timeout)

            except TimeoutError:
                self._logger.exception(
                    f"{kind}_timeout",
                    extra={"operation": operation_name, "timeout": timeout, "retries": retries},
                )
                raise

            except peewee.IntegrityError as e:
                self._logger.exception(
                    f"{kind}_integrity_error",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise

            except peewee.OperationalError as e:
                error_msg = str(e).lower()
                if ("locked" in error_msg or "busy" in error_msg) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        f"{kind}_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue

                self._logger.exception(
                    f"{kind}_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(e)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        p = Path(path)
        if p.parent == Path("."):
            return p.name
        return f".../{p.parent.name}/{p.name}"
