"""Facade wiring the gateway, stores, guards and both sync directions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bookmark_sync.adapters.native.gateway import NativeTreeGateway
from bookmark_sync.config.settings import AppConfig, load_config
from bookmark_sync.config.sync import SyncEngineConfig, SyncSettings
from bookmark_sync.core.logging_utils import setup_logging_from_config
from bookmark_sync.db.session import DatabaseSessionManager
from bookmark_sync.infrastructure.messaging.event_bus import EventBus
from bookmark_sync.infrastructure.persistence.sqlite.repositories.catalog_repository import (
    SqliteCatalogRepository,
)
from bookmark_sync.infrastructure.persistence.sqlite.repositories.mapping_repository import (
    SqliteMappingRepository,
)
from bookmark_sync.sync.guards import ReentrancyGuard
from bookmark_sync.sync.inbound import InboundSyncEngine
from bookmark_sync.sync.initial_import import ImportResult, InitialImporter
from bookmark_sync.sync.outbound import OutboundSyncEngine
from bookmark_sync.sync.queue import RetryQueue
from bookmark_sync.sync.state import SyncState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.adapters.native.protocols import BookmarksApi
    from bookmark_sync.sync.protocols import CatalogStore, MappingStore

logger = logging.getLogger(__name__)

_INITIALIZE_KEY = "initialize"


class SyncEngine:
    """One bidirectional sync instance: shared state plus both engines.

    Example:
        ```python
        engine = SyncEngine.create(api=host_bookmarks, db_path="/data/bookmarks.db")
        await engine.save_sync_settings(enable_bidirectional=True)
        await engine.initial_import()
        await engine.initialize_bookmark_sync()
        ...
        await engine.shutdown()
        ```
    """

    def __init__(
        self,
        *,
        catalog: CatalogStore,
        mappings: MappingStore,
        gateway: NativeTreeGateway,
        event_bus: EventBus | None = None,
        engine_config: SyncEngineConfig | None = None,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        session: DatabaseSessionManager | None = None,
    ) -> None:
        config = engine_config or SyncEngineConfig()
        timing: dict[str, Any] = {}
        if clock is not None:
            timing["clock"] = clock
        if sleep is not None:
            timing["sleep"] = sleep

        self.catalog = catalog
        self.mappings = mappings
        self.gateway = gateway
        self.event_bus = event_bus
        self.config = config
        self.state = SyncState(guard_ttl=config.guard_ttl_sec)
        self._session = session
        self._lifecycle = ReentrancyGuard("sync_lifecycle", config.guard_ttl_sec)

        inbound_queue = RetryQueue(
            "inbound",
            max_age_ms=int(config.max_task_age_sec * 1000),
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
            **timing,
        )
        outbound_queue = RetryQueue(
            "outbound",
            max_age_ms=int(config.max_task_age_sec * 1000),
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
            retry_enabled=config.outbound_retry_enabled,
            batch_size=config.outbound_batch_size,
            batch_delay_ms=config.outbound_batch_delay_ms,
            **timing,
        )
        self.inbound = InboundSyncEngine(catalog, mappings, gateway, self.state, inbound_queue)
        self.outbound = OutboundSyncEngine(
            catalog, mappings, gateway, self.state, outbound_queue, event_bus
        )
        self.importer = InitialImporter(
            catalog, mappings, gateway, self.state, yield_every=config.import_yield_every
        )

    @classmethod
    def create(
        cls,
        *,
        api: BookmarksApi | None,
        db_path: str | None = None,
        config: AppConfig | None = None,
        event_bus: EventBus | None = None,
        configure_logging: bool = False,
        **kwargs: Any,
    ) -> SyncEngine:
        """Build an engine backed by one SQLite database file.

        ``config`` defaults to :func:`load_config`; ``db_path`` overrides its
        database path. With ``configure_logging`` the process-wide JSON logging
        is set up from the runtime config.
        """
        app_config = config or load_config()
        if configure_logging:
            setup_logging_from_config(app_config.runtime)
        session = DatabaseSessionManager(
            path=db_path or app_config.runtime.db_path,
            operation_timeout=app_config.runtime.db_operation_timeout_sec,
        )
        session.migrate()
        bus = event_bus or EventBus()
        return cls(
            catalog=SqliteCatalogRepository(session, bus),
            mappings=SqliteMappingRepository(session, app_config.sync_defaults.to_settings()),
            gateway=NativeTreeGateway(api),
            event_bus=bus,
            engine_config=app_config.sync_engine,
            session=session,
            **kwargs,
        )

    async def get_sync_settings(self) -> SyncSettings:
        return await self.mappings.async_get_sync_settings()

    async def save_sync_settings(
        self, changes: dict[str, Any] | None = None, **kwargs: Any
    ) -> SyncSettings:
        return await self.mappings.async_save_sync_settings(changes, **kwargs)

    async def initialize_bookmark_sync(
        self, settings: SyncSettings | dict[str, Any] | None = None
    ) -> None:
        """Ensure the mirror root exists and start both sync directions.

        Passed ``settings`` are persisted first. A no-op while sync is
        disabled; concurrent calls share one initialization.
        """
        if settings is not None:
            payload = settings.model_dump() if isinstance(settings, SyncSettings) else settings
            current = await self.mappings.async_save_sync_settings(payload)
        else:
            current = await self.mappings.async_get_sync_settings()

        if not current.enable_bidirectional:
            logger.info("bookmark_sync_disabled")
            return

        async def _initialize() -> None:
            await self.state.ensure_mirror_root(self.gateway, current.mirror_root_name)
            self.inbound.start()
            self.outbound.start()
            logger.info(
                "bookmark_sync_initialized",
                extra={"native_id": self.state.mirror_root_id},
            )

        await self._lifecycle.run(_INITIALIZE_KEY, _initialize)

    async def initial_import(self, import_folder_hierarchy: bool | None = None) -> ImportResult:
        return await self.importer.run(import_folder_hierarchy=import_folder_hierarchy)

    async def wait_idle(self) -> None:
        """Wait until both queues are drained, including echoes between them."""
        while True:
            await self.inbound.wait_idle()
            await self.outbound.wait_idle()
            if not (self.inbound.queue.processing or self.outbound.queue.processing):
                return

    async def shutdown(self) -> None:
        await self.inbound.stop()
        await self.outbound.stop()
        self.state.reset()
        self._lifecycle.clear()
        if self._session is not None:
            self._session.close()
        logger.info("bookmark_sync_shutdown")
