# =============================================================================
# lifedash_core/offline/context.py
# Sync Context - Wiring and Lifecycle of the Offline Core
# =============================================================================
"""
SyncContext - one object that owns every piece of the offline core.

Built once at startup and handed to whatever needs it; nothing in the core
lives in module-level globals.

Lifecycle:
    start()  -> create tables, derive connectivity, start periodic drains,
                drain + reconcile if already online
    online   -> toast, drain now, reconcile after the stabilization delay
    offline  -> toast only
    stop()   -> stop timers, let running drains finish, close storage
"""

from __future__ import annotations
import asyncio
from typing import List, Optional
import logging

from lifedash_core.config import SyncSettings, load_settings
from lifedash_core.data.remote_store import IdentityProvider, RemoteStore
from lifedash_core.data.supabase_client import (
    SupabaseIdentityProvider,
    SupabaseRemoteStore,
    create_supabase_client,
)
from lifedash_core.errors import ErrorContext
from lifedash_core.logging import setup_logging
from lifedash_core.notifications import LoggingNotifier, Notifier, SUCCESS, WARNING
from lifedash_core.offline.conflict_resolver import ConflictResolver, ReconcileReport
from lifedash_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from lifedash_core.offline.drafts import AutoSaver, DraftStore
from lifedash_core.offline.local_database import LocalDatabase
from lifedash_core.offline.record_locks import RecordLocks
from lifedash_core.offline.status import SyncStatusReporter
from lifedash_core.offline.sync_engine import SyncEngine
from lifedash_core.offline.sync_queue import SyncQueue
from lifedash_core.offline.unified_data_service import UnifiedDataService

logger = logging.getLogger(__name__)


class SyncContext:
    """
    Owns the local store, sync queue, connectivity flag and the services
    built on them.

    Usage:
        async with await build_sync_context() as ctx:
            await ctx.data_service.create_with_offline("tasks", {"title": "Buy milk"})
    """

    def __init__(
        self,
        settings: SyncSettings,
        remote: RemoteStore,
        identity: IdentityProvider,
        notifier: Optional[Notifier] = None,
        local_db: Optional[LocalDatabase] = None,
    ):
        self.settings = settings
        self.remote = remote
        self.identity = identity
        self.notifier = notifier or LoggingNotifier()

        self.local_db = local_db or LocalDatabase(
            settings.db_path,
            settings.local_collections,
            outbox_table=settings.outbox_table,
        )
        self.queue = SyncQueue(self.local_db)
        self.locks = RecordLocks()
        self.connection = ConnectionManager(
            reachability_hosts=settings.reachability_hosts,
            supabase_url=settings.supabase_url,
            connection_timeout=settings.connection_timeout,
        )
        self.engine = SyncEngine(
            self.local_db,
            self.queue,
            remote,
            identity,
            self.connection,
            notifier=self.notifier,
            max_retry_attempts=settings.max_retry_attempts,
            sync_interval=settings.sync_interval_seconds,
            temp_id_prefix=settings.temp_id_prefix,
            locks=self.locks,
        )
        self.resolver = ConflictResolver(
            self.local_db,
            remote,
            identity,
            notifier=self.notifier,
            tolerance_seconds=settings.conflict_tolerance_seconds,
            temp_id_prefix=settings.temp_id_prefix,
        )
        self.data_service = UnifiedDataService(
            self.local_db,
            self.queue,
            remote,
            identity,
            self.connection,
            temp_id_prefix=settings.temp_id_prefix,
            owner_column=settings.owner_column,
            locks=self.locks,
        )
        self.drafts = DraftStore(self.local_db, settings.drafts_collection)
        self.autosaver = AutoSaver(
            self.drafts,
            interval=settings.autosave_interval_seconds,
            notifier=self.notifier,
        )
        self.status = SyncStatusReporter(self.connection, self.queue)

        self._reconcile_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self, probe: bool = True, online: Optional[bool] = None) -> None:
        """
        Bring the core up.

        Args:
            probe: Derive the initial connectivity with a reachability check
            online: Known initial connectivity (skips the probe)

        Raises:
            StorageUnavailable: If the local database cannot be opened
        """
        if self._started:
            return

        await self.local_db.initialize()
        await self.engine.refresh_pending_count()

        # Initial state is set before the transition handler is attached,
        # so startup does not toast "Back online!"
        if online is not None:
            self.connection.set_online(online)
        elif probe:
            await self.connection.probe()
        await self.status.refresh()

        self.connection.register_callback(self._on_connection_change)
        self.engine.start()
        self._started = True
        logger.info(
            f"Sync context started. Online: {self.connection.is_online}, "
            f"pending: {self.engine.pending_count}"
        )

        if self.connection.is_online:
            self.engine.request_drain()
            self.schedule_reconciliation()

    async def stop(self) -> None:
        """Stop background work and close the local database."""
        if not self._started:
            return
        self.connection.unregister_callback(self._on_connection_change)
        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
        await self.autosaver.disable_all()
        await self.engine.stop()
        await self.local_db.close()
        self._started = False
        logger.info("Sync context stopped")

    async def __aenter__(self) -> SyncContext:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.stop()
        return False

    # =========================================================================
    # CONNECTIVITY TRANSITIONS
    # =========================================================================

    def _on_connection_change(self, state: ConnectionState) -> None:
        if state.status is ConnectionStatus.ONLINE:
            self.notifier.notify("Back online! Syncing...", SUCCESS)
            self.engine.request_drain()
            self.schedule_reconciliation()
        else:
            self.notifier.notify("You are offline. Changes will sync when reconnected.", WARNING)

    def schedule_reconciliation(self) -> Optional[asyncio.Task]:
        """
        Run the conflict sweep after the stabilization delay.

        A sweep already waiting or running absorbs further requests.
        """
        if self._reconcile_task is not None and not self._reconcile_task.done():
            return self._reconcile_task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Reconciliation requested outside the event loop")
            return None
        self._reconcile_task = loop.create_task(self._reconcile_after_delay())
        return self._reconcile_task

    async def _reconcile_after_delay(self) -> Optional[List[ReconcileReport]]:
        await asyncio.sleep(self.settings.stabilization_delay_seconds)
        if not self.connection.is_online:
            logger.debug("Went offline before reconciliation; skipping sweep")
            return None
        async with ErrorContext("Reconciling local data", notifier=self.notifier):
            return await self.resolver.reconcile_all(self.settings.collections)
        return None


async def build_sync_context(
    settings: Optional[SyncSettings] = None,
    notifier: Optional[Notifier] = None,
    configure_logging: bool = True,
) -> SyncContext:
    """
    Wire a SyncContext to Supabase (not started yet).

    Args:
        settings: Settings to use (default: load_settings())
        notifier: Where user notices go (default: the log)
        configure_logging: Set up logging from the settings first

    Raises:
        ConfigurationError: If Supabase credentials are missing
    """
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(
            level=settings.log_level,
            log_to_file=settings.log_to_file,
            log_dir=settings.log_dir,
        )
    client = await create_supabase_client(settings)
    return SyncContext(
        settings,
        remote=SupabaseRemoteStore(client, owner_column=settings.owner_column),
        identity=SupabaseIdentityProvider(client),
        notifier=notifier,
    )
