# =============================================================================
# lifedash_core/offline/sync_engine.py
# Sync Queue Replay Engine
# =============================================================================
"""
SyncEngine - replays queued mutations against Supabase.

Features:
- FIFO replay of the sync queue, one entry at a time
- Bounded retries per entry, then discard with a single error notice
- "Not found" on update/delete replay counts as applied
- Temp ids swapped for Supabase ids once a queued create lands
- Single-flight drains (a trigger during a pass schedules one more pass)
- Periodic drain task while online, status callbacks for the UI
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import logging

from lifedash_core.data.remote_store import IdentityProvider, RemoteStore
from lifedash_core.errors import ErrorContext, RecordNotFoundError, StorageUnavailable
from lifedash_core.logging import LogContext
from lifedash_core.notifications import ERROR, LoggingNotifier, Notifier
from lifedash_core.offline.connection_manager import ConnectionManager
from lifedash_core.offline.local_database import LocalDatabase
from lifedash_core.offline.operations import Create, Delete, OutboxEntry, Update, with_record_id
from lifedash_core.offline.record_locks import RecordLocks
from lifedash_core.offline.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    """What one drain did."""
    started_at: datetime = field(default_factory=datetime.now)
    applied: int = 0
    failed: int = 0       # retried later
    discarded: int = 0    # retry ceiling passed
    deferred: int = 0     # waiting on a create that has not landed yet
    passes: int = 0
    skipped: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.applied + self.failed + self.discarded

    def merge(self, other: DrainReport) -> None:
        self.applied += other.applied
        self.failed += other.failed
        self.discarded += other.discarded
        self.deferred = other.deferred
        self.passes += other.passes
        self.skipped = other.skipped or self.skipped
        self.errors.extend(other.errors)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0
    total_discarded: int = 0


class SyncEngine:
    """
    Drains the sync queue into Supabase.

    Usage:
        engine = SyncEngine(local_db, queue, remote, identity, connection)
        await engine.drain()   # one pass now
        engine.start()         # periodic drains while online
    """

    def __init__(
        self,
        local_db: LocalDatabase,
        queue: SyncQueue,
        remote: RemoteStore,
        identity: IdentityProvider,
        connection: ConnectionManager,
        notifier: Optional[Notifier] = None,
        max_retry_attempts: int = 3,
        sync_interval: float = 30.0,
        temp_id_prefix: str = "temp_",
        locks: Optional[RecordLocks] = None,
    ):
        self._local_db = local_db
        self._queue = queue
        self._remote = remote
        self._identity = identity
        self._connection = connection
        self._notifier = notifier or LoggingNotifier()
        self.max_retry_attempts = max_retry_attempts
        self.sync_interval = sync_interval
        self.temp_id_prefix = temp_id_prefix
        self._locks = locks or RecordLocks()

        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._draining = False
        self._rerun_requested = False
        self._sync_task: Optional[asyncio.Task] = None
        self._triggered: Set[asyncio.Task] = set()

        self._queue.add_listener(self._on_queue_size_change)
        self._queue.set_enqueue_hook(self._on_enqueue)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._draining

    @property
    def pending_count(self) -> int:
        """Last known queue size (refreshed on every size change)."""
        return self._state.pending_count

    def _is_temp_id(self, record_id: Any) -> bool:
        return isinstance(record_id, str) and record_id.startswith(self.temp_id_prefix)

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def _on_queue_size_change(self, size: int) -> None:
        self._state.pending_count = size

    def _on_enqueue(self, entry: OutboxEntry) -> None:
        if self._connection.is_online:
            self.request_drain()

    def request_drain(self) -> Optional[asyncio.Task]:
        """
        Schedule a drain without waiting for it.

        Returns:
            The scheduled task, or None if a pass is already running (it
            will run once more when done) or there is no event loop
        """
        if self._draining:
            self._rerun_requested = True
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Drain requested outside the event loop; will run on the next trigger")
            return None

        task = loop.create_task(self._guarded_drain())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task

    async def _guarded_drain(self) -> Optional[DrainReport]:
        """Background drain: failures are logged and surfaced, never raised."""
        async with ErrorContext("Syncing offline changes", notifier=self._notifier):
            return await self.drain()
        return None

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def drain(self) -> DrainReport:
        """
        Replay every queued mutation once, in enqueue order.

        Returns:
            DrainReport for this drain (including any coalesced re-run)

        Raises:
            StorageUnavailable: If queue bookkeeping cannot be persisted
        """
        if self._draining:
            self._rerun_requested = True
            return DrainReport(skipped="drain already running")
        if not self._connection.is_online:
            return DrainReport(skipped="offline")

        # Flag is set before the first await so overlapping triggers see it
        self._draining = True
        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self._notify_callbacks()

        report = DrainReport()
        try:
            async with LogContext(logger, "Draining sync queue", level=logging.DEBUG):
                report.merge(await self._drain_pass())
                while self._rerun_requested and self._connection.is_online:
                    self._rerun_requested = False
                    report.merge(await self._drain_pass())
        finally:
            self._rerun_requested = False
            self._draining = False
            self._state.is_syncing = False
            self._notify_callbacks()

        if report.attempted:
            logger.info(
                f"Sync complete: {report.applied} applied, {report.failed} failed, "
                f"{report.discarded} discarded"
            )
        return report

    async def _drain_pass(self) -> DrainReport:
        report = DrainReport(passes=1)

        user = await self._identity.get_current_user()
        if user is None:
            report.skipped = "signed out"
            return report

        entries = await self._queue.pending()
        # Temp ids resolved during this pass, and creates that did not land
        id_map: Dict[Tuple[str, str], Any] = {}
        blocked: Set[Tuple[str, str]] = set()

        for entry in entries:
            key = (entry.collection, str(entry.record_id))
            if key in id_map:
                entry = self._retarget(entry, id_map[key])
            elif key in blocked:
                report.deferred += 1
                continue

            try:
                saved = await self._replay(entry, user.id)
            except StorageUnavailable:
                raise
            except Exception as e:
                logger.warning(f"Sync error for {entry.describe()}: {e}")
                report.errors.append(f"{entry.describe()}: {e}")
                if isinstance(entry.mutation, Create) and self._is_temp_id(entry.record_id):
                    blocked.add(key)
                await self._handle_failure(entry, str(e), report)
                continue

            if isinstance(entry.mutation, Create) and saved is not None:
                # Local edits of this record wait until the swap is complete
                async with self._locks.hold(entry.collection, entry.record_id):
                    new_id = await self._adopt_created(entry, saved)
                    await self._queue.remove(entry)
                if new_id is not None:
                    id_map[key] = new_id
            else:
                await self._queue.remove(entry)
            report.applied += 1

        self._state.total_synced += report.applied
        self._state.total_discarded += report.discarded
        self._state.failed_count = report.failed
        if report.failed == 0 and report.discarded == 0:
            self._state.last_sync_success = datetime.now()
        return report

    async def _replay(self, entry: OutboxEntry, owner_id: str) -> Optional[Dict[str, Any]]:
        """Run one mutation against Supabase; returns the inserted row for creates."""
        mutation = entry.mutation
        collection = entry.collection

        if isinstance(mutation, Create):
            payload = dict(mutation.record)
            if self._is_temp_id(payload.get("id")):
                payload.pop("id")
            return await self._remote.insert(collection, payload, owner_id)

        if isinstance(mutation, Update):
            try:
                await self._remote.update(collection, mutation.record_id, mutation.patch, owner_id)
            except RecordNotFoundError:
                logger.debug(f"{entry.describe()}: no remote row, treating as applied")
            return None

        if isinstance(mutation, Delete):
            try:
                await self._remote.delete(collection, mutation.record_id, owner_id)
            except RecordNotFoundError:
                logger.debug(f"{entry.describe()}: already deleted remotely")
            return None

        raise TypeError(f"Unknown mutation in sync queue: {mutation!r}")

    async def _handle_failure(self, entry: OutboxEntry, error: str, report: DrainReport) -> None:
        """Bump the retry count, or discard past the ceiling."""
        retry_count = entry.retry_count + 1
        if retry_count > self.max_retry_attempts:
            await self._queue.remove(entry)
            report.discarded += 1
            logger.error(f"Discarding {entry.describe()} after {retry_count - 1} retries: {error}")
            self._notifier.notify(
                f"Failed to sync {entry.operation.value} after {self.max_retry_attempts} retries",
                ERROR,
            )
            return

        await self._queue.record_failure(entry, error)
        report.failed += 1

    async def _adopt_created(self, entry: OutboxEntry, saved: Dict[str, Any]) -> Any:
        """
        Replace the temp-id local copy with the row Supabase stored.

        Local edits made while the create was queued win over the inserted
        payload; their own queued updates bring Supabase in line. Called
        with the record's lock held.

        Returns:
            The new id if it differs from the queued one, else None
        """
        old_id = entry.record_id
        new_id = saved.get("id")
        collection = entry.collection

        current = await self._local_db.get(collection, old_id) if old_id is not None else None
        if current is not None:
            merged = {**saved, **{k: v for k, v in current.items() if k != "id"}}
            merged["id"] = new_id
            await self._local_db.put(collection, merged)
        if new_id is None or str(new_id) == str(old_id):
            return None

        if current is not None:
            await self._local_db.delete(collection, old_id)
        await self._queue.rewrite_record_id(collection, old_id, new_id)
        self._locks.alias(collection, old_id, new_id)
        logger.info(f"Created {collection}/{new_id} (was {old_id})")
        return new_id

    @staticmethod
    def _retarget(entry: OutboxEntry, new_id: Any) -> OutboxEntry:
        return OutboxEntry(
            seq=entry.seq,
            collection=entry.collection,
            mutation=with_record_id(entry.mutation, new_id),
            enqueued_at=entry.enqueued_at,
            retry_count=entry.retry_count,
            last_error=entry.last_error,
        )

    # =========================================================================
    # PERIODIC SYNC
    # =========================================================================

    def start(self) -> None:
        """Start the periodic drain task on the running loop."""
        if self._sync_task is not None and not self._sync_task.done():
            return
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_loop())
        logger.info(f"Sync engine started (every {self.sync_interval:.0f}s while online)")

    async def stop(self) -> None:
        """Stop periodic drains and let triggered ones finish."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        await self.wait_idle()
        logger.info("Sync engine stopped")

    async def wait_idle(self) -> None:
        """Wait until triggered drains (and their re-runs) have finished."""
        while self._triggered:
            await asyncio.gather(*list(self._triggered), return_exceptions=True)

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            if self._connection.is_online:
                await self._guarded_drain()

    async def refresh_pending_count(self) -> int:
        self._state.pending_count = await self._queue.count()
        return self._state.pending_count

    # =========================================================================
    # CALLBACKS & STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self._state.pending_count,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "total_discarded": self._state.total_discarded,
        }
