# =============================================================================
# lifedash_core/offline/status.py
# Observable Sync Status for the Dashboard Indicator
# =============================================================================
"""
SyncStatusReporter - the one "sync state" the rest of the app looks at.

    offline          -> "Offline Mode"
    online, N queued -> "Syncing N item(s)..."
    online, empty    -> "All synced"

Refreshed after every sync queue size change and connectivity transition;
subscribers are called only when the snapshot actually changes.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional
import logging

from lifedash_core.offline.connection_manager import ConnectionManager, ConnectionState
from lifedash_core.offline.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    OFFLINE = "offline"
    SYNCING = "syncing"
    SYNCED = "synced"


@dataclass(frozen=True)
class SyncStatusSnapshot:
    phase: SyncPhase
    pending: int = 0

    @property
    def label(self) -> str:
        if self.phase is SyncPhase.OFFLINE:
            return "Offline Mode"
        if self.phase is SyncPhase.SYNCING:
            return f"Syncing {self.pending} item(s)..."
        return "All synced"


def compute_status(is_online: bool, pending: int) -> SyncStatusSnapshot:
    if not is_online:
        return SyncStatusSnapshot(SyncPhase.OFFLINE, pending)
    if pending > 0:
        return SyncStatusSnapshot(SyncPhase.SYNCING, pending)
    return SyncStatusSnapshot(SyncPhase.SYNCED, 0)


class SyncStatusReporter:
    """
    Usage:
        reporter = SyncStatusReporter(connection, queue)
        reporter.subscribe(lambda snap: print(snap.label))
        await reporter.refresh()
    """

    def __init__(self, connection: ConnectionManager, queue: SyncQueue):
        self._connection = connection
        self._queue = queue
        self._pending = 0
        self._snapshot: Optional[SyncStatusSnapshot] = None
        self._subscribers: List[Callable[[SyncStatusSnapshot], None]] = []

        queue.add_listener(self._on_queue_size_change)
        connection.register_callback(self._on_connection_change)

    @property
    def snapshot(self) -> SyncStatusSnapshot:
        """Current status (no I/O)."""
        return compute_status(self._connection.is_online, self._pending)

    def subscribe(self, callback: Callable[[SyncStatusSnapshot], None]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[SyncStatusSnapshot], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def refresh(self) -> SyncStatusSnapshot:
        """Re-read the queue size and publish."""
        self._pending = await self._queue.count()
        return self._publish()

    def _on_queue_size_change(self, size: int) -> None:
        self._pending = size
        self._publish()

    def _on_connection_change(self, state: ConnectionState) -> None:
        self._publish()

    def _publish(self) -> SyncStatusSnapshot:
        snapshot = self.snapshot
        if snapshot == self._snapshot:
            return snapshot
        self._snapshot = snapshot
        logger.debug(f"Sync status: {snapshot.label}")
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in sync status subscriber: {e}")
        return snapshot
