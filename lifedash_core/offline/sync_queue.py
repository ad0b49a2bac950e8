# =============================================================================
# lifedash_core/offline/sync_queue.py
# Durable Queue of Pending Remote Mutations
# =============================================================================
"""
SyncQueue - ordered, durable list of mutations not yet confirmed remotely.

An entry exists exactly as long as its mutation has not been applied to
Supabase. It is created with retry_count 0, only ever has its retry_count
bumped, and is removed when replay succeeds or the retry ceiling is passed.
"""

from __future__ import annotations
from typing import Any, Callable, List, Optional
import logging

import pandas as pd

from lifedash_core.offline.local_database import LocalDatabase
from lifedash_core.offline.operations import (
    Mutation,
    OutboxEntry,
    mutation_from_row,
    mutation_to_row,
    with_record_id,
)

logger = logging.getLogger(__name__)


class SyncQueue:
    """
    Outbox stored in the local database's sync_queue table.

    Usage:
        queue = SyncQueue(local_db)
        entry = await queue.enqueue("tasks", Create(record))
        for entry in await queue.pending():
            ...
    """

    def __init__(self, local_db: LocalDatabase):
        self._local_db = local_db
        self._listeners: List[Callable[[int], None]] = []
        self._on_enqueue: Optional[Callable[[OutboxEntry], None]] = None

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, listener: Callable[[int], None]) -> None:
        """Call ``listener(pending_count)`` after every size change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[int], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_enqueue_hook(self, hook: Optional[Callable[[OutboxEntry], None]]) -> None:
        """Hook run after each enqueue (the sync engine uses it to kick a drain)."""
        self._on_enqueue = hook

    async def _notify_size_change(self) -> None:
        if not self._listeners:
            return
        size = await self.count()
        for listener in self._listeners:
            try:
                listener(size)
            except Exception as e:
                logger.error(f"Error in sync queue listener: {e}")

    # =========================================================================
    # QUEUE OPERATIONS
    # =========================================================================

    async def enqueue(self, collection: str, mutation: Mutation) -> OutboxEntry:
        """
        Append a mutation with retry_count 0.

        Raises:
            StorageUnavailable: If the entry could not be persisted
        """
        operation, record_id, payload = mutation_to_row(mutation)
        row = await self._local_db.queue_sync(operation, collection, record_id, payload)
        entry = self._entry_from_row(row)
        logger.info(f"Queued {entry.describe()}")

        await self._notify_size_change()
        if self._on_enqueue is not None:
            self._on_enqueue(entry)
        return entry

    async def pending(self, collection: Optional[str] = None) -> List[OutboxEntry]:
        """Pending entries in enqueue order."""
        rows = await self._local_db.get_pending_sync(collection)
        entries = []
        for row in rows:
            try:
                entries.append(self._entry_from_row(row))
            except ValueError as e:
                logger.error(f"Skipping unreadable sync queue row #{row['id']}: {e}")
        return entries

    async def record_failure(self, entry: OutboxEntry, error: str) -> OutboxEntry:
        """Persist retry_count + 1 and return the updated entry."""
        retry_count = entry.retry_count + 1
        await self._local_db.mark_sync_failed(entry.seq, retry_count, error)
        return OutboxEntry(
            seq=entry.seq,
            collection=entry.collection,
            mutation=entry.mutation,
            enqueued_at=entry.enqueued_at,
            retry_count=retry_count,
            last_error=error,
        )

    async def remove(self, entry: OutboxEntry) -> None:
        await self._local_db.remove_sync(entry.seq)
        await self._notify_size_change()

    async def count(self) -> int:
        return await self._local_db.get_pending_count()

    async def has_pending(self, collection: str, record_id: Any) -> bool:
        """True if any queued mutation targets this record."""
        return await self._local_db.get_pending_count(collection, str(record_id)) > 0

    async def rewrite_record_id(self, collection: str, old_id: Any, new_id: Any) -> int:
        """
        Point queued mutations for ``old_id`` at ``new_id``.

        Used once a temp-id record's create lands and Supabase assigns the
        real id; later updates/deletes then replay against the real row.

        Returns:
            Number of entries rewritten
        """
        rewritten = 0
        for entry in await self.pending(collection):
            if str(entry.record_id) != str(old_id):
                continue
            _, record_id, payload = mutation_to_row(with_record_id(entry.mutation, new_id))
            await self._local_db.replace_sync_data(entry.seq, record_id, payload)
            rewritten += 1

        if rewritten:
            logger.debug(f"Rewrote {rewritten} queued {collection} entries: {old_id} -> {new_id}")
        return rewritten

    async def to_dataframe(self) -> pd.DataFrame:
        """Queue contents for the sync status page."""
        entries = await self.pending()
        return pd.DataFrame(
            [
                {
                    "seq": e.seq,
                    "operation": e.operation.value,
                    "collection": e.collection,
                    "record_id": e.record_id,
                    "enqueued_at": e.enqueued_at,
                    "retry_count": e.retry_count,
                    "last_error": e.last_error,
                }
                for e in entries
            ],
            columns=["seq", "operation", "collection", "record_id", "enqueued_at", "retry_count", "last_error"],
        )

    @staticmethod
    def _entry_from_row(row) -> OutboxEntry:
        return OutboxEntry(
            seq=row["id"],
            collection=row["table"],
            mutation=mutation_from_row(row["operation"], row["record_id"], row["data"]),
            enqueued_at=row["created_at"],
            retry_count=row["attempts"] or 0,
            last_error=row.get("error_message"),
        )
