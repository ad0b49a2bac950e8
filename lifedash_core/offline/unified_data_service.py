# =============================================================================
# lifedash_core/offline/unified_data_service.py
# Unified Data Service - Single API for Online/Offline Mutations
# =============================================================================
"""
UnifiedDataService - the one call surface domain pages use for writes.

Every mutation is applied to the local store first (optimistic), then:
- Online: attempted against Supabase straight away
- Offline, or the remote call failed: appended to the sync queue

The caller always gets the locally visible record back without waiting
for the remote side. A failed local write raises StorageUnavailable and
nothing is reported as saved.

Usage:
------
task = await service.create_with_offline("tasks", {"title": "Buy milk"})
await service.update_with_offline("tasks", task["id"], {"done": True})
await service.delete_with_offline("tasks", task["id"])
"""

from __future__ import annotations
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from lifedash_core.data.remote_store import CurrentUser, IdentityProvider, RemoteStore
from lifedash_core.errors import RecordNotFoundError, RemoteStoreError, StorageUnavailable
from lifedash_core.offline.connection_manager import ConnectionManager
from lifedash_core.offline.local_database import LocalDatabase
from lifedash_core.offline.operations import Create, Delete, Update
from lifedash_core.offline.record_locks import RecordLocks
from lifedash_core.offline.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UnifiedDataService:
    """
    Optimistic create/update/delete with offline fallback.

    Records created here get a temporary ``temp_<ms>_<random>`` id that can
    never collide with a Supabase id; it is swapped for the real id as soon
    as the insert lands (here when online, or in the sync engine later).
    """

    def __init__(
        self,
        local_db: LocalDatabase,
        queue: SyncQueue,
        remote: RemoteStore,
        identity: IdentityProvider,
        connection: ConnectionManager,
        temp_id_prefix: str = "temp_",
        owner_column: str = "user_id",
        locks: Optional[RecordLocks] = None,
    ):
        self._local_db = local_db
        self._queue = queue
        self._remote = remote
        self._identity = identity
        self._connection = connection
        self.temp_id_prefix = temp_id_prefix
        self.owner_column = owner_column
        self._locks = locks or RecordLocks()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self._connection.is_online

    @property
    def connection_status(self) -> str:
        return self._connection.status.value

    def new_temp_id(self) -> str:
        """Local placeholder id: prefix, epoch millis, 9 random chars."""
        return f"{self.temp_id_prefix}{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def is_temp_id(self, record_id: Any) -> bool:
        return isinstance(record_id, str) and record_id.startswith(self.temp_id_prefix)

    async def _current_user(self, action: str) -> Optional[CurrentUser]:
        user = await self._identity.get_current_user()
        if user is None:
            logger.debug(f"No signed-in user; skipping {action}")
        return user

    async def _must_queue(self, collection: str, record_id: Any) -> bool:
        """
        Records not yet in Supabase, or with mutations still queued, go
        through the queue so replay order matches the order of edits.
        """
        if self.is_temp_id(record_id):
            return True
        return await self._queue.has_pending(collection, record_id)

    async def _is_local_only(self, collection: str, record_id: Any) -> bool:
        """A temp-id record whose create is no longer queued never reaches Supabase."""
        return self.is_temp_id(record_id) and not await self._queue.has_pending(collection, record_id)

    async def _drop_temp_copy(self, collection: str, temp_id: str) -> None:
        try:
            await self._local_db.delete(collection, temp_id)
        except StorageUnavailable as e:
            logger.error(f"Could not remove local copy {collection}/{temp_id}: {e}")

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create_with_offline(self, collection: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Create a record durably regardless of connectivity.

        Args:
            collection: Target collection (e.g. "tasks")
            data: Field values, without an id

        Returns:
            The Supabase row when the online insert succeeded, otherwise the
            temp-id local record; None when nobody is signed in

        Raises:
            StorageUnavailable: If the local write failed
        """
        user = await self._current_user(f"create in {collection}")
        if user is None:
            return None

        temp_id = self.new_temp_id()
        item = {**data, "id": temp_id, "updated_at": utc_now_iso()}
        item.setdefault(self.owner_column, user.id)
        local = await self._local_db.put(collection, item)

        if self.is_online:
            payload = {k: v for k, v in local.items() if k != "id"}
            try:
                saved = await self._remote.insert(collection, payload, user.id)
            except RemoteStoreError as e:
                logger.warning(f"Create in {collection} failed online, queueing: {e}")
            else:
                self._locks.alias(collection, temp_id, saved.get("id"))
                try:
                    await self._local_db.put(collection, saved)
                except StorageUnavailable:
                    # The row is in Supabase; a leftover temp copy would never sync
                    await self._drop_temp_copy(collection, temp_id)
                    raise
                await self._local_db.delete(collection, temp_id)
                return saved

        await self._queue.enqueue(collection, Create(record=local))
        return local

    async def update_with_offline(
        self,
        collection: str,
        record_id: Any,
        patch: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Update a record durably regardless of connectivity.

        The patch is merged into the local copy immediately and stamped with
        a fresh ``updated_at``. A temp id that has since been swapped for a
        Supabase id is followed to the new record.

        Returns:
            The locally visible record; None when nobody is signed in

        Raises:
            StorageUnavailable: If the local write failed
        """
        user = await self._current_user(f"update of {collection}/{record_id}")
        if user is None:
            return None

        async with self._locks.hold(collection, record_id) as record_id:
            now = utc_now_iso()
            current = await self._local_db.get(collection, record_id) or {}
            change = {k: v for k, v in patch.items() if k != "id"}
            change["updated_at"] = now
            stored = await self._local_db.put(collection, {**current, **change, "id": record_id})

            if await self._is_local_only(collection, record_id):
                logger.debug(f"{collection}/{record_id} has no queued create; updated locally only")
                return stored

            if self.is_online and not await self._must_queue(collection, record_id):
                try:
                    await self._remote.update(collection, record_id, change, user.id)
                    return stored
                except RemoteStoreError as e:
                    logger.warning(f"Update of {collection}/{record_id} failed online, queueing: {e}")

            await self._queue.enqueue(collection, Update(record_id=record_id, patch=change))
            return stored

    async def delete_with_offline(self, collection: str, record_id: Any) -> bool:
        """
        Delete a record locally and remotely (now or on the next drain).

        Returns:
            True if the deletion was applied or queued; False when nobody is
            signed in

        Raises:
            StorageUnavailable: If the local delete failed
        """
        user = await self._current_user(f"delete of {collection}/{record_id}")
        if user is None:
            return False

        async with self._locks.hold(collection, record_id) as record_id:
            await self._local_db.delete(collection, record_id)

            if await self._is_local_only(collection, record_id):
                logger.debug(f"{collection}/{record_id} has no queued create; deleted locally only")
                return True

            if self.is_online and not await self._must_queue(collection, record_id):
                try:
                    await self._remote.delete(collection, record_id, user.id)
                    return True
                except RecordNotFoundError:
                    return True
                except RemoteStoreError as e:
                    logger.warning(f"Delete of {collection}/{record_id} failed online, queueing: {e}")

            await self._queue.enqueue(collection, Delete(record_id=record_id))
            return True

    # =========================================================================
    # READS
    # =========================================================================

    async def fetch(self, collection: str, record_id: Any = None):
        """Locally visible record(s); see LocalDatabase.get."""
        return await self._local_db.get(collection, record_id)

    async def fetch_dataframe(self, collection: str) -> pd.DataFrame:
        """Locally visible records as a DataFrame for rendering."""
        return await self._local_db.to_dataframe(collection)

    async def pending_changes(self, collection: Optional[str] = None) -> List[Dict[str, Any]]:
        """Queued mutations, oldest first, as plain dicts."""
        return [
            {
                "seq": e.seq,
                "operation": e.operation.value,
                "collection": e.collection,
                "record_id": e.record_id,
                "retry_count": e.retry_count,
            }
            for e in await self._queue.pending(collection)
        ]
