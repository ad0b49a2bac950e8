# =============================================================================
# lifedash_core/offline/record_locks.py
# Per-Record Locks for Local Mutations
# =============================================================================
"""
RecordLocks - serializes local read-merge-write steps on one record.

The data service and the sync engine both rewrite local copies across
awaits: an edit merges a patch, a landed create swaps the temp-id copy for
the Supabase row. Both take the record's lock for the whole step.

Temp ids that have been swapped are remembered, so a caller still holding
the old id (or one that was waiting on its lock) lands on the new record.

Usage:
    async with locks.hold("tasks", record_id) as record_id:
        ...  # record_id is the current id of that record
"""

from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Tuple


class RecordLocks:
    """One asyncio.Lock per (collection, record id), plus temp-id aliases."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}
        self._aliases: Dict[Tuple[str, str], Any] = {}

    @staticmethod
    def _key(collection: str, record_id: Any) -> Tuple[str, str]:
        return (collection, str(record_id))

    def alias(self, collection: str, old_id: Any, new_id: Any) -> None:
        """Remember that ``old_id`` now lives under ``new_id``."""
        self._aliases[self._key(collection, old_id)] = new_id

    def resolve(self, collection: str, record_id: Any) -> Any:
        """Follow aliases to the record's current id."""
        seen = set()
        key = self._key(collection, record_id)
        while key in self._aliases and key not in seen:
            seen.add(key)
            record_id = self._aliases[key]
            key = self._key(collection, record_id)
        return record_id

    def is_held(self, collection: str, record_id: Any) -> bool:
        lock = self._locks.get(self._key(collection, record_id))
        return lock is not None and lock.locked()

    async def _acquire(self, key: Tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user(key)
            raise
        return lock

    def _release_user(self, key: Tuple[str, str]) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, collection: str, record_id: Any) -> AsyncIterator[Any]:
        """
        Hold the record's lock, yielding its current id.

        If the id was swapped while waiting, the lock of the new id is taken
        instead.
        """
        record_id = self.resolve(collection, record_id)
        while True:
            key = self._key(collection, record_id)
            lock = await self._acquire(key)
            current = self.resolve(collection, record_id)
            if self._key(collection, current) == key:
                break
            lock.release()
            self._release_user(key)
            record_id = current

        try:
            yield record_id
        finally:
            lock.release()
            self._release_user(key)
