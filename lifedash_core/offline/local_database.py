# =============================================================================
# lifedash_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-based local storage that mirrors the Supabase tables.

Features:
- One keyed table per collection (tasks, expenses, habits, notes, goals, drafts)
- Auto-incrementing sync_queue table for pending remote mutations
- Automatic schema creation on first run
- Awaitable operations (aiosqlite) for the single event loop
- DataFrame export (pandas) for domain pages
"""

from __future__ import annotations
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

import aiosqlite
import numpy as np
import pandas as pd

from lifedash_core.errors import StorageUnavailable

logger = logging.getLogger(__name__)


COLLECTION_SCHEMA = """
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        data_json TEXT NOT NULL,
        updated_at TEXT,
        stored_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

SYNC_QUEUE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS {table} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        operation TEXT NOT NULL,
        table_name TEXT NOT NULL,
        record_id TEXT,
        data_json TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        attempts INTEGER DEFAULT 0,
        last_attempt TEXT,
        error_message TEXT
    )
"""


def clean_for_json(value: Any) -> Any:
    """Convert datetimes, numpy scalars and NaN into JSON-safe values."""
    if isinstance(value, dict):
        return {str(k): clean_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [clean_for_json(v) for v in value]
    if value is pd.NaT:
        return None
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        value = float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


class LocalDatabase:
    """
    Local SQLite database for offline data storage.

    Collections are fixed at construction. Every storage-layer failure is
    raised as StorageUnavailable so callers never mistake it for success.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        collections: Iterable[str],
        outbox_table: str = "sync_queue",
    ):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
            collections: Names of the keyed record tables
            outbox_table: Name of the sync queue table
        """
        self.db_path = Path(db_path)
        self.collections = tuple(collections)
        self.outbox_table = outbox_table
        self._connection: Optional[aiosqlite.Connection] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def _get_connection(self) -> aiosqlite.Connection:
        """Open the connection lazily."""
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(str(self.db_path))
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    @asynccontextmanager
    async def _storage_errors(self, collection: str, operation: str):
        """Re-raise low-level storage failures as StorageUnavailable."""
        try:
            yield
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Local storage failure during {operation} on {collection}: {e}")
            raise StorageUnavailable(
                f"Local storage failed during {operation}: {e}",
                collection=collection,
                operation=operation,
            ) from e

    @asynccontextmanager
    async def transaction(self, collection: str, operation: str):
        """Context manager for a committed write."""
        async with self._storage_errors(collection, operation):
            conn = await self._get_connection()
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def initialize(self) -> None:
        """Create missing tables."""
        if self._initialized:
            return

        async with self.transaction("*", "initialize") as conn:
            for table in self.collections:
                await conn.execute(COLLECTION_SCHEMA.format(table=table))
                logger.debug(f"Created/verified table: {table}")
            await conn.execute(SYNC_QUEUE_SCHEMA.format(table=self.outbox_table))

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def _check_collection(self, collection: str) -> None:
        if collection not in self.collections:
            raise ValueError(f"Unknown collection: {collection!r}")

    # =========================================================================
    # KEYED RECORD OPERATIONS
    # =========================================================================

    async def put(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert or replace a record by its id.

        Args:
            collection: Collection name
            record: Mapping with an ``id`` key

        Returns:
            The stored (JSON-cleaned) record
        """
        self._check_collection(collection)
        if record.get("id") is None:
            raise ValueError(f"Record for {collection} has no id")

        clean = clean_for_json(record)
        recency = clean.get("updated_at") or clean.get("created_at")

        async with self.transaction(collection, "put") as conn:
            await conn.execute(
                f"""
                INSERT INTO {collection} (id, data_json, updated_at, stored_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at,
                    stored_at = excluded.stored_at
                """,
                [str(clean["id"]), json.dumps(clean), recency, datetime.now().isoformat()],
            )
        return clean

    async def get(
        self,
        collection: str,
        record_id: Any = None,
    ) -> Union[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Get one record by id, or every record when no id is given.

        Returns:
            The record or None; a (possibly empty) list for the whole collection
        """
        self._check_collection(collection)
        async with self._storage_errors(collection, "get"):
            conn = await self._get_connection()
            if record_id is not None:
                async with conn.execute(
                    f"SELECT data_json FROM {collection} WHERE id = ?",
                    [str(record_id)],
                ) as cursor:
                    row = await cursor.fetchone()
                return json.loads(row["data_json"]) if row else None

            async with conn.execute(
                f"SELECT data_json FROM {collection} ORDER BY rowid"
            ) as cursor:
                rows = await cursor.fetchall()
            return [json.loads(row["data_json"]) for row in rows]

    async def delete(self, collection: str, record_id: Any) -> bool:
        """Delete a record. Returns False if it was not there."""
        self._check_collection(collection)
        async with self.transaction(collection, "delete") as conn:
            cursor = await conn.execute(
                f"DELETE FROM {collection} WHERE id = ?",
                [str(record_id)],
            )
            return cursor.rowcount > 0

    async def count(self, collection: str) -> int:
        self._check_collection(collection)
        async with self._storage_errors(collection, "count"):
            conn = await self._get_connection()
            async with conn.execute(f"SELECT COUNT(*) AS count FROM {collection}") as cursor:
                row = await cursor.fetchone()
            return row["count"] if row else 0

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    async def to_dataframe(self, collection: str) -> pd.DataFrame:
        """
        Load a collection into a pandas DataFrame (one column per field).

        Returns:
            DataFrame with collection records, empty if none
        """
        records = await self.get(collection)
        if not records:
            return pd.DataFrame()
        return pd.DataFrame.from_records(records)

    # =========================================================================
    # SYNC QUEUE STORAGE
    # =========================================================================

    async def queue_sync(
        self,
        operation: str,
        table: str,
        record_id: Optional[str],
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Append an operation to the sync queue.

        Returns:
            The stored queue row as a dict
        """
        created_at = datetime.now().isoformat()
        data_json = json.dumps(clean_for_json(data))

        async with self.transaction(self.outbox_table, "enqueue") as conn:
            cursor = await conn.execute(
                f"""
                INSERT INTO {self.outbox_table}
                    (operation, table_name, record_id, data_json, created_at, attempts)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                [operation, table, record_id, data_json, created_at],
            )
            seq = cursor.lastrowid

        return {
            "id": seq,
            "operation": operation,
            "table": table,
            "record_id": record_id,
            "data": json.loads(data_json),
            "created_at": created_at,
            "attempts": 0,
            "error_message": None,
        }

    async def get_pending_sync(self, table: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get pending sync operations in enqueue order."""
        query = f"SELECT * FROM {self.outbox_table}"
        params: List[Any] = []
        if table:
            query += " WHERE table_name = ?"
            params.append(table)
        query += " ORDER BY id ASC"

        async with self._storage_errors(self.outbox_table, "read"):
            conn = await self._get_connection()
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            {
                "id": row["id"],
                "operation": row["operation"],
                "table": row["table_name"],
                "record_id": row["record_id"],
                "data": json.loads(row["data_json"]) if row["data_json"] else {},
                "created_at": row["created_at"],
                "attempts": row["attempts"],
                "error_message": row["error_message"],
            }
            for row in rows
        ]

    async def mark_sync_failed(self, sync_id: int, attempts: int, error: str) -> None:
        """Persist a failed replay attempt."""
        async with self.transaction(self.outbox_table, "record_failure") as conn:
            await conn.execute(
                f"""
                UPDATE {self.outbox_table}
                SET attempts = ?, last_attempt = ?, error_message = ?
                WHERE id = ?
                """,
                [attempts, datetime.now().isoformat(), error, sync_id],
            )

    async def remove_sync(self, sync_id: int) -> None:
        """Remove a queue row (applied or discarded)."""
        async with self.transaction(self.outbox_table, "remove") as conn:
            await conn.execute(f"DELETE FROM {self.outbox_table} WHERE id = ?", [sync_id])

    async def replace_sync_data(self, sync_id: int, record_id: Optional[str], data: Dict[str, Any]) -> None:
        """Point a queued row at a different record id/payload."""
        async with self.transaction(self.outbox_table, "rewrite") as conn:
            await conn.execute(
                f"UPDATE {self.outbox_table} SET record_id = ?, data_json = ? WHERE id = ?",
                [record_id, json.dumps(clean_for_json(data)), sync_id],
            )

    async def get_pending_count(self, table: Optional[str] = None, record_id: Optional[str] = None) -> int:
        """Count queued operations, optionally for one table/record."""
        query = f"SELECT COUNT(*) AS count FROM {self.outbox_table}"
        clauses, params = [], []
        if table:
            clauses.append("table_name = ?")
            params.append(table)
        if record_id is not None:
            clauses.append("record_id = ?")
            params.append(record_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)

        async with self._storage_errors(self.outbox_table, "count"):
            conn = await self._get_connection()
            async with conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
            return row["count"] if row else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._initialized = False
