# =============================================================================
# lifedash_core/offline/__init__.py
# Offline-First Sync Core for LifeDash
# =============================================================================
"""
Offline-First Sync Core

Tasks, expenses, habits, notes and goals can be created, edited and deleted
with or without a connection. Every change lands in the local SQLite store
first and is replayed into Supabase once the connection is back.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                       OFFLINE SYNC CORE                          │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 UnifiedDataService                        │  │
│   │    (create/update/delete_with_offline - pages use this)   │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                       │
│              ▼                           ▼                       │
│   ┌──────────────────┐        ┌──────────────────┐              │
│   │  LocalDatabase   │        │    SyncQueue     │              │
│   │ (SQLite records) │        │ (FIFO mutations) │              │
│   └──────────────────┘        └──────────────────┘              │
│              ▲                           │                       │
│              │                           ▼                       │
│   ┌──────────────────┐        ┌──────────────────┐  ┌────────┐  │
│   │ ConflictResolver │◄──────►│    SyncEngine    │─►│Supabase│  │
│   │ (last write wins)│        │ (drain & retry)  │  │(Cloud) │  │
│   └──────────────────┘        └──────────────────┘  └────────┘  │
│              ▲                           ▲                       │
│              └────── ConnectionManager ──┘                       │
│                     (online / offline)                           │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from lifedash_core.offline import build_sync_context

ctx = await build_sync_context()
await ctx.start()

task = await ctx.data_service.create_with_offline("tasks", {"title": "Buy milk"})
print(ctx.status.snapshot.label)   # "All synced" / "Syncing 1 item(s)..." / "Offline Mode"

await ctx.stop()
"""

from lifedash_core.offline.operations import (
    OperationType,
    Create,
    Update,
    Delete,
    Mutation,
    OutboxEntry,
)

from lifedash_core.offline.local_database import (
    LocalDatabase,
    clean_for_json,
)

from lifedash_core.offline.sync_queue import SyncQueue

from lifedash_core.offline.record_locks import RecordLocks

from lifedash_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from lifedash_core.offline.sync_engine import (
    SyncEngine,
    SyncState,
    DrainReport,
)

from lifedash_core.offline.conflict_resolver import (
    ConflictResolver,
    ReconcileReport,
    Resolution,
    classify,
    recency,
)

from lifedash_core.offline.unified_data_service import UnifiedDataService

from lifedash_core.offline.drafts import (
    AutoSaver,
    Draft,
    DraftStore,
)

from lifedash_core.offline.status import (
    SyncPhase,
    SyncStatusReporter,
    SyncStatusSnapshot,
    compute_status,
)

from lifedash_core.offline.context import (
    SyncContext,
    build_sync_context,
)

__all__ = [
    # Mutations
    "OperationType",
    "Create",
    "Update",
    "Delete",
    "Mutation",
    "OutboxEntry",
    # Local Store
    "LocalDatabase",
    "clean_for_json",
    "SyncQueue",
    "RecordLocks",
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Sync Engine
    "SyncEngine",
    "SyncState",
    "DrainReport",
    # Conflicts
    "ConflictResolver",
    "ReconcileReport",
    "Resolution",
    "classify",
    "recency",
    # Unified Service (Main API)
    "UnifiedDataService",
    # Drafts
    "AutoSaver",
    "Draft",
    "DraftStore",
    # Status
    "SyncPhase",
    "SyncStatusReporter",
    "SyncStatusSnapshot",
    "compute_status",
    # Wiring
    "SyncContext",
    "build_sync_context",
]
