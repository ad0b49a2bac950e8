# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from lifedash_core.config import SyncSettings
from lifedash_core.data.remote_store import CurrentUser, IdentityProvider, RemoteStore
from lifedash_core.errors import RecordNotFoundError, RemoteStoreError
from lifedash_core.notifications import RecordingNotifier
from lifedash_core.offline.context import SyncContext


# =============================================================================
# FAKES
# =============================================================================

class InMemoryRemoteStore(RemoteStore):
    """Supabase stand-in: integer ids, owner-scoped rows, switchable failures."""

    def __init__(self, owner_column: str = "user_id"):
        self.owner_column = owner_column
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self._next_id = 1
        self._failures: Dict[str, Optional[int]] = {}

    def fail(self, operation: str, times: Optional[int] = None) -> None:
        """Make ``operation`` raise RemoteStoreError (``times`` calls, or always)."""
        self._failures[operation] = times

    def recover(self) -> None:
        self._failures.clear()

    def seed(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        self.tables.setdefault(collection, {})[row["id"]] = row
        return row

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return list(self.tables.get(collection, {}).values())

    def calls_for(self, operation: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == operation]

    def _maybe_fail(self, operation: str, collection: str) -> None:
        if operation not in self._failures:
            return
        remaining = self._failures[operation]
        if remaining is not None:
            if remaining <= 1:
                del self._failures[operation]
            else:
                self._failures[operation] = remaining - 1
        raise RemoteStoreError(f"{operation} unavailable", collection=collection, operation=operation)

    def _find(self, collection: str, record_id: Any, owner_id: str) -> Dict[str, Any]:
        row = self.tables.get(collection, {}).get(record_id)
        if row is None or row.get(self.owner_column) != owner_id:
            raise RecordNotFoundError(f"No {collection} row {record_id}", collection=collection)
        return row

    async def insert(self, collection, record, owner_id):
        self.calls.append(("insert", collection, record.get("id")))
        self._maybe_fail("insert", collection)
        row = {**record, "id": self._next_id, self.owner_column: record.get(self.owner_column) or owner_id}
        self._next_id += 1
        self.tables.setdefault(collection, {})[row["id"]] = row
        return dict(row)

    async def update(self, collection, record_id, patch, owner_id):
        self.calls.append(("update", collection, record_id))
        self._maybe_fail("update", collection)
        row = self._find(collection, record_id, owner_id)
        row.update({k: v for k, v in patch.items() if k not in ("id", self.owner_column)})
        return dict(row)

    async def delete(self, collection, record_id, owner_id):
        self.calls.append(("delete", collection, record_id))
        self._maybe_fail("delete", collection)
        self._find(collection, record_id, owner_id)
        del self.tables[collection][record_id]

    async def select_all(self, collection, owner_id):
        self.calls.append(("select", collection, None))
        self._maybe_fail("select", collection)
        return [dict(r) for r in self.rows(collection) if r.get(self.owner_column) == owner_id]


class FakeIdentity(IdentityProvider):
    def __init__(self, user: Optional[CurrentUser] = CurrentUser(id="user-1", email="me@example.com")):
        self.user = user

    async def get_current_user(self):
        return self.user


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def sync_settings(tmp_path):
    """Settings pointing at a throwaway database, with no network probing"""
    return SyncSettings(
        db_path=tmp_path / "lifedash.db",
        reachability_hosts=(),
        stabilization_delay_seconds=0.0,
        sync_interval_seconds=3600.0,
        autosave_interval_seconds=0.01,
    )


@pytest.fixture
def remote_store():
    return InMemoryRemoteStore()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def open_core(sync_settings, remote_store, identity, notifier):
    """
    Factory for a wired SyncContext inside a test's event loop.

    Usage:
        async with open_core(online=False) as ctx:
            ...

    Without ``start=True`` the database is created and the connectivity flag
    set, but no connection handlers or timers run.
    """
    @asynccontextmanager
    async def _open(online: bool = False, start: bool = False, **overrides):
        settings = replace(sync_settings, **overrides) if overrides else sync_settings
        ctx = SyncContext(settings, remote_store, identity, notifier=notifier)
        if start:
            await ctx.start(online=online)
        else:
            await ctx.local_db.initialize()
            ctx.connection.set_online(online)
        try:
            yield ctx
        finally:
            if ctx.is_started:
                await ctx.stop()
            else:
                await ctx.autosaver.disable_all()
                await ctx.engine.wait_idle()
                await ctx.local_db.close()

    return _open


def run(coro):
    """Drive one async test scenario to completion."""
    return asyncio.run(coro)


@pytest.fixture
def arun():
    return run


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock the Streamlit module used by the UI helpers"""
    from lifedash_core.ui import sync_indicator

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.columns.return_value = (MagicMock(), MagicMock())
    mock_st.button.return_value = False
    monkeypatch.setattr(sync_indicator, "st", mock_st)
    return mock_st


@pytest.fixture
def mock_supabase():
    """Mock async Supabase client (query builders chain, execute is awaited)"""
    mock_client = MagicMock()
    table = mock_client.table.return_value

    table.insert.return_value.execute = AsyncMock(return_value=MagicMock(data=[]))
    table.select.return_value.eq.return_value.execute = AsyncMock(return_value=MagicMock(data=[]))
    table.update.return_value.eq.return_value.eq.return_value.execute = AsyncMock(
        return_value=MagicMock(data=[])
    )
    table.delete.return_value.eq.return_value.eq.return_value.execute = AsyncMock(
        return_value=MagicMock(data=[])
    )
    mock_client.auth.get_user = AsyncMock(return_value=MagicMock(user=None))
    return mock_client
