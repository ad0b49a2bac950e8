# =============================================================================
# lifedash_core/offline/drafts.py
# Form Drafts and Autosave
# =============================================================================
"""
Drafts keep half-filled forms across reloads and sessions.

A draft is saved every few seconds while a form is open (the timer restarts
on each input), offered back when the same form is opened again, and
deleted once the form is submitted. Drafts never sync to Supabase.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from lifedash_core.errors import StorageUnavailable, handle_error
from lifedash_core.notifications import Notifier
from lifedash_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


@dataclass
class Draft:
    """Saved form values for one form key."""
    key: str
    data: Dict[str, Any]
    timestamp: str

    @property
    def saved_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)

    def restore(self, form: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Values to put back into a form.

        Args:
            form: Current form fields; only fields the form has are filled.
                  When omitted, every drafted field is returned.
        """
        if form is None:
            return dict(self.data)
        restored = dict(form)
        for name, value in self.data.items():
            if name in restored:
                restored[name] = value
        return restored


class DraftStore:
    """Drafts persisted in the local database's drafts table."""

    def __init__(self, local_db: LocalDatabase, collection: str = "drafts"):
        self._local_db = local_db
        self.collection = collection

    async def save_draft(self, key: str, data: Dict[str, Any]) -> Draft:
        """Create or overwrite the draft for ``key``."""
        draft = Draft(key=key, data=dict(data), timestamp=datetime.now().isoformat())
        await self._local_db.put(
            self.collection,
            {"id": key, "data": draft.data, "timestamp": draft.timestamp},
        )
        return draft

    async def load_draft(self, key: str) -> Optional[Draft]:
        """
        The saved draft for ``key``, if any.

        A draft that cannot be read is treated as absent.
        """
        try:
            record = await self._local_db.get(self.collection, key)
        except StorageUnavailable as e:
            logger.error(f"Error loading draft {key}: {e}")
            return None
        if not record or not record.get("data"):
            return None
        return Draft(key=key, data=record["data"], timestamp=record.get("timestamp") or "")

    async def clear_draft(self, key: str) -> bool:
        return await self._local_db.delete(self.collection, key)

    async def list_drafts(self) -> List[Draft]:
        records = await self._local_db.get(self.collection)
        return [
            Draft(key=r["id"], data=r.get("data") or {}, timestamp=r.get("timestamp") or "")
            for r in records
        ]


@dataclass
class _AutoSaveSession:
    snapshot: Callable[[], Dict[str, Any]]
    interval: float
    task: Optional[asyncio.Task] = None
    saves: int = field(default=0)


class AutoSaver:
    """
    Periodic, debounced draft saving per form key.

    Usage:
        saver = AutoSaver(draft_store)
        await saver.enable("task-form", lambda: form_values, on_draft_found=offer)
        saver.touch("task-form")          # on every input event
        await saver.submit("task-form")   # after a successful submit
    """

    def __init__(
        self,
        draft_store: DraftStore,
        interval: float = 3.0,
        notifier: Optional[Notifier] = None,
    ):
        self._store = draft_store
        self.interval = interval
        self._notifier = notifier
        self._sessions: Dict[str, _AutoSaveSession] = {}

    def is_enabled(self, key: str) -> bool:
        return key in self._sessions

    def save_count(self, key: str) -> int:
        session = self._sessions.get(key)
        return session.saves if session else 0

    async def enable(
        self,
        key: str,
        snapshot: Callable[[], Dict[str, Any]],
        on_draft_found: Optional[Callable[[Draft], None]] = None,
        interval: Optional[float] = None,
    ) -> Optional[Draft]:
        """
        Start autosaving a form.

        An existing draft is handed to ``on_draft_found`` so the page can
        offer it; it is never applied to the form automatically.

        Returns:
            The existing draft, if any
        """
        await self.disable(key)

        draft = await self._store.load_draft(key)
        if draft is not None and on_draft_found is not None:
            on_draft_found(draft)

        session = _AutoSaveSession(snapshot=snapshot, interval=self.interval if interval is None else interval)
        self._sessions[key] = session
        self._schedule(key, session)
        return draft

    def touch(self, key: str) -> None:
        """Input event: restart the save timer."""
        session = self._sessions.get(key)
        if session is None:
            return
        if session.task is not None:
            session.task.cancel()
        self._schedule(key, session)

    async def save_now(self, key: str) -> Optional[Draft]:
        session = self._sessions.get(key)
        if session is None:
            return None
        draft = await self._store.save_draft(key, session.snapshot())
        session.saves += 1
        logger.debug(f"Draft saved: {key}")
        return draft

    async def submit(self, key: str) -> None:
        """Form submitted: stop autosaving and drop the draft."""
        await self.disable(key)
        await self._store.clear_draft(key)

    async def disable(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session is None or session.task is None:
            return
        session.task.cancel()
        try:
            await session.task
        except asyncio.CancelledError:
            pass

    async def disable_all(self) -> None:
        for key in list(self._sessions):
            await self.disable(key)

    def _schedule(self, key: str, session: _AutoSaveSession) -> None:
        session.task = asyncio.get_running_loop().create_task(self._autosave_loop(key, session))

    async def _autosave_loop(self, key: str, session: _AutoSaveSession) -> None:
        while True:
            await asyncio.sleep(session.interval)
            try:
                await self.save_now(key)
            except StorageUnavailable as e:
                handle_error(e, notifier=self._notifier, user_message="Autosave stopped: drafts cannot be stored")
                self._sessions.pop(key, None)
                return
