# =============================================================================
# lifedash_core/data/remote_store.py
# Abstract Remote Store and Identity Interfaces
# =============================================================================
"""
The sync core only needs four table primitives from the hosted backend and
the id of whoever is signed in. Both are abstract here so the core can run
against Supabase in the app and against an in-memory store in tests.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated user every remote call is scoped to."""
    id: str
    email: Optional[str] = None


class IdentityProvider(ABC):
    """Supplies the signed-in user."""

    @abstractmethod
    async def get_current_user(self) -> Optional[CurrentUser]:
        """Return the signed-in user, or None when signed out."""
        pass


class RemoteStore(ABC):
    """
    Owner-scoped table operations on the hosted backend.

    Implementations raise RemoteStoreError for any transport or policy
    failure and RecordNotFoundError when an update/delete matched no row.
    """

    @abstractmethod
    async def insert(self, collection: str, record: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
        """
        Insert a record owned by ``owner_id``.

        Returns:
            The stored row, carrying the id the backend assigned
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: Any,
        patch: Dict[str, Any],
        owner_id: str,
    ) -> Dict[str, Any]:
        """Apply ``patch`` to the owner's record and return the stored row."""
        pass

    @abstractmethod
    async def delete(self, collection: str, record_id: Any, owner_id: str) -> None:
        """Delete the owner's record."""
        pass

    @abstractmethod
    async def select_all(self, collection: str, owner_id: str) -> List[Dict[str, Any]]:
        """Every record in ``collection`` owned by ``owner_id``."""
        pass
