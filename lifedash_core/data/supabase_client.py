# =============================================================================
# lifedash_core/data/supabase_client.py
# Supabase Client Configuration for LifeDash
# Owner-scoped CRUD on the hosted tables
# =============================================================================

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from supabase import AsyncClient, acreate_client

from lifedash_core.config import SyncSettings
from lifedash_core.data.remote_store import CurrentUser, IdentityProvider, RemoteStore
from lifedash_core.errors import ConfigurationError, RecordNotFoundError, RemoteStoreError

logger = logging.getLogger(__name__)


async def create_supabase_client(settings: SyncSettings) -> AsyncClient:
    """
    Initialize and return an async Supabase client.

    Expects SUPABASE_URL / SUPABASE_KEY in the environment or
    ``.streamlit/secrets.toml``:

        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

    Raises:
        ConfigurationError: If URL or key is missing
    """
    if not settings.has_supabase:
        raise ConfigurationError(
            "Supabase credentials not found. Set SUPABASE_URL and SUPABASE_KEY "
            "or add a [supabase] section to .streamlit/secrets.toml",
            config_key="supabase",
        )
    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase client initialized")
    return client


class SupabaseRemoteStore(RemoteStore):
    """
    RemoteStore backed by Supabase tables.

    Every query is filtered on the owner column so row-level security and
    the client agree on what "my records" means.
    """

    def __init__(self, client: AsyncClient, owner_column: str = "user_id"):
        self.client = client
        self.owner_column = owner_column

    async def insert(self, collection: str, record: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
        payload = {**record, self.owner_column: record.get(self.owner_column) or owner_id}
        try:
            response = await self.client.table(collection).insert(payload).execute()
        except Exception as e:
            raise RemoteStoreError(
                f"Insert into {collection} failed: {e}",
                collection=collection,
                operation="insert",
            ) from e

        if not response.data:
            raise RemoteStoreError(
                f"Insert into {collection} returned no row",
                collection=collection,
                operation="insert",
            )
        return response.data[0]

    async def update(
        self,
        collection: str,
        record_id: Any,
        patch: Dict[str, Any],
        owner_id: str,
    ) -> Dict[str, Any]:
        # Primary key and owner are never rewritten
        changes = {k: v for k, v in patch.items() if k not in ("id", self.owner_column)}
        try:
            response = await (
                self.client.table(collection)
                .update(changes)
                .eq("id", record_id)
                .eq(self.owner_column, owner_id)
                .execute()
            )
        except Exception as e:
            raise RemoteStoreError(
                f"Update of {collection}/{record_id} failed: {e}",
                collection=collection,
                operation="update",
                record_id=record_id,
            ) from e

        if not response.data:
            raise RecordNotFoundError(
                f"No {collection} row {record_id} to update",
                collection=collection,
                operation="update",
                record_id=record_id,
            )
        return response.data[0]

    async def delete(self, collection: str, record_id: Any, owner_id: str) -> None:
        try:
            response = await (
                self.client.table(collection)
                .delete()
                .eq("id", record_id)
                .eq(self.owner_column, owner_id)
                .execute()
            )
        except Exception as e:
            raise RemoteStoreError(
                f"Delete of {collection}/{record_id} failed: {e}",
                collection=collection,
                operation="delete",
                record_id=record_id,
            ) from e

        if not response.data:
            raise RecordNotFoundError(
                f"No {collection} row {record_id} to delete",
                collection=collection,
                operation="delete",
                record_id=record_id,
            )

    async def select_all(self, collection: str, owner_id: str) -> List[Dict[str, Any]]:
        try:
            response = await (
                self.client.table(collection)
                .select("*")
                .eq(self.owner_column, owner_id)
                .execute()
            )
        except Exception as e:
            raise RemoteStoreError(
                f"Select from {collection} failed: {e}",
                collection=collection,
                operation="select",
            ) from e
        return list(response.data or [])


class SupabaseIdentityProvider(IdentityProvider):
    """Reads the signed-in user from Supabase Auth."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_current_user(self) -> Optional[CurrentUser]:
        try:
            response = await self.client.auth.get_user()
        except Exception as e:
            logger.error(f"Error getting user: {e}")
            return None

        user = getattr(response, "user", None)
        if user is None:
            return None
        return CurrentUser(id=str(user.id), email=getattr(user, "email", None))
