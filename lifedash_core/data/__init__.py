# =============================================================================
# lifedash_core/data/__init__.py
# Remote Store (Supabase) and Identity
# =============================================================================

from lifedash_core.data.remote_store import (
    CurrentUser,
    IdentityProvider,
    RemoteStore,
)

from lifedash_core.data.supabase_client import (
    SupabaseIdentityProvider,
    SupabaseRemoteStore,
    create_supabase_client,
)

__all__ = [
    "CurrentUser",
    "IdentityProvider",
    "RemoteStore",
    "SupabaseIdentityProvider",
    "SupabaseRemoteStore",
    "create_supabase_client",
]
