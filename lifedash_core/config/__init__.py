# =============================================================================
# lifedash_core/config/__init__.py
# =============================================================================

from .settings import SyncSettings, load_settings, SYNCABLE_COLLECTIONS

__all__ = ["SyncSettings", "load_settings", "SYNCABLE_COLLECTIONS"]
