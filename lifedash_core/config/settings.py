# =============================================================================
# lifedash_core/config/settings.py
# Configuration for the Offline Sync Core
# =============================================================================
"""
Configuration for the offline sync core.

Values come from (highest priority first):
    1. Environment variables (a local ``.env`` file is loaded if present)
    2. Streamlit secrets (``.streamlit/secrets.toml``)::

        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

    3. The dataclass defaults below
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from lifedash_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Entity collections mirrored between the local store and Supabase
SYNCABLE_COLLECTIONS: Tuple[str, ...] = ("tasks", "expenses", "habits", "notes", "goals")

DEFAULT_DB_PATH = Path("local_data") / "lifedash.db"


@dataclass
class SyncSettings:
    """Configuration for local storage, the sync queue and conflict handling."""

    # ==================== LOCAL STORAGE ====================
    db_path: Path = DEFAULT_DB_PATH
    collections: Tuple[str, ...] = SYNCABLE_COLLECTIONS
    drafts_collection: str = "drafts"
    outbox_table: str = "sync_queue"

    # ==================== SYNC QUEUE ====================
    max_retry_attempts: int = 3          # Entry is discarded once retries exceed this
    sync_interval_seconds: float = 30.0  # Periodic drain while online

    # ==================== CONNECTIVITY ====================
    stabilization_delay_seconds: float = 5.0  # Wait after reconnect before reconciling
    connection_timeout: float = 5.0
    reachability_hosts: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    # ==================== CONFLICTS ====================
    conflict_tolerance_seconds: float = 1.0  # Clock-skew window, not a conflict

    # ==================== RECORDS ====================
    temp_id_prefix: str = "temp_"
    owner_column: str = "user_id"

    # ==================== DRAFTS ====================
    autosave_interval_seconds: float = 3.0

    # ==================== LOGGING ====================
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: Path = Path("logs")

    # ==================== SUPABASE ====================
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        self.log_dir = Path(self.log_dir)
        self.log_level = str(self.log_level).upper()
        if self.max_retry_attempts < 0:
            raise ConfigurationError(
                "max_retry_attempts must be >= 0",
                config_key="max_retry_attempts",
                expected_type="int >= 0",
            )
        if self.conflict_tolerance_seconds < 0:
            raise ConfigurationError(
                "conflict_tolerance_seconds must be >= 0",
                config_key="conflict_tolerance_seconds",
                expected_type="float >= 0",
            )
        if self.drafts_collection in self.collections:
            raise ConfigurationError(
                "Drafts are not a syncable collection",
                config_key="collections",
            )

    @property
    def local_collections(self) -> Tuple[str, ...]:
        """Every keyed table in the local store (entities plus drafts)."""
        return tuple(self.collections) + (self.drafts_collection,)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def is_temp_id(self, record_id: Any) -> bool:
        return isinstance(record_id, str) and record_id.startswith(self.temp_id_prefix)


# Environment variable -> (field, parser)
_ENV_OVERRIDES: Dict[str, Tuple[str, Any]] = {
    "LIFEDASH_DB_PATH": ("db_path", Path),
    "LIFEDASH_MAX_RETRIES": ("max_retry_attempts", int),
    "LIFEDASH_SYNC_INTERVAL": ("sync_interval_seconds", float),
    "LIFEDASH_STABILIZATION_DELAY": ("stabilization_delay_seconds", float),
    "LIFEDASH_CONFLICT_TOLERANCE": ("conflict_tolerance_seconds", float),
    "LIFEDASH_AUTOSAVE_INTERVAL": ("autosave_interval_seconds", float),
    "LIFEDASH_LOG_LEVEL": ("log_level", str),
    "LIFEDASH_LOG_DIR": ("log_dir", Path),
    "SUPABASE_URL": ("supabase_url", str),
    "SUPABASE_KEY": ("supabase_key", str),
}


def _load_streamlit_secrets() -> Dict[str, Any]:
    """Read the [supabase] section of Streamlit secrets, if any."""
    try:
        import streamlit as st

        if "supabase" in st.secrets:
            section = st.secrets["supabase"]
            return {"supabase_url": section.get("url"), "supabase_key": section.get("key")}
    except Exception as e:
        # No secrets.toml outside a configured Streamlit deployment
        logger.debug(f"Streamlit secrets not available: {e}")
    return {}


def load_settings(env_file: Optional[str] = None, **overrides) -> SyncSettings:
    """
    Build SyncSettings from environment, Streamlit secrets and overrides.

    Args:
        env_file: Optional path to a .env file (default: search from cwd)
        **overrides: Explicit field values, applied last

    Returns:
        SyncSettings instance

    Raises:
        ConfigurationError: If an environment value cannot be parsed
    """
    load_dotenv(env_file)

    values: Dict[str, Any] = {k: v for k, v in _load_streamlit_secrets().items() if v}

    for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {env_name}: {raw!r}",
                config_key=env_name,
                expected_type=parser.__name__,
            ) from e

    values.update(overrides)
    settings = SyncSettings(**values)
    logger.debug(
        f"Settings loaded: db={settings.db_path}, retries={settings.max_retry_attempts}, "
        f"supabase={'configured' if settings.has_supabase else 'missing'}"
    )
    return settings
