# =============================================================================
# lifedash_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - single online/offline flag for the sync core.

Features:
- Cached status, reading it never does I/O
- Event-driven transitions (set_online is fed by the platform signal)
- One-shot reachability probe to derive the state at startup
- Callbacks on real transitions only
"""

from __future__ import annotations
import asyncio
import socket
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"   # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_change: Optional[datetime] = None
    last_online: Optional[datetime] = None
    transitions: int = 0


class ConnectionManager:
    """
    Holds the process-wide connectivity flag.

    Usage:
        manager = ConnectionManager()
        manager.register_callback(on_change)
        manager.set_online(True)   # from the platform's "online" event
        if manager.is_online:
            ...
    """

    def __init__(
        self,
        reachability_hosts: Sequence[Tuple[str, int]] = (),
        supabase_url: Optional[str] = None,
        connection_timeout: float = 5.0,
    ):
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self.reachability_hosts = tuple(reachability_hosts)
        self.supabase_url = supabase_url
        self.connection_timeout = connection_timeout

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def set_online(self, online: bool) -> bool:
        """
        Record a connectivity signal.

        Args:
            online: True for the platform's "online" event, False for "offline"

        Returns:
            True if the status actually changed
        """
        new_status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE
        old_status = self._state.status
        if new_status == old_status:
            return False

        now = datetime.now()
        self._state.status = new_status
        self._state.last_change = now
        self._state.transitions += 1
        if online:
            self._state.last_online = now

        logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
        self._notify_callbacks()
        return True

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.set_online(False)
        logger.info("Forced offline mode")

    # =========================================================================
    # STARTUP PROBE
    # =========================================================================

    async def probe(self) -> bool:
        """
        Derive the initial state from a one-shot reachability check.

        Runs the blocking socket checks in a worker thread so the event loop
        stays responsive. Applies the result through set_online().
        """
        online = await asyncio.to_thread(self._check_reachability)
        self.set_online(online)
        return online

    def _check_reachability(self) -> bool:
        """Internet first, then the Supabase host itself."""
        if not self._check_internet():
            return False
        return self._check_supabase()

    def _check_internet(self) -> bool:
        """
        Check internet connectivity by attempting to reach well-known hosts.

        Returns:
            True if any host accepts a TCP connection
        """
        if not self.reachability_hosts:
            return True

        for host, port in self.reachability_hosts:
            if self._can_connect(host, port):
                return True
        return False

    def _check_supabase(self) -> bool:
        """
        Check Supabase connectivity.

        Returns:
            True if the Supabase host is reachable (or none is configured)
        """
        if not self.supabase_url:
            # No Supabase configured - nothing more to check
            return True

        parsed = urlparse(self.supabase_url)
        if not parsed.hostname:
            logger.debug(f"Supabase URL has no host: {self.supabase_url}")
            return False
        return self._can_connect(parsed.hostname, parsed.port or 443)

    def _can_connect(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.connection_timeout):
                return True
        except OSError as e:
            logger.debug(f"Reachability check failed for {host}:{port}: {e}")
            return False

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_change": self._state.last_change.isoformat() if self._state.last_change else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "transitions": self._state.transitions,
        }
