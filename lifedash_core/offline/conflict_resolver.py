# =============================================================================
# lifedash_core/offline/conflict_resolver.py
# Last-Write-Wins Reconciliation Between Local and Remote Copies
# =============================================================================
"""
ConflictResolver - reconciliation sweep run on startup and after reconnect.

For every local record that also exists remotely (same id, same owner) the
recency timestamps are compared. A difference within the tolerance window is
clock-skew noise and left alone. Otherwise the newer copy replaces the older
one as a whole record:

    local newer  -> push local to Supabase (local store untouched)
    remote newer -> overwrite the local copy

A failed push leaves the pair as it was; the next sweep retries it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging

import pandas as pd

from lifedash_core.data.remote_store import IdentityProvider, RemoteStore
from lifedash_core.errors import RemoteStoreError, StorageUnavailable, handle_error
from lifedash_core.logging import LogContext
from lifedash_core.notifications import INFO, LoggingNotifier, Notifier
from lifedash_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


def recency(record: Dict[str, Any]) -> Optional[pd.Timestamp]:
    """
    When a record was last written: ``updated_at``, else ``created_at``.

    Returns:
        UTC timestamp (naive values are taken as UTC), or None if the record
        carries neither field or it cannot be parsed
    """
    raw = record.get("updated_at") or record.get("created_at")
    if raw is None or raw == "":
        return None
    try:
        ts = pd.Timestamp(raw)
    except (ValueError, TypeError) as e:
        logger.debug(f"Unparseable timestamp {raw!r} on record {record.get('id')}: {e}")
        return None
    if pd.isna(ts):
        return None
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


class Resolution(Enum):
    """Outcome of comparing a local and a remote copy."""
    LOCAL_NEWER = "local_newer"
    REMOTE_NEWER = "remote_newer"
    IN_SYNC = "in_sync"


def classify(
    local: Dict[str, Any],
    remote: Dict[str, Any],
    tolerance_seconds: float = 1.0,
) -> Resolution:
    """
    Compare recency of two copies of one record.

    Differences of ``tolerance_seconds`` or less (or a missing timestamp on
    either side) are not conflicts.
    """
    local_ts = recency(local)
    remote_ts = recency(remote)
    if local_ts is None or remote_ts is None:
        return Resolution.IN_SYNC

    delta = (local_ts - remote_ts).total_seconds()
    if delta > tolerance_seconds:
        return Resolution.LOCAL_NEWER
    if -delta > tolerance_seconds:
        return Resolution.REMOTE_NEWER
    return Resolution.IN_SYNC


@dataclass
class ConflictOutcome:
    """Result of resolving one conflicting pair."""
    collection: str
    record_id: Any
    resolution: Resolution
    applied: bool
    winner: Dict[str, Any]
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    """Summary of one collection's sweep."""
    collection: str
    scanned: int = 0
    conflicts: int = 0
    resolved: int = 0
    pushed: int = 0
    pulled: int = 0
    failed: int = 0
    skipped: Optional[str] = None
    outcomes: List[ConflictOutcome] = field(default_factory=list)


class ConflictResolver:
    """
    Reconciles local collections against Supabase.

    Usage:
        resolver = ConflictResolver(local_db, remote, identity, notifier)
        reports = await resolver.reconcile_all(["tasks", "notes"])
    """

    def __init__(
        self,
        local_db: LocalDatabase,
        remote: RemoteStore,
        identity: IdentityProvider,
        notifier: Optional[Notifier] = None,
        tolerance_seconds: float = 1.0,
        temp_id_prefix: str = "temp_",
    ):
        self._local_db = local_db
        self._remote = remote
        self._identity = identity
        self._notifier = notifier or LoggingNotifier()
        self.tolerance_seconds = tolerance_seconds
        self.temp_id_prefix = temp_id_prefix

    async def resolve(
        self,
        collection: str,
        local: Dict[str, Any],
        remote: Dict[str, Any],
        owner_id: str,
    ) -> ConflictOutcome:
        """
        Resolve one pair, last write wins.

        Raises:
            StorageUnavailable: If overwriting the local copy fails
        """
        resolution = classify(local, remote, self.tolerance_seconds)
        record_id = local.get("id")

        if resolution is Resolution.LOCAL_NEWER:
            try:
                await self._remote.update(collection, record_id, local, owner_id)
            except RemoteStoreError as e:
                logger.warning(f"Could not push newer local {collection}/{record_id}: {e}")
                return ConflictOutcome(collection, record_id, resolution, False, local, str(e))
            logger.debug(f"Pushed newer local {collection}/{record_id}")
            return ConflictOutcome(collection, record_id, resolution, True, local)

        if resolution is Resolution.REMOTE_NEWER:
            await self._local_db.put(collection, remote)
            logger.debug(f"Pulled newer remote {collection}/{record_id}")
            return ConflictOutcome(collection, record_id, resolution, True, remote)

        return ConflictOutcome(collection, record_id, resolution, False, local)

    async def reconcile(self, collection: str) -> ReconcileReport:
        """
        Scan one collection and resolve every conflicting pair.

        Raises:
            StorageUnavailable: If the local store cannot be read or written
        """
        report = ReconcileReport(collection=collection)

        user = await self._identity.get_current_user()
        if user is None:
            report.skipped = "signed out"
            return report

        local_records = await self._local_db.get(collection)
        if not local_records:
            return report

        try:
            remote_records = await self._remote.select_all(collection, user.id)
        except RemoteStoreError as e:
            logger.error(f"Error checking conflicts for {collection}: {e}")
            report.skipped = str(e)
            return report

        remote_by_id = {str(r.get("id")): r for r in remote_records}

        for local in local_records:
            record_id = local.get("id")
            if isinstance(record_id, str) and record_id.startswith(self.temp_id_prefix):
                continue  # Never reached Supabase; the sync queue owns it
            remote = remote_by_id.get(str(record_id))
            if remote is None:
                continue

            report.scanned += 1
            if classify(local, remote, self.tolerance_seconds) is Resolution.IN_SYNC:
                continue

            report.conflicts += 1
            outcome = await self.resolve(collection, local, remote, user.id)
            report.outcomes.append(outcome)
            if not outcome.applied:
                report.failed += 1
                continue
            report.resolved += 1
            if outcome.resolution is Resolution.LOCAL_NEWER:
                report.pushed += 1
            else:
                report.pulled += 1

        return report

    async def reconcile_all(self, collections: Iterable[str]) -> List[ReconcileReport]:
        """
        Sweep each collection independently and post one summary notice.

        A local storage failure in one collection is surfaced and the sweep
        moves on to the next collection.
        """
        reports: List[ReconcileReport] = []

        async with LogContext(logger, "Conflict reconciliation sweep"):
            for collection in collections:
                try:
                    reports.append(await self.reconcile(collection))
                except StorageUnavailable as e:
                    handle_error(e, notifier=self._notifier)
                    reports.append(ReconcileReport(collection=collection, skipped=e.message))

        resolved = sum(r.resolved for r in reports)
        if resolved > 0:
            self._notifier.notify(f"Resolved {resolved} conflict(s)", INFO)
        return reports
