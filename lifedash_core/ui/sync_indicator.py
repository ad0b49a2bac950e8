# =============================================================================
# lifedash_core/ui/sync_indicator.py
# Streamlit Rendering for Sync Status, Toasts and Draft Offers
# =============================================================================
"""
Streamlit side of the offline core. The core only produces notices and
status snapshots; this module turns them into toasts and a small badge.
"""
from __future__ import annotations

from typing import Callable, Dict, Optional

import streamlit as st

from lifedash_core.notifications import ERROR, INFO, SUCCESS, WARNING, Notifier
from lifedash_core.offline.drafts import Draft
from lifedash_core.offline.status import SyncPhase, SyncStatusSnapshot


TOAST_ICONS: Dict[str, str] = {
    INFO: "ℹ️",
    SUCCESS: "✅",
    WARNING: "⚠️",
    ERROR: "❌",
}

_PHASE_STYLE = {
    SyncPhase.OFFLINE: ("sync-offline", "○"),
    SyncPhase.SYNCING: ("sync-partial", "↻"),
    SyncPhase.SYNCED: ("sync-complete", "✓"),
}


class StreamlitNotifier(Notifier):
    """Shows sync notices as Streamlit toasts."""

    def notify(self, message: str, level: str = INFO) -> None:
        st.toast(message, icon=TOAST_ICONS.get(level, TOAST_ICONS[INFO]))


# =============================================================================
# SYNC STATUS INDICATOR
# =============================================================================

def render_sync_indicator(snapshot: SyncStatusSnapshot, container=None) -> None:
    """
    Render the sync badge ("Offline Mode" / "Syncing N item(s)..." / "All synced").

    Args:
        snapshot: Current status from SyncStatusReporter
        container: Streamlit container to draw in (defaults to the sidebar)
    """
    target = container if container is not None else st.sidebar
    css_class, icon = _PHASE_STYLE[snapshot.phase]
    target.markdown(f"""
    <div class="sync-indicator {css_class}">
        <span class="sync-dot">{icon}</span>
        <span>{snapshot.label}</span>
    </div>
    """, unsafe_allow_html=True)


# =============================================================================
# DRAFT OFFER
# =============================================================================

def render_draft_offer(
    draft: Draft,
    on_restore: Optional[Callable[[Draft], None]] = None,
    on_discard: Optional[Callable[[Draft], None]] = None,
    key_prefix: str = "draft",
) -> Optional[str]:
    """
    Offer a saved draft back to the user; nothing is applied unless they accept.

    Returns:
        "restore", "discard", or None if neither button was pressed
    """
    saved = draft.timestamp[:16].replace("T", " ") if draft.timestamp else "earlier"
    st.info(f"📝 You have an unsaved draft from {saved}.")

    col_restore, col_discard = st.columns(2)
    with col_restore:
        if st.button("Restore draft", key=f"{key_prefix}_{draft.key}_restore"):
            if on_restore is not None:
                on_restore(draft)
            return "restore"
    with col_discard:
        if st.button("Discard", key=f"{key_prefix}_{draft.key}_discard"):
            if on_discard is not None:
                on_discard(draft)
            return "discard"
    return None
