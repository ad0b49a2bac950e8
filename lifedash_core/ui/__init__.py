# =============================================================================
# lifedash_core/ui/__init__.py
# Streamlit Components for the Offline Core
# =============================================================================

from .sync_indicator import (
    StreamlitNotifier,
    render_sync_indicator,
    render_draft_offer,
    TOAST_ICONS,
)

__all__ = [
    "StreamlitNotifier",
    "render_sync_indicator",
    "render_draft_offer",
    "TOAST_ICONS",
]
