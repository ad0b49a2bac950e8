# =============================================================================
# lifedash_core/notifications.py
# User-Facing Notices (toasts) for the Sync Subsystem
# =============================================================================
"""
Notifier - how the sync core talks to the person using the dashboard.

The core never renders anything itself. It hands short messages to a
Notifier, and the host (Streamlit page, CLI, test) decides how to show them.
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

logger = logging.getLogger(__name__)

# Toast levels used across the dashboard
INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

LEVELS = (INFO, SUCCESS, WARNING, ERROR)


@dataclass
class Notice:
    """A single message shown (or to be shown) to the user."""
    message: str
    level: str = INFO
    created_at: datetime = field(default_factory=datetime.now)


class Notifier(ABC):
    """Abstract sink for user-visible notices."""

    @abstractmethod
    def notify(self, message: str, level: str = INFO) -> None:
        """Show a notice to the user."""


class LoggingNotifier(Notifier):
    """Headless notifier: notices go to the log."""

    _LOG_LEVELS = {
        INFO: logging.INFO,
        SUCCESS: logging.INFO,
        WARNING: logging.WARNING,
        ERROR: logging.ERROR,
    }

    def notify(self, message: str, level: str = INFO) -> None:
        logger.log(self._LOG_LEVELS.get(level, logging.INFO), f"[{level}] {message}")


class RecordingNotifier(Notifier):
    """Keeps every notice in memory, newest last."""

    def __init__(self):
        self.notices: List[Notice] = []

    def notify(self, message: str, level: str = INFO) -> None:
        self.notices.append(Notice(message=message, level=level))

    def messages(self, level: str = None) -> List[str]:
        return [n.message for n in self.notices if level is None or n.level == level]

    def clear(self) -> None:
        self.notices.clear()
