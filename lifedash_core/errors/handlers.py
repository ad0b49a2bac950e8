# =============================================================================
# lifedash_core/errors/handlers.py
# Error Handling Utilities for LifeDash
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional

from lifedash_core.logging import get_logger
from lifedash_core.notifications import Notifier, ERROR
from .exceptions import LifeDashError

logger = get_logger(__name__)


def handle_error(
    error: Exception,
    notifier: Optional[Notifier] = None,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        notifier: Where to surface the error to the user (skipped if None)
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, LifeDashError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if notifier is not None:
        if recoverable:
            notifier.notify(f"Error: {message}", ERROR)
        else:
            notifier.notify(f"Critical Error: {message}. Your changes may not be saved.", ERROR)


class ErrorContext:
    """
    Context manager that logs and surfaces errors from background work.

    Usage:
        async with ErrorContext("Reconciling notes", notifier=notifier):
            await resolver.reconcile("notes")

        # On error, logs and notifies: "Error during: Reconciling notes"
    """

    def __init__(
        self,
        operation: str,
        notifier: Optional[Notifier] = None,
        recoverable: bool = True,
    ):
        self.operation = operation
        self.notifier = notifier
        self.recoverable = recoverable

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        # Task cancellation and interpreter shutdown pass straight through
        if not issubclass(exc_type, Exception):
            return False

        if isinstance(exc_val, LifeDashError):
            handle_error(exc_val, notifier=self.notifier)
        else:
            handle_error(
                exc_val,
                notifier=self.notifier,
                user_message=f"Error during: {self.operation}",
            )

        # Suppress exception if recoverable
        return self.recoverable

    async def __aenter__(self) -> ErrorContext:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return self.__exit__(exc_type, exc_val, exc_tb)
