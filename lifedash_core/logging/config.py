# =============================================================================
# lifedash_core/logging/config.py
# Logging Configuration for LifeDash
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional, Union


# Log format
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Sync activity log: queue replay, reconnects and conflict sweeps only
SYNC_LOGGER = "lifedash_core.offline"
SYNC_LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)-7s | %(module)s | %(message)s"

# Log directory
LOG_DIR = Path("logs")

# Libraries that log every HTTP round-trip or SQL statement
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "postgrest", "gotrue", "aiosqlite")


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
    sync_log: bool = True,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: lifedash_YYYY-MM-DD.log)
        log_dir: Directory for log files (default: LOG_DIR)
        sync_log: With log_to_file, also write a DEBUG-level sync activity
            log (sync_YYYY-MM-DD.log) for the offline layer
    """
    log_dir = Path(log_dir) if log_dir is not None else LOG_DIR
    today = datetime.now().strftime('%Y-%m-%d')

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        if log_filename is None:
            log_filename = f"lifedash_{today}.log"
        handlers.append(logging.FileHandler(log_dir / log_filename))

    # Root handlers keep the app level even when the sync logger runs at DEBUG
    for handler in handlers:
        handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    sync_logger = logging.getLogger(SYNC_LOGGER)
    for handler in list(sync_logger.handlers):
        if getattr(handler, "is_sync_activity_log", False):
            sync_logger.removeHandler(handler)
            handler.close()
    sync_logger.setLevel(logging.NOTSET)

    if log_to_file and sync_log:
        sync_handler = logging.FileHandler(log_dir / f"sync_{today}.log")
        sync_handler.setFormatter(logging.Formatter(SYNC_LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        sync_handler.setLevel(logging.DEBUG)
        sync_handler.is_sync_activity_log = True
        sync_logger.addHandler(sync_handler)
        sync_logger.setLevel(logging.DEBUG)

    logger = logging.getLogger("lifedash_core")
    logger.info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Usage:
        from lifedash_core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Drain started")
    """
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for logging operation timing and status.

    Works with both ``with`` and ``async with``:

        async with LogContext(logger, "Draining sync queue"):
            await engine.drain()
        # Logs: "Draining sync queue... started"
        # Logs: "Draining sync queue... completed (0.42s)"
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self.start_time

        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({elapsed:.2f}s): {exc_val}",
                exc_info=True
            )

        return False  # Don't suppress exceptions

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
