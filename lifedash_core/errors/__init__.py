# =============================================================================
# lifedash_core/errors/__init__.py
# Centralized Error Handling for LifeDash
# =============================================================================

from .exceptions import (
    LifeDashError,
    StorageUnavailable,
    RemoteStoreError,
    RecordNotFoundError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "LifeDashError",
    "StorageUnavailable",
    "RemoteStoreError",
    "RecordNotFoundError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
]
