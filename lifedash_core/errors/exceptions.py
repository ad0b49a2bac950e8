# =============================================================================
# lifedash_core/errors/exceptions.py
# Custom Exception Hierarchy for LifeDash
# =============================================================================

from typing import Optional, Dict, Any


class LifeDashError(Exception):
    """
    Base exception for all LifeDash errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "LD_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORAGE EXCEPTIONS
# =============================================================================

class StorageUnavailable(LifeDashError):
    """Raised when the local store cannot read or persist (quota, corruption, I/O)"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# REMOTE STORE EXCEPTIONS
# =============================================================================

class RemoteStoreError(LifeDashError):
    """Raised when a remote insert/update/delete/select did not apply"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        record_id: Optional[str] = None,
        code: str = "REMOTE_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation
        if record_id is not None:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class RecordNotFoundError(RemoteStoreError):
    """Raised when an update or delete matched no remote row"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="REMOTE_404", **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(LifeDashError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
