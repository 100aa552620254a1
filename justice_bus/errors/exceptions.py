# =============================================================================
# justice_bus/errors/exceptions.py
# Custom Exception Hierarchy for the Justice Bus offline core
# =============================================================================

from typing import Optional, Dict, Any


class JusticeBusError(Exception):
    """
    Base exception for all Justice Bus offline errors.

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
        self.code = code or "JB_000"
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
# STORAGE EXCEPTIONS
# =============================================================================

class StoreUnavailableError(JusticeBusError):
    """Raised when the local store cannot serve a read or write"""

    def __init__(
        self,
        message: str,
        partition: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if partition:
            details["partition"] = partition
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code=kwargs.pop("code", "STORE_001"),
            details=details,
            **kwargs,
        )


class OpenError(StoreUnavailableError):
    """Raised when the local store cannot be opened or its schema is newer"""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path

        super().__init__(
            message=message,
            operation="open",
            code="STORE_002",
            details=details,
            **kwargs,
        )


class PayloadSerializationError(JusticeBusError):
    """Raised when a record cannot be converted to the storage format"""

    def __init__(
        self,
        message: str,
        value_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if value_type:
            details["value_type"] = value_type

        super().__init__(
            message=message,
            code="STORE_003",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class ReplayFailure(JusticeBusError):
    """Raised when replaying a queued request fails (transport error or non-2xx)"""

    def __init__(
        self,
        message: str,
        api_path: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if api_path:
            details["api_path"] = api_path
        if method:
            details["method"] = method
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )
        self.status_code = status_code


class MigrationFailure(JusticeBusError):
    """Raised when moving legacy flat-storage data into the structured store fails"""

    def __init__(
        self,
        message: str,
        migration: Optional[str] = None,
        legacy_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if migration:
            details["migration"] = migration
        if legacy_key:
            details["legacy_key"] = legacy_key

        super().__init__(
            message=message,
            code="MIGRATE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# DATA EXCEPTIONS
# =============================================================================

class DataValidationError(JusticeBusError):
    """Raised when data fails validation checks"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(JusticeBusError):
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
