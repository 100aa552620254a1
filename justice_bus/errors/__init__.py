# =============================================================================
# justice_bus/errors/__init__.py
# Centralized Error Handling for the Justice Bus offline core
# =============================================================================

from .exceptions import (
    JusticeBusError,
    StoreUnavailableError,
    OpenError,
    PayloadSerializationError,
    ReplayFailure,
    MigrationFailure,
    DataValidationError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    error_boundary,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "JusticeBusError",
    "StoreUnavailableError",
    "OpenError",
    "PayloadSerializationError",
    "ReplayFailure",
    "MigrationFailure",
    "DataValidationError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "error_boundary",
    "ErrorContext",
]
