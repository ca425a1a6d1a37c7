"""Core modules for ChangeGuard - errors, structured results and the clock."""

from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import (
    ChangeGuardError,
    ConfigurationError,
    ErrorCode,
    ExitCode,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)
from changeguard.core.results import OperationResult

__all__ = [
    # Errors
    "ExitCode",
    "ErrorCode",
    "ChangeGuardError",
    "ConfigurationError",
    "ValidationError",
    "main_with_error_handling",
    "format_error_message",
    # Results
    "OperationResult",
    # Time
    "Clock",
    "utcnow",
]
