"""
Unified error handling for ChangeGuard.

Two layers live here:

- ``ErrorCode``: the machine-readable codes carried by structured
  ``OperationResult`` failures (not_found, invalid_status, ...). Being blocked
  by a guardrail is not an error and never produces one of these.
- ``ChangeGuardError`` and subclasses: exceptions for configuration problems,
  malformed input and the CLI shell, with exit code support.

Exit Codes:
- 0: Success (operation allowed)
- 1: Warning (allowed only after approval or confirmation)
- 2: Blocked (operation blocked by a guardrail)
- 10: Configuration error
- 12: Validation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum, StrEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    BLOCKED = 2
    CONFIG_ERROR = 10
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class ErrorCode(StrEnum):
    """Machine-readable failure codes for structured operation results."""

    NOT_FOUND = "not_found"
    INVALID_STATUS = "invalid_status"
    UNAUTHORIZED = "unauthorized"
    ALREADY_RESPONDED = "already_responded"
    EXPIRED = "expired"
    NO_APPROVERS_CONFIGURED = "no_approvers_configured"
    COLLABORATOR_FAILURE = "collaborator_failure"
    INVALID_REQUEST = "invalid_request"


class ChangeGuardError(Exception):
    """Base exception for ChangeGuard errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ChangeGuardError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ValidationError(ChangeGuardError):
    """Raised for malformed input."""

    exit_code = ExitCode.VALIDATION_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - ChangeGuardError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ChangeGuardError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ChangeGuardError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
