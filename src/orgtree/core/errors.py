"""
Unified error handling for orgtree.

Provisioning failures fall into four kinds, each terminal for the step
that raised it and each halting the rest of the chain:

- ValidationError: malformed or missing parameter, raised before any
  external call and never retried
- DispatchError: the control plane rejected the request synchronously
- PollTimeoutError: the poll budget ran out while the job was still pending
- ExternalFailure: the external job itself reported failure

Exit Codes:
- 0: Success
- 2: Blocked (a step failed, the chain stopped)
- 10: Configuration error
- 11: Provider error (control plane failure)
- 12: Validation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    BLOCKED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class OrgTreeError(Exception):
    """Base exception for orgtree errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    error_kind: str = "internal"
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(OrgTreeError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR
    error_kind = "configuration"


class ValidationError(OrgTreeError):
    """Raised for malformed or missing parameters, before anything is sent upstream."""

    exit_code = ExitCode.VALIDATION_ERROR
    error_kind = "validation"


class DispatchError(OrgTreeError):
    """The control plane rejected a request synchronously."""

    exit_code = ExitCode.PROVIDER_ERROR
    error_kind = "dispatch"


class PollTimeoutError(OrgTreeError):
    """The attempt budget ran out while the external job was still pending."""

    exit_code = ExitCode.PROVIDER_ERROR
    error_kind = "poll_timeout"


class ExternalFailure(OrgTreeError):
    """The external job reported failure; message is the upstream reason verbatim."""

    exit_code = ExitCode.PROVIDER_ERROR
    error_kind = "external_failure"


class TransportError(OrgTreeError):
    """A status query could not reach the control plane. Not terminal."""

    exit_code = ExitCode.PROVIDER_ERROR
    error_kind = "transport"


class OperationStateError(OrgTreeError):
    """Illegal transition requested on an operation handle."""


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

    Usage:
        @main_with_error_handling()
        def my_command() -> int:
            return 0
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except OrgTreeError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                from orgtree.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
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


def format_error_message(error: OrgTreeError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
