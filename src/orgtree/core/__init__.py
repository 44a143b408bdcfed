"""Core modules for orgtree - centralized error definitions."""

from orgtree.core.errors import (
    ConfigurationError,
    DispatchError,
    ExitCode,
    ExternalFailure,
    OperationStateError,
    OrgTreeError,
    PollTimeoutError,
    TransportError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "OrgTreeError",
    "ConfigurationError",
    "ValidationError",
    "DispatchError",
    "PollTimeoutError",
    "ExternalFailure",
    "TransportError",
    "OperationStateError",
    "main_with_error_handling",
    "format_error_message",
]
