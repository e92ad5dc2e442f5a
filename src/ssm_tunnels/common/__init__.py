"""Common utilities and shared functionality."""

from .context import OperationContext, timeout_context
from .exceptions import (
    AllocationError,
    BinaryNotFoundError,
    CancellationError,
    ConfigurationError,
    ImportKeyError,
    LaunchError,
    LaunchTimeoutError,
    NotFoundError,
    PortInUseError,
    SSMTunnelError,
    TunnelConflictError,
)
from .logging import get_logger, setup_logging
from .utils import MAX_PORT, MIN_PORT, validate_non_empty_string, validate_port

__all__ = [
    # Context
    "OperationContext",
    "timeout_context",
    # Exceptions
    "SSMTunnelError",
    "ConfigurationError",
    "ImportKeyError",
    "AllocationError",
    "LaunchError",
    "BinaryNotFoundError",
    "PortInUseError",
    "LaunchTimeoutError",
    "CancellationError",
    "NotFoundError",
    "TunnelConflictError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "MIN_PORT",
    "MAX_PORT",
]
