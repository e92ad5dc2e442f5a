"""SSM Tunnels - deduplicated AWS SSM port-forwarding tunnels."""

from . import session, tracker
from .api import managed_tunnel
from .common.context import OperationContext, timeout_context
from .common.exceptions import (
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
from .common.logging import get_logger, setup_logging
from .config import TrackerConfig
from .models import TunnelRequest, TunnelSnapshot, TunnelState
from .ports import find_open_port
from .resources import (
    RemoteTunnelDataSource,
    RemoteTunnelModel,
    RemoteTunnelResource,
    parse_import_key,
)
from .session import SessionLauncher, SessionProcess
from .tracker import TunnelTracker

__version__ = "0.1.0"


__all__ = [
    # Tracking
    "TunnelTracker",
    "TrackerConfig",
    "TunnelRequest",
    "TunnelSnapshot",
    "TunnelState",
    "OperationContext",
    "timeout_context",
    "managed_tunnel",
    # Sessions
    "SessionLauncher",
    "SessionProcess",
    "find_open_port",
    # Lifecycle adapter
    "RemoteTunnelResource",
    "RemoteTunnelDataSource",
    "RemoteTunnelModel",
    "parse_import_key",
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
    # Utilities
    "get_logger",
    "setup_logging",
    "session",
    "tracker",
]
