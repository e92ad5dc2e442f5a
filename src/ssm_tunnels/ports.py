"""Local port probing for automatically allocated tunnels."""

import random
import socket

from .common.exceptions import AllocationError
from .common.logging import get_logger
from .common.utils import validate_port

logger = get_logger(__name__)


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether a TCP port can currently be bound.

    Args:
        port: Port to probe
        host: Local address to bind

    Returns:
        True if binding succeeded
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_open_port(
    low: int, high: int, host: str = "127.0.0.1", attempts: int = 100
) -> int:
    """Return a port in [low, high) that is free at call time.

    Candidates are probed in random order so concurrent allocations rarely
    collide. The port may still be taken before the caller binds it.

    Args:
        low: First port of the range
        high: Exclusive end of the range
        host: Local address to probe
        attempts: Maximum number of ports probed

    Returns:
        A bindable port

    Raises:
        AllocationError: If the range is empty or invalid, or no probed port
            is free
    """
    if low >= high:
        raise AllocationError(f"Empty port range [{low}, {high})")
    try:
        validate_port(low, "Lowest port")
        validate_port(high - 1, "Highest port")
    except ValueError as e:
        raise AllocationError(f"Invalid port range [{low}, {high}): {e}") from e

    span = high - low
    candidates = random.sample(range(low, high), min(attempts, span))
    for port in candidates:
        if is_port_free(port, host):
            logger.debug("Found open port", port=port, host=host)
            return port

    raise AllocationError(
        f"No free port found in [{low}, {high}) on {host} "
        f"after {len(candidates)} attempts"
    )
