"""High-level API for SSM tunnels.

This module provides simple helpers for scoping a tunnel to a ``with`` block.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from .common.context import OperationContext
from .common.logging import get_logger
from .models import TunnelRequest, TunnelSnapshot
from .tracker import TunnelTracker

logger = get_logger(__name__)


@contextmanager
def managed_tunnel(
    tracker: TunnelTracker,
    identity: str,
    request: TunnelRequest,
    *,
    timeout: float | None = None,
) -> Iterator[TunnelSnapshot]:
    """Start a tunnel for the duration of a ``with`` block.

    Args:
        tracker: Tracker owning the tunnel
        identity: Tunnel identity
        request: Tunnel destination
        timeout: Seconds to wait for the tunnel to become ready

    Yields:
        Snapshot of the ready tunnel

    Example:
        >>> request = TunnelRequest(target="i-abc", remote_host="db.internal",
        ...                         remote_port=5432, region="us-east-1")
        >>> with managed_tunnel(tracker, "db", request, timeout=60) as tunnel:
        ...     connect(tunnel.local_host, tunnel.local_port)
    """
    with OperationContext(timeout=timeout) as ctx:
        snapshot = tracker.start_tunnel(ctx, identity, request)
    logger.info("Tunnel opened", identity=identity, endpoint=snapshot.endpoint)
    try:
        yield snapshot
    finally:
        tracker.stop_tunnel(identity)
        logger.info("Tunnel closed", identity=identity)
