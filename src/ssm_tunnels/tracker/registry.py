"""Tunnel registry entries and the identity-keyed registry."""

import threading
from datetime import datetime

from ..common.logging import get_logger
from ..models import TunnelRequest, TunnelSnapshot, TunnelState
from ..session.process import SessionProcess
from .readiness import ReadySignal

logger = get_logger(__name__)


class TunnelInfo:
    """Mutable registry entry for one tunnel identity.

    Only the caller that inserted the entry mutates it; everybody else reads
    the state tag under the registry lock or the snapshot delivered by
    ``ready``.
    """

    def __init__(self, identity: str, request: TunnelRequest):
        self.identity = identity
        self.request = request
        self.state = TunnelState.STARTING
        self.local_host: str | None = None
        self.local_port: int | None = None
        self.session: SessionProcess | None = None
        self.error: BaseException | None = None
        self.ready = ReadySignal()
        self.stop_requested = False
        self.created_at = datetime.now()

    def bind(self, local_host: str, local_port: int) -> None:
        """Record the local endpoint; it never changes afterwards."""
        if self.local_port is not None:
            raise RuntimeError(
                f"Tunnel {self.identity} already bound to "
                f"{self.local_host}:{self.local_port}"
            )
        self.local_host = local_host
        self.local_port = local_port

    def snapshot(self) -> TunnelSnapshot:
        session = self.session
        return TunnelSnapshot(
            identity=self.identity,
            request=self.request,
            state=self.state,
            local_host=self.local_host,
            local_port=self.local_port,
            pid=session.pid if session is not None else None,
            session_id=session.session_id if session is not None else None,
        )


class TunnelRegistry:
    """Identity to :class:`TunnelInfo` mapping.

    Methods do not lock; callers hold ``lock`` around every lookup-or-insert
    sequence so it happens atomically.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._tunnels: dict[str, TunnelInfo] = {}

    def add_tunnel(self, info: TunnelInfo) -> None:
        """Add an entry.

        Raises:
            KeyError: If the identity is already registered
        """
        if info.identity in self._tunnels:
            raise KeyError(f"Tunnel '{info.identity}' already registered")
        self._tunnels[info.identity] = info
        logger.debug("Added tunnel to registry", identity=info.identity)

    def get_tunnel(self, identity: str) -> TunnelInfo | None:
        return self._tunnels.get(identity)

    def remove_tunnel(
        self, identity: str, info: TunnelInfo | None = None
    ) -> TunnelInfo | None:
        """Remove an entry.

        Args:
            identity: Identity to remove
            info: If given, remove only while the identity still maps to it

        Returns:
            The removed entry, or None if nothing was removed
        """
        current = self._tunnels.get(identity)
        if current is None or (info is not None and current is not info):
            return None
        del self._tunnels[identity]
        logger.debug("Removed tunnel from registry", identity=identity)
        return current

    def list_tunnels(self, state: TunnelState | None = None) -> list[TunnelInfo]:
        tunnels = list(self._tunnels.values())
        if state is not None:
            tunnels = [t for t in tunnels if t.state == state]
        return tunnels

    def __contains__(self, identity: object) -> bool:
        return identity in self._tunnels

    def __len__(self) -> int:
        return len(self._tunnels)
