"""Tunnel tracker: deduplicated, supervised SSM port-forwarding tunnels."""

from collections.abc import Callable
from types import TracebackType
from typing import Literal, Protocol

from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..common.context import OperationContext
from ..common.exceptions import (
    AllocationError,
    CancellationError,
    ConfigurationError,
    NotFoundError,
    PortInUseError,
    SSMTunnelError,
    TunnelConflictError,
)
from ..common.logging import get_logger
from ..common.utils import validate_non_empty_string
from ..config import TrackerConfig
from ..models import TunnelRequest, TunnelSnapshot, TunnelState
from ..ports import find_open_port
from ..session.launcher import SessionLauncher
from ..session.process import SessionProcess
from .registry import TunnelInfo, TunnelRegistry

logger = get_logger(__name__)

Allocator = Callable[[int, int], int]


class Launcher(Protocol):
    def launch(
        self, ctx: OperationContext, request: TunnelRequest, local_port: int
    ) -> SessionProcess: ...


class TunnelTracker:
    """Registry of live tunnels keyed by caller-chosen identity.

    At most one session is ever launched per identity: the first caller
    inserts a ``starting`` entry under the registry lock and performs the
    launch outside of it, while concurrent callers for the same identity
    wait on that entry's readiness signal. Unrelated identities start fully
    in parallel.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        launcher: Launcher | None = None,
        allocator: Allocator | None = None,
        registry: TunnelRegistry | None = None,
    ):
        """Initialize the tracker.

        Args:
            config: Tracker configuration (defaults apply if None)
            launcher: Session launcher (an aws CLI launcher if None)
            allocator: ``(low, high) -> port`` function (socket probing if None)
            registry: Registry to use (a fresh one if None)
        """
        self.config = config or TrackerConfig()
        self.registry = registry or TunnelRegistry()
        self._launcher: Launcher = launcher or SessionLauncher(self.config)
        self._allocator: Allocator = allocator or self._probe_port
        logger.info(
            "Initialized TunnelTracker",
            port_range=f"[{self.config.port_range_low}, {self.config.port_range_high})",
            local_host=self.config.local_host,
        )

    def _probe_port(self, low: int, high: int) -> int:
        return find_open_port(
            low,
            high,
            host=self.config.local_host,
            attempts=self.config.allocation_attempts,
        )

    def start_tunnel(
        self,
        ctx: OperationContext | None,
        identity: str,
        request: TunnelRequest,
    ) -> TunnelSnapshot:
        """Start the tunnel for ``identity`` or join the one already running.

        Args:
            ctx: Context bounding the wait (background if None)
            identity: Caller-stable tunnel identity
            request: Tunnel destination

        Returns:
            Snapshot of the ready tunnel

        Raises:
            ConfigurationError: If identity is blank
            TunnelConflictError: If identity is in use for another destination
            AllocationError: If no local port could be allocated
            LaunchError: If the session failed to become ready
            CancellationError: If ctx ended first
        """
        ctx = ctx or OperationContext.background()
        try:
            identity = validate_non_empty_string(identity, "identity")
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        log = logger.bind(identity=identity, destination=request.destination)
        dead_session: SessionProcess | None = None

        with self.registry.lock:
            info = self.registry.get_tunnel(identity)

            if info is not None and info.state is TunnelState.READY:
                session = info.session
                if session is not None and not session.is_running():
                    log.warning(
                        "Tunnel session exited, restarting",
                        pid=session.pid,
                        returncode=session.returncode,
                    )
                    info.state = TunnelState.FAILED
                    dead_session = session

            if info is not None and info.state is TunnelState.FAILED:
                log.info("Evicting failed tunnel", error=str(info.error))
                self.registry.remove_tunnel(identity, info)
                info = None

            if info is not None:
                if not request.matches(info.request, info.local_port):
                    raise TunnelConflictError(
                        f"Tunnel '{identity}' already exists for "
                        f"{info.request.destination}, cannot reuse it for "
                        f"{request.destination}"
                    )
                if info.state is TunnelState.READY:
                    log.debug("Tunnel already ready", local_port=info.local_port)
                    return info.snapshot()
                owner = False
            else:
                info = TunnelInfo(identity, request)
                self.registry.add_tunnel(info)
                owner = True

        if dead_session is not None:
            # Children of the exited aws process may still hold the local port
            dead_session.stop()

        if not owner:
            log.debug("Waiting for in-flight tunnel start")
            return info.ready.wait(
                ctx,
                f"Gave up waiting for tunnel '{identity}' to {request.destination}",
            )

        return self._bring_up(ctx, info)

    def start(
        self,
        ctx: OperationContext | None,
        identity: str,
        target: str,
        remote_host: str,
        remote_port: int,
        local_port: int,
        region: str,
    ) -> tuple[str, int]:
        """Flat form of :meth:`start_tunnel` returning ``(local_host, local_port)``."""
        try:
            request = TunnelRequest(
                target=target,
                remote_host=remote_host,
                remote_port=remote_port,
                local_port=local_port,
                region=region,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tunnel request: {e}") from e

        snapshot = self.start_tunnel(ctx, identity, request)
        if snapshot.local_host is None or snapshot.local_port is None:
            raise SSMTunnelError(
                f"Tunnel '{identity}' is ready without a local endpoint"
            )
        return snapshot.local_host, snapshot.local_port

    def _bring_up(self, ctx: OperationContext, info: TunnelInfo) -> TunnelSnapshot:
        """Launch the session for an entry this caller owns and settle it."""
        request = info.request
        log = logger.bind(identity=info.identity, destination=request.destination)

        try:
            session = self._launch(ctx, request, log)
        except BaseException as e:
            self._fail(info, e)
            raise

        with self.registry.lock:
            stopped = info.stop_requested
            if not stopped:
                info.session = session
                info.bind(self.config.local_host, session.local_port)
                info.state = TunnelState.READY

        if stopped:
            session.stop()
            error = CancellationError(
                f"Tunnel '{info.identity}' to {request.destination} "
                "was stopped while starting"
            )
            self._fail(info, error)
            raise error

        snapshot = info.snapshot()
        info.ready.set_result(snapshot)
        log.info(
            "Tunnel ready",
            local_host=snapshot.local_host,
            local_port=snapshot.local_port,
            pid=snapshot.pid,
        )
        return snapshot

    def _launch(
        self, ctx: OperationContext, request: TunnelRequest, log: BoundLogger
    ) -> SessionProcess:
        attempts = self.config.bind_retries + 1 if request.auto_port else 1
        attempt = 1
        while True:
            local_port = self._resolve_port(request)
            try:
                return self._launcher.launch(ctx, request, local_port)
            except PortInUseError:
                if attempt >= attempts:
                    raise
                log.warning(
                    "Local port taken before the session bound it, re-allocating",
                    local_port=local_port,
                    attempt=attempt,
                )
                attempt += 1

    def _resolve_port(self, request: TunnelRequest) -> int:
        if not request.auto_port:
            return request.local_port

        low, high = self.config.port_range
        try:
            return self._allocator(low, high)
        except AllocationError as e:
            raise AllocationError(
                f"Cannot allocate a local port for tunnel to {request.destination}: {e}"
            ) from e

    def _fail(self, info: TunnelInfo, error: BaseException) -> None:
        with self.registry.lock:
            info.state = TunnelState.FAILED
            info.error = error
        info.ready.set_error(error)
        logger.error(
            "Tunnel failed",
            identity=info.identity,
            destination=info.request.destination,
            error=str(error),
        )

    def stop_tunnel(self, identity: str) -> bool:
        """Remove a tunnel and stop its session.

        A tunnel that is still starting is flagged so its owner stops the
        session as soon as the launch returns.

        Returns:
            True if the identity was registered
        """
        with self.registry.lock:
            info = self.registry.remove_tunnel(identity)
            if info is None:
                logger.debug("No tunnel to stop", identity=identity)
                return False
            info.stop_requested = True
            session = info.session

        if session is not None:
            session.stop()
        logger.info("Stopped tunnel", identity=identity, state=info.state.value)
        return True

    def get_tunnel(self, identity: str) -> TunnelSnapshot:
        """Snapshot of a registered tunnel.

        Raises:
            NotFoundError: If the identity is not registered
        """
        with self.registry.lock:
            info = self.registry.get_tunnel(identity)
            if info is None:
                raise NotFoundError(f"Tunnel '{identity}' not found")
            return info.snapshot()

    def list_tunnels(self, state: TunnelState | None = None) -> list[TunnelSnapshot]:
        with self.registry.lock:
            return [info.snapshot() for info in self.registry.list_tunnels(state)]

    def shutdown_all(self) -> bool:
        """Stop every registered tunnel.

        Returns:
            True if all sessions stopped cleanly
        """
        with self.registry.lock:
            infos = self.registry.list_tunnels()
            sessions = []
            for info in infos:
                self.registry.remove_tunnel(info.identity, info)
                info.stop_requested = True
                if info.session is not None:
                    sessions.append((info.identity, info.session))

        success = True
        for identity, session in sessions:
            if not session.stop():
                logger.error("Session did not stop", identity=identity, pid=session.pid)
                success = False

        logger.info("Shutdown all tunnels", count=len(infos), success=success)
        return success

    def __enter__(self) -> "TunnelTracker":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.shutdown_all()
        return False
