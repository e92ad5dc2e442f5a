"""Launching SSM port-forwarding sessions and detecting readiness."""

import json
import os
import queue
import shutil
import subprocess
import time
from pathlib import Path

from ..common.context import OperationContext
from ..common.exceptions import (
    BinaryNotFoundError,
    LaunchError,
    LaunchTimeoutError,
    PortInUseError,
)
from ..common.logging import get_logger
from ..config import TrackerConfig
from ..models import TunnelRequest
from .output import LaunchPhase, LineKind, classify_line
from .process import OutputPump, SessionProcess

logger = get_logger(__name__)

# Seconds an exited session gets to flush output still in its pipe
EXIT_GRACE = 0.5


class SessionLauncher:
    """Starts one forwarding session per call and reports when it is usable.

    A launch moves through ``launching -> probing -> ready`` or ends in
    ``failed``/``timed_out``. Readiness is only declared once the session
    prints that its local port is open; the process merely starting is not
    enough. Every path that does not reach ``ready`` stops the child before
    the error is raised, and on success ownership of the returned
    :class:`SessionProcess` passes to the caller.
    """

    def __init__(self, config: TrackerConfig | None = None):
        self.config = config or TrackerConfig()
        self._binary_path: str | None = None

    @property
    def binary_path(self) -> str:
        if self._binary_path is None:
            self._binary_path = self._find_aws_binary()
        return self._binary_path

    def _find_aws_binary(self) -> str:
        """Locate the aws CLI.

        Returns:
            Path to the aws binary

        Raises:
            BinaryNotFoundError: If aws is missing or not executable
        """
        if self.config.aws_binary:
            binary = self.config.aws_binary
            path = Path(binary)
            if not path.is_file():
                found = shutil.which(binary)
                if found is None:
                    raise BinaryNotFoundError(f"AWS CLI not found: {binary}")
                return found
            if not os.access(binary, os.X_OK):
                raise BinaryNotFoundError(f"AWS CLI is not executable: {binary}")
            return binary

        found = shutil.which("aws")
        if found is None:
            raise BinaryNotFoundError(
                "AWS CLI 'aws' not found in system PATH. Install the AWS CLI and "
                "the Session Manager plugin and ensure 'aws' is available in your PATH."
            )
        return found

    def build_command(self, request: TunnelRequest, local_port: int) -> list[str]:
        """Build the ``aws ssm start-session`` argument list."""
        parameters = {
            "host": [request.remote_host],
            "portNumber": [str(request.remote_port)],
            "localPortNumber": [str(local_port)],
        }
        command = [
            self.binary_path,
            "ssm",
            "start-session",
            "--target",
            request.target,
            "--document-name",
            self.config.document_name,
            "--parameters",
            json.dumps(parameters, separators=(",", ":")),
            "--region",
            request.region,
        ]
        if self.config.profile:
            command.extend(["--profile", self.config.profile])
        return command

    def launch(
        self, ctx: OperationContext, request: TunnelRequest, local_port: int
    ) -> SessionProcess:
        """Start a session and block until it accepts connections.

        Args:
            ctx: Caller's context; cancelling it aborts the launch
            request: Tunnel destination
            local_port: Local port the session must listen on

        Returns:
            The running session

        Raises:
            CancellationError: If ctx is done before the session is ready
            PortInUseError: If the session could not bind local_port
            LaunchTimeoutError: If no readiness marker appears in time
            LaunchError: If the process cannot start or exits early
        """
        ctx.raise_if_done(f"Launch of tunnel to {request.destination} cancelled")
        command = self.build_command(request, local_port)

        log = logger.bind(
            target=request.target,
            remote_host=request.remote_host,
            remote_port=request.remote_port,
            local_port=local_port,
            region=request.region,
        )
        log.info("Launching session", phase=LaunchPhase.LAUNCHING.value)

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            log.error("Failed to start session process", error=str(e))
            raise LaunchError(
                f"Failed to start session to {request.destination}: {e}"
            ) from e

        pump = OutputPump(process.stdout, name=f"ssm-session-{local_port}")  # type: ignore[arg-type]
        pump.start()
        session = SessionProcess(process, pump, local_port, self.config.stop_timeout)
        log = log.bind(pid=session.pid)

        try:
            self._probe(ctx, request, session, pump)
        except BaseException as e:
            log.warning(
                "Session launch failed", phase=LaunchPhase.FAILED.value, error=str(e)
            )
            session.stop()
            raise

        session.detach_output()
        log.info(
            "Session ready",
            phase=LaunchPhase.READY.value,
            session_id=session.session_id,
        )
        return session

    def _probe(
        self,
        ctx: OperationContext,
        request: TunnelRequest,
        session: SessionProcess,
        pump: OutputPump,
    ) -> None:
        """Read output until the session is ready, fails or runs out of time."""
        logger.debug(
            "Probing session output", phase=LaunchPhase.PROBING.value, pid=session.pid
        )
        deadline = time.monotonic() + self.config.launch_timeout
        port_in_use = False

        while True:
            ctx.raise_if_done(f"Launch of tunnel to {request.destination} cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LaunchTimeoutError(
                    f"Session to {request.destination} not ready on local port "
                    f"{session.local_port} after {self.config.launch_timeout:g}s "
                    f"({LaunchPhase.TIMED_OUT.value})",
                    session.output,
                )

            try:
                line = pump.lines.get(timeout=ctx.wait_slice(remaining))
            except queue.Empty:
                if session.is_running():
                    continue
                # A child holding the pipe open hides the exit from the pump
                pump.join(timeout=EXIT_GRACE)
                if not pump.is_alive() or not pump.lines.empty():
                    continue
                line = None

            if line is None:
                returncode = self._wait_exit(session)
                message = (
                    f"Session to {request.destination} exited before becoming "
                    f"ready (exit code {returncode})"
                )
                if port_in_use:
                    raise PortInUseError(
                        f"Local port {session.local_port} already in use: {message}",
                        session.output,
                    )
                raise LaunchError(message, session.output)

            event = classify_line(line)
            logger.debug("Session output", line=line, kind=event.kind.value)

            if event.session_id:
                session.session_id = event.session_id

            if event.kind is LineKind.PORT_IN_USE:
                port_in_use = True
            elif event.kind is LineKind.ERROR:
                logger.warning("Session reported an error", line=line)
            elif event.kind.is_ready:
                if event.port is not None and event.port != session.local_port:
                    raise LaunchError(
                        f"Session to {request.destination} opened port {event.port}, "
                        f"expected {session.local_port}",
                        session.output,
                    )
                return

    def _wait_exit(self, session: SessionProcess) -> int | None:
        """Give a process whose output closed a moment to report its exit code."""
        deadline = time.monotonic() + self.config.stop_timeout
        while session.is_running() and time.monotonic() < deadline:
            time.sleep(0.05)
        return session.returncode
