"""Handle on a running port-forwarding session process."""

import os
import queue
import signal
import subprocess
import threading
import time
from collections import deque
from typing import IO

from ..common.logging import get_logger

logger = get_logger(__name__)

# Lines of output kept for diagnostics
OUTPUT_TAIL = 50


class OutputPump(threading.Thread):
    """Drains a process's output for its whole lifetime.

    Every line is appended to a bounded tail; while ``forward`` is set it
    is also put on ``lines`` for the launcher to probe. ``None`` is put on
    the queue at end of stream.
    """

    def __init__(self, stream: IO[str], name: str):
        super().__init__(name=name, daemon=True)
        self._stream = stream
        self.lines: queue.Queue[str | None] = queue.Queue()
        self.tail: deque[str] = deque(maxlen=OUTPUT_TAIL)
        self.forward = True

    def run(self) -> None:
        try:
            for raw in self._stream:
                line = raw.rstrip("\r\n")
                if not line:
                    continue
                self.tail.append(line)
                if self.forward:
                    self.lines.put(line)
                else:
                    logger.debug("Session output", line=line)
        except (OSError, ValueError):
            # Stream closed underneath us during stop()
            pass
        finally:
            self.lines.put(None)


class SessionProcess:
    """A started ``aws ssm start-session`` process."""

    def __init__(
        self,
        process: "subprocess.Popen[str]",
        pump: OutputPump,
        local_port: int,
        stop_timeout: float = 5.0,
    ):
        self._process = process
        self._pump = pump
        self._stop_timeout = stop_timeout
        self._lock = threading.Lock()
        self.local_port = local_port
        self.session_id: str | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    @property
    def output(self) -> list[str]:
        """Most recent output lines."""
        return list(self._pump.tail)

    def is_running(self) -> bool:
        """Check if process is currently running"""
        return self._process.poll() is None

    def detach_output(self) -> None:
        """Stop forwarding lines to the launcher; keep draining the pipe."""
        self._pump.forward = False

    def _signal(self, sig: int) -> None:
        # The aws CLI runs session-manager-plugin as a child; signal the group
        if os.name == "posix":
            try:
                os.killpg(self._process.pid, sig)
                return
            except (ProcessLookupError, PermissionError):
                pass
        if sig == getattr(signal, "SIGKILL", None):
            self._process.kill()
        else:
            self._process.terminate()

    def _group_alive(self) -> bool:
        """Whether any process is left in the session's process group."""
        if os.name != "posix":
            return False
        try:
            os.killpg(self._process.pid, 0)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def _wait_stopped(self, deadline: float) -> bool:
        try:
            self._process.wait(timeout=max(deadline - time.monotonic(), 0))
        except subprocess.TimeoutExpired:
            return False
        while self._group_alive():
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
        return True

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the session gracefully, killing it if it does not exit.

        The whole process group is signalled, so children outliving the aws
        process are stopped too. Safe to call more than once and from several
        threads.

        Returns:
            True if the process is no longer running
        """
        timeout = self._stop_timeout if timeout is None else timeout
        with self._lock:
            if not self.is_running() and not self._group_alive():
                logger.debug("Session not running, nothing to stop", pid=self.pid)
                return True

            logger.info("Stopping session", pid=self.pid, local_port=self.local_port)
            try:
                self._signal(signal.SIGTERM)
                if self._wait_stopped(time.monotonic() + timeout):
                    logger.info("Session terminated gracefully", pid=self.pid)
                    return True

                logger.warning(
                    "Session did not terminate gracefully, force killing",
                    pid=self.pid,
                )
                self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
                try:
                    self._process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    logger.error("Failed to kill session", pid=self.pid)
                    return False
            except OSError as e:
                logger.error("Error stopping session", pid=self.pid, error=str(e))
                return not self.is_running()
            return True
