"""Classification of session-manager-plugin output lines."""

import re
from dataclasses import dataclass
from enum import Enum


class LaunchPhase(str, Enum):
    """Progress of a single session launch."""

    LAUNCHING = "launching"
    PROBING = "probing"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class LineKind(str, Enum):
    """What a line of session output tells us."""

    SESSION_STARTED = "session_started"
    PORT_OPENED = "port_opened"
    WAITING = "waiting"
    PORT_IN_USE = "port_in_use"
    ERROR = "error"
    INFO = "info"

    @property
    def is_ready(self) -> bool:
        return self in (LineKind.PORT_OPENED, LineKind.WAITING)


@dataclass(frozen=True)
class LineEvent:
    kind: LineKind
    line: str
    port: int | None = None
    session_id: str | None = None


_SESSION_STARTED = re.compile(r"Starting session with SessionId:\s*(?P<session>\S+)")
_PORT_OPENED = re.compile(
    r"Port (?P<port>\d+) opened for sessionId (?P<session>[^\s.]+(?:\.[^\s.]+)*)"
)
_WAITING = re.compile(r"Waiting for connections", re.IGNORECASE)
_PORT_IN_USE = re.compile(
    r"address already in use|only one usage of each socket address", re.IGNORECASE
)
_ERROR = re.compile(
    r"An error occurred|TargetNotConnected|AccessDenied|Unable to locate credentials"
    r"|SessionManagerPlugin is not found",
    re.IGNORECASE,
)


def classify_line(line: str) -> LineEvent:
    """Classify one line printed by ``aws ssm start-session``.

    Args:
        line: Output line without trailing newline

    Returns:
        The event the line represents
    """
    line = line.rstrip()

    match = _PORT_OPENED.search(line)
    if match:
        return LineEvent(
            LineKind.PORT_OPENED,
            line,
            port=int(match.group("port")),
            session_id=match.group("session"),
        )

    match = _SESSION_STARTED.search(line)
    if match:
        return LineEvent(LineKind.SESSION_STARTED, line, session_id=match.group("session"))

    if _WAITING.search(line):
        return LineEvent(LineKind.WAITING, line)

    if _PORT_IN_USE.search(line):
        return LineEvent(LineKind.PORT_IN_USE, line)

    if _ERROR.search(line):
        return LineEvent(LineKind.ERROR, line)

    return LineEvent(LineKind.INFO, line)
