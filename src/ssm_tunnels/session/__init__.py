"""Session launching and supervision for SSM port forwarding."""

from .launcher import SessionLauncher
from .output import LaunchPhase, LineEvent, LineKind, classify_line
from .process import OutputPump, SessionProcess

__all__ = [
    "SessionLauncher",
    "SessionProcess",
    "OutputPump",
    "LaunchPhase",
    "LineKind",
    "LineEvent",
    "classify_line",
]
