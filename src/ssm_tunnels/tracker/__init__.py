"""Tunnel tracking: registry, readiness signalling and the tracker."""

from .readiness import ReadySignal
from .registry import TunnelInfo, TunnelRegistry
from .tracker import Allocator, Launcher, TunnelTracker

__all__ = [
    "TunnelTracker",
    "TunnelRegistry",
    "TunnelInfo",
    "ReadySignal",
    "Launcher",
    "Allocator",
]
