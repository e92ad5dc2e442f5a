"""Tunnel request and snapshot models.

Requests are immutable inputs to a start operation; snapshots are the
immutable view handed back to callers once a tunnel is ready.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .common.utils import validate_non_empty_string


class TunnelState(str, Enum):
    """Lifecycle state of a registry entry."""

    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TunnelState.STARTING


class TunnelRequest(BaseModel):
    """Destination of a port-forwarding tunnel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    target: str = Field(description="Bastion target, such as an instance ID")
    remote_host: str = Field(description="DNS name or IP reachable from the target")
    remote_port: int = Field(ge=1, le=65535, description="Port on the remote host")
    local_port: int = Field(
        default=0, ge=0, le=65535, description="Local port (0 allocates one)"
    )
    region: str = Field(description="AWS region of the target")

    @field_validator("target", "remote_host", "region")
    @classmethod
    def validate_not_blank(cls, v: str, info: ValidationInfo) -> str:
        return validate_non_empty_string(v, info.field_name)

    @property
    def auto_port(self) -> bool:
        """Whether the local port is allocated by the tracker."""
        return self.local_port == 0

    @property
    def destination(self) -> str:
        """Human readable destination used in logs and error messages."""
        return (
            f"{self.remote_host}:{self.remote_port} via {self.target} ({self.region})"
        )

    def matches(self, other: "TunnelRequest", bound_port: int | None = None) -> bool:
        """Check whether two requests describe the same tunnel.

        A request without a local port matches any local port; a request with
        one must agree with the port already bound, when there is one.

        Args:
            other: Request of an existing tunnel
            bound_port: Local port the existing tunnel is bound to

        Returns:
            True if both requests refer to the same destination
        """
        if (self.target, self.remote_host, self.remote_port, self.region) != (
            other.target,
            other.remote_host,
            other.remote_port,
            other.region,
        ):
            return False
        if self.auto_port:
            return True
        existing_port = bound_port or other.local_port
        return existing_port in (0, self.local_port)


class TunnelSnapshot(BaseModel):
    """Immutable view of a tunnel entry."""

    model_config = ConfigDict(frozen=True)

    identity: str
    request: TunnelRequest
    state: TunnelState
    local_host: str | None = None
    local_port: int | None = None
    pid: int | None = None
    session_id: str | None = None

    @property
    def endpoint(self) -> str | None:
        """Local ``host:port`` to connect to, once ready."""
        if self.state is not TunnelState.READY:
            return None
        return f"{self.local_host}:{self.local_port}"
