"""Tracker configuration model."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common.utils import MAX_PORT, MIN_PORT

DEFAULT_DOCUMENT_NAME = "AWS-StartPortForwardingSessionToRemoteHost"
DEFAULT_PORT_RANGE = (16000, 26000)


class TrackerConfig(BaseModel):
    """Configuration for the tunnel tracker and its session launcher."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    port_range_low: int = Field(
        default=DEFAULT_PORT_RANGE[0],
        ge=MIN_PORT,
        le=MAX_PORT,
        description="First port tried when allocating automatically",
    )
    port_range_high: int = Field(
        default=DEFAULT_PORT_RANGE[1],
        ge=MIN_PORT + 1,
        le=MAX_PORT + 1,
        description="Exclusive upper bound of the allocation range",
    )
    local_host: str = Field(
        default="127.0.0.1", min_length=1, description="Address tunnels listen on"
    )
    launch_timeout: float = Field(
        default=30.0, gt=0, le=600, description="Seconds to wait for session readiness"
    )
    stop_timeout: float = Field(
        default=5.0, gt=0, le=60, description="Graceful shutdown timeout"
    )
    aws_binary: str | None = Field(
        default=None, description="Path to the aws CLI (looked up on PATH if None)"
    )
    profile: str | None = Field(default=None, description="AWS named profile")
    document_name: str = Field(
        default=DEFAULT_DOCUMENT_NAME,
        min_length=1,
        description="SSM document used for port forwarding",
    )
    allocation_attempts: int = Field(
        default=100, ge=1, le=10000, description="Ports probed before giving up"
    )
    bind_retries: int = Field(
        default=1,
        ge=0,
        le=5,
        description="Re-allocations after a session loses a bind race",
    )

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v: str | None) -> str | None:
        """Treat a blank profile as no profile."""
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_port_range(self) -> "TrackerConfig":
        if self.port_range_low >= self.port_range_high:
            raise ValueError(
                f"port_range_low ({self.port_range_low}) must be below "
                f"port_range_high ({self.port_range_high})"
            )
        return self

    @property
    def port_range(self) -> tuple[int, int]:
        return self.port_range_low, self.port_range_high
