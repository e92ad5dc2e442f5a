"""Custom exceptions for SSM tunnels."""


class SSMTunnelError(Exception):
    """Base exception for all SSM tunnel errors."""

    pass


class ConfigurationError(SSMTunnelError):
    """Raised when a request or configuration is invalid."""

    pass


class ImportKeyError(ConfigurationError):
    """Raised when a tunnel import key is malformed."""

    pass


class AllocationError(SSMTunnelError):
    """Raised when no free local port can be found."""

    pass


class LaunchError(SSMTunnelError):
    """Raised when a session process fails to start or dies before ready."""

    def __init__(self, message: str, output: list[str] | None = None):
        self.output = list(output or [])
        if self.output:
            message = f"{message}\n" + "\n".join(self.output)
        super().__init__(message)


class BinaryNotFoundError(LaunchError):
    """Raised when the AWS CLI binary is not found or not executable."""

    pass


class PortInUseError(LaunchError):
    """Raised when the session could not bind its local port."""

    pass


class LaunchTimeoutError(LaunchError):
    """Raised when a session does not report readiness in time."""

    pass


class CancellationError(SSMTunnelError):
    """Raised when the caller's context is cancelled or expires."""

    pass


class NotFoundError(SSMTunnelError):
    """Raised when an identity has no registry entry."""

    pass


class TunnelConflictError(SSMTunnelError):
    """Raised when an identity is reused for a different destination."""

    pass
