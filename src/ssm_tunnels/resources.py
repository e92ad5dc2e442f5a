"""Declarative lifecycle adapter on top of the tunnel tracker.

A resource is created, read, updated, deleted and imported; a data source is
only read. Both resolve a stable identity for the tunnel: the ``id`` already
recorded in state, or one derived from the destination when there is none,
so separate operations on the same tunnel always meet in the tracker.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .common.context import OperationContext
from .common.exceptions import ConfigurationError, ImportKeyError
from .common.logging import get_logger
from .models import TunnelRequest
from .tracker import TunnelTracker

logger = get_logger(__name__)

IMPORT_KEY_FIELDS = (
    "target",
    "remote_host",
    "remote_port",
    "local_port",
    "local_host",
    "region",
)
IMPORT_KEY_SEPARATOR = "|"


class RemoteTunnelModel(BaseModel):
    """State of a remote tunnel resource or data source."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    target: str = Field(
        min_length=1, description="The target to start the tunnel, such as an instance ID"
    )
    remote_host: str = Field(
        min_length=1, description="The DNS name or IP address of the remote host"
    )
    remote_port: int = Field(ge=1, le=65535, description="The port of the remote host")
    local_port: int = Field(
        default=0, ge=0, le=65535, description="Local port to use (0 allocates one)"
    )
    local_host: str | None = Field(
        default=None, description="The address of the local end of the tunnel"
    )
    region: str = Field(
        min_length=1, description="AWS region; should match the region of the target"
    )
    id: str | None = Field(default=None, description="Tunnel identity")

    def to_request(self) -> TunnelRequest:
        return TunnelRequest(
            target=self.target,
            remote_host=self.remote_host,
            remote_port=self.remote_port,
            local_port=self.local_port,
            region=self.region,
        )

    def same_destination(self, other: "RemoteTunnelModel") -> bool:
        return (self.target, self.remote_host, self.remote_port, self.region) == (
            other.target,
            other.remote_host,
            other.remote_port,
            other.region,
        )


def default_identity(model: RemoteTunnelModel) -> str:
    """Identity derived from the destination of a model without an id."""
    return IMPORT_KEY_SEPARATOR.join(
        [
            model.target,
            model.remote_host,
            str(model.remote_port),
            str(model.local_port),
            model.region,
        ]
    )


def resolve_identity(model: RemoteTunnelModel) -> str:
    """The identity recorded in state, never regenerated once present."""
    return model.id or default_identity(model)


def parse_import_key(key: str) -> RemoteTunnelModel:
    """Parse ``target|remote_host|remote_port|local_port|local_host|region``.

    Args:
        key: Import key

    Returns:
        Model describing the imported tunnel

    Raises:
        ImportKeyError: If the key does not have exactly six valid fields
    """
    expected = IMPORT_KEY_SEPARATOR.join(IMPORT_KEY_FIELDS)
    parts = key.split(IMPORT_KEY_SEPARATOR)
    if len(parts) != len(IMPORT_KEY_FIELDS):
        raise ImportKeyError(
            f"Import ID must be in the format `{expected}`, "
            f"got {len(parts)} fields: {key!r}"
        )

    values: dict[str, object] = dict(zip(IMPORT_KEY_FIELDS, parts, strict=True))
    values["local_host"] = str(values["local_host"]).strip() or None
    for name in ("remote_port", "local_port"):
        raw = str(values[name]).strip()
        try:
            values[name] = int(raw)
        except ValueError as e:
            raise ImportKeyError(
                f"Import ID field {name} must be an integer, got {raw!r}"
            ) from e

    try:
        model = RemoteTunnelModel.model_validate(values)
    except ValidationError as e:
        raise ImportKeyError(f"Invalid import ID {key!r}: {e}") from e

    return model.model_copy(update={"id": default_identity(model)})


class _TunnelReader:
    def __init__(self, tracker: TunnelTracker):
        self.tracker = tracker

    def _ensure(
        self, ctx: OperationContext | None, model: RemoteTunnelModel
    ) -> RemoteTunnelModel:
        """Start or join the tunnel and record its local endpoint."""
        identity = resolve_identity(model)
        try:
            request = model.to_request()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tunnel configuration: {e}") from e

        snapshot = self.tracker.start_tunnel(ctx, identity, request)
        return model.model_copy(
            update={
                "id": identity,
                "local_port": snapshot.local_port,
                "local_host": snapshot.local_host,
            }
        )


class RemoteTunnelResource(_TunnelReader):
    """Remote tunnel with a full create/read/update/delete/import lifecycle."""

    def create(
        self, ctx: OperationContext | None, plan: RemoteTunnelModel
    ) -> RemoteTunnelModel:
        state = self._ensure(ctx, plan)
        logger.info("Created remote tunnel", id=state.id, local_port=state.local_port)
        return state

    def read(
        self, ctx: OperationContext | None, state: RemoteTunnelModel
    ) -> RemoteTunnelModel:
        return self._ensure(ctx, state)

    def update(
        self,
        ctx: OperationContext | None,
        state: RemoteTunnelModel,
        plan: RemoteTunnelModel,
    ) -> RemoteTunnelModel:
        """Apply a new plan.

        A plan for the same destination keeps the identity and local port of
        the current state; a different destination replaces the tunnel.
        """
        if plan.same_destination(state) and plan.local_port in (0, state.local_port):
            plan = plan.model_copy(
                update={"id": state.id, "local_port": state.local_port}
            )
        else:
            if state.id:
                self.tracker.stop_tunnel(state.id)
            plan = plan.model_copy(update={"id": None})
        return self._ensure(ctx, plan)

    def delete(self, state: RemoteTunnelModel) -> None:
        identity = resolve_identity(state)
        if not self.tracker.stop_tunnel(identity):
            logger.debug("Remote tunnel was not running", id=identity)

    def import_state(self, key: str) -> RemoteTunnelModel:
        state = parse_import_key(key)
        logger.info("Imported remote tunnel", id=state.id)
        return state


class RemoteTunnelDataSource(_TunnelReader):
    """Read-only lookup of a remote tunnel, starting it if needed."""

    def read(
        self, ctx: OperationContext | None, config: RemoteTunnelModel
    ) -> RemoteTunnelModel:
        return self._ensure(ctx, config)
