"""Shared pytest fixtures for SSM tunnel tests."""

from unittest.mock import Mock

import pytest

from ssm_tunnels.config import TrackerConfig
from ssm_tunnels.models import TunnelRequest
from tests.fakes import FakeLauncher


@pytest.fixture
def tunnel_request():
    """The db.internal request used throughout the tracker scenarios."""
    return TunnelRequest(
        target="i-abc",
        remote_host="db.internal",
        remote_port=5432,
        local_port=0,
        region="us-east-1",
    )


@pytest.fixture
def tracker_config():
    return TrackerConfig(launch_timeout=2.0, stop_timeout=0.5)


@pytest.fixture
def fake_launcher():
    return FakeLauncher()


@pytest.fixture
def allocator():
    """Allocator returning 18123 first, then consecutive ports."""
    ports = iter(range(18123, 18200))
    return Mock(side_effect=lambda low, high: next(ports))


@pytest.fixture
def aws_binary(tmp_path):
    """Create a temporary executable standing in for the aws CLI."""
    binary_path = tmp_path / "aws"
    binary_path.write_text("#!/bin/sh\nexit 0\n")
    binary_path.chmod(0o755)
    return str(binary_path)


@pytest.fixture(autouse=True)
def no_process_groups(request, monkeypatch):
    """Keep tests from signalling real process groups."""
    if request.node.get_closest_marker("real_processes"):
        return

    def fake_killpg(pid, sig):
        raise ProcessLookupError(pid)

    monkeypatch.setattr("ssm_tunnels.session.process.os.killpg", fake_killpg, raising=False)


@pytest.fixture
def forking_aws(tmp_path):
    """aws stand-in that reports readiness, leaves a child in its group and exits.

    Returns the binary path and the file the child's pid is written to.
    """
    child_pid_file = tmp_path / "child.pid"
    binary_path = tmp_path / "aws-forking"
    binary_path.write_text(
        "#!/bin/sh\n"
        "sleep 60 >/dev/null 2>&1 &\n"
        f'echo $! > "{child_pid_file}"\n'
        'echo "Waiting for connections..."\n'
    )
    binary_path.chmod(0o755)
    return str(binary_path), child_pid_file
