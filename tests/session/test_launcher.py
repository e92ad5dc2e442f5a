"""Tests for SessionLauncher."""

import json
import threading
import time
from unittest.mock import patch

import pytest

from ssm_tunnels.common.context import OperationContext
from ssm_tunnels.common.exceptions import (
    BinaryNotFoundError,
    CancellationError,
    LaunchError,
    LaunchTimeoutError,
    PortInUseError,
)
from ssm_tunnels.config import TrackerConfig
from ssm_tunnels.session.launcher import SessionLauncher
from tests.fakes import FakeProcess

READY_OUTPUT = [
    "Starting session with SessionId: botocore-session-1",
    "Port 18123 opened for sessionId botocore-session-1.",
    "Waiting for connections...",
]


class TestSessionLauncherCommand:
    """Test cases for the aws CLI invocation"""

    def test_build_command_forwards_to_remote_host(self, aws_binary, tunnel_request):
        """Command should target the port forwarding document with all parameters"""
        launcher = SessionLauncher(TrackerConfig(aws_binary=aws_binary))

        command = launcher.build_command(tunnel_request, 18123)

        assert command[:3] == [aws_binary, "ssm", "start-session"]
        assert command[command.index("--target") + 1] == "i-abc"
        assert command[command.index("--region") + 1] == "us-east-1"
        assert (
            command[command.index("--document-name") + 1]
            == "AWS-StartPortForwardingSessionToRemoteHost"
        )
        parameters = json.loads(command[command.index("--parameters") + 1])
        assert parameters == {
            "host": ["db.internal"],
            "portNumber": ["5432"],
            "localPortNumber": ["18123"],
        }
        assert "--profile" not in command

    def test_build_command_includes_profile(self, aws_binary, tunnel_request):
        """A configured profile should be passed through"""
        launcher = SessionLauncher(TrackerConfig(aws_binary=aws_binary, profile="ops"))

        command = launcher.build_command(tunnel_request, 18123)

        assert command[-2:] == ["--profile", "ops"]

    def test_missing_aws_binary(self, tunnel_request):
        """Launcher should report a missing aws CLI"""
        launcher = SessionLauncher(TrackerConfig())

        with patch("ssm_tunnels.session.launcher.shutil.which", return_value=None):
            with pytest.raises(BinaryNotFoundError, match="not found"):
                launcher.build_command(tunnel_request, 18123)

    def test_non_executable_aws_binary(self, tmp_path, tunnel_request):
        """A configured binary that cannot be executed is rejected"""
        binary = tmp_path / "aws"
        binary.write_text("")
        binary.chmod(0o644)
        launcher = SessionLauncher(TrackerConfig(aws_binary=str(binary)))

        with pytest.raises(BinaryNotFoundError, match="not executable"):
            launcher.build_command(tunnel_request, 18123)


class TestSessionLauncherLaunch:
    """Test cases for launching and probing sessions"""

    @pytest.fixture
    def launcher(self, aws_binary):
        return SessionLauncher(
            TrackerConfig(aws_binary=aws_binary, launch_timeout=1.0, stop_timeout=0.5)
        )

    @patch("subprocess.Popen")
    def test_launch_waits_for_port_opened(self, mock_popen, launcher, tunnel_request):
        """Launch should return once the session reports its port open"""
        process = FakeProcess(READY_OUTPUT, hang=True)
        mock_popen.return_value = process

        session = launcher.launch(OperationContext(), tunnel_request, 18123)

        assert session.is_running()
        assert session.pid == 12345
        assert session.local_port == 18123
        assert session.session_id == "botocore-session-1"
        process.terminate.assert_not_called()
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["stderr"] is not None
        session.stop()

    @patch("subprocess.Popen")
    def test_launch_ready_on_waiting_marker(self, mock_popen, launcher, tunnel_request):
        """'Waiting for connections' alone is enough to declare readiness"""
        mock_popen.return_value = FakeProcess(["Waiting for connections..."], hang=True)

        session = launcher.launch(OperationContext(), tunnel_request, 18123)

        assert session.is_running()
        session.stop()

    @patch("subprocess.Popen")
    def test_launch_exit_before_ready(self, mock_popen, launcher, tunnel_request):
        """A process that exits early should raise LaunchError with its output"""
        mock_popen.return_value = FakeProcess(
            [
                "An error occurred (TargetNotConnected) when calling the "
                "StartSession operation: i-abc is not connected."
            ],
            exit_code=254,
        )

        with pytest.raises(LaunchError) as exc_info:
            launcher.launch(OperationContext(), tunnel_request, 18123)

        error = exc_info.value
        assert not isinstance(error, PortInUseError)
        assert "db.internal:5432 via i-abc" in str(error)
        assert "exit code 254" in str(error)
        assert any("TargetNotConnected" in line for line in error.output)

    @patch("subprocess.Popen")
    def test_launch_port_in_use(self, mock_popen, launcher, tunnel_request):
        """A bind failure should be reported as PortInUseError"""
        mock_popen.return_value = FakeProcess(
            [
                "Starting session with SessionId: botocore-session-1",
                "listen tcp 127.0.0.1:18123: bind: address already in use",
            ],
            exit_code=1,
        )

        with pytest.raises(PortInUseError, match="18123"):
            launcher.launch(OperationContext(), tunnel_request, 18123)

    @patch("subprocess.Popen")
    def test_launch_timeout_terminates_process(
        self, mock_popen, aws_binary, tunnel_request
    ):
        """Silence until the launch timeout should fail and stop the child"""
        launcher = SessionLauncher(
            TrackerConfig(aws_binary=aws_binary, launch_timeout=0.2, stop_timeout=0.5)
        )
        process = FakeProcess(
            ["Starting session with SessionId: botocore-session-1"], hang=True
        )
        mock_popen.return_value = process

        with pytest.raises(LaunchTimeoutError, match="not ready"):
            launcher.launch(OperationContext(), tunnel_request, 18123)

        process.terminate.assert_called_once()
        assert process.poll() is not None

    @patch("subprocess.Popen")
    def test_launch_cancelled_terminates_process(
        self, mock_popen, launcher, tunnel_request
    ):
        """Cancelling the caller's context aborts the launch and stops the child"""
        process = FakeProcess([], hang=True)
        mock_popen.return_value = process
        ctx = OperationContext()
        threading.Timer(0.1, ctx.cancel).start()

        with pytest.raises(CancellationError):
            launcher.launch(ctx, tunnel_request, 18123)

        process.terminate.assert_called_once()

    @patch("subprocess.Popen")
    def test_launch_skipped_for_done_context(self, mock_popen, launcher, tunnel_request):
        """No process is started for an already cancelled context"""
        ctx = OperationContext()
        ctx.cancel()

        with pytest.raises(CancellationError):
            launcher.launch(ctx, tunnel_request, 18123)

        mock_popen.assert_not_called()

    @patch("subprocess.Popen")
    def test_launch_popen_failure(self, mock_popen, launcher, tunnel_request):
        """OSError from Popen should surface as LaunchError"""
        mock_popen.side_effect = OSError("Exec format error")

        with pytest.raises(LaunchError, match="Exec format error"):
            launcher.launch(OperationContext(), tunnel_request, 18123)

    @patch("subprocess.Popen")
    def test_launch_rejects_unexpected_port(self, mock_popen, launcher, tunnel_request):
        """A session listening on another port is not our tunnel"""
        process = FakeProcess(
            ["Port 19999 opened for sessionId botocore-session-1."], hang=True
        )
        mock_popen.return_value = process

        with pytest.raises(LaunchError, match="expected 18123"):
            launcher.launch(OperationContext(), tunnel_request, 18123)

        process.terminate.assert_called_once()

    @patch("subprocess.Popen")
    def test_launch_exit_with_output_held_open(
        self, mock_popen, aws_binary, tunnel_request
    ):
        """Exit is noticed while a child keeps the output open"""
        launcher = SessionLauncher(
            TrackerConfig(aws_binary=aws_binary, launch_timeout=10.0, stop_timeout=0.5)
        )
        process = FakeProcess(
            ["Starting session with SessionId: botocore-session-1"],
            exit_code=255,
            hang=True,
        )
        mock_popen.return_value = process
        started = time.monotonic()

        try:
            with pytest.raises(LaunchError, match="exit code 255") as exc_info:
                launcher.launch(OperationContext(), tunnel_request, 18123)
        finally:
            process.stdout.close()

        assert not isinstance(exc_info.value, LaunchTimeoutError)
        assert time.monotonic() - started < 5
        assert "botocore-session-1" in str(exc_info.value)
