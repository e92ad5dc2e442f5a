"""Tests for tracker configuration."""

import pytest
from pydantic import ValidationError

from ssm_tunnels.config import TrackerConfig


class TestTrackerConfig:
    """Test cases for TrackerConfig"""

    def test_defaults(self):
        config = TrackerConfig()

        assert config.port_range == (16000, 26000)
        assert config.local_host == "127.0.0.1"
        assert config.document_name == "AWS-StartPortForwardingSessionToRemoteHost"
        assert config.bind_retries == 1

    def test_port_range_must_not_be_empty(self):
        with pytest.raises(ValidationError, match="port_range_low"):
            TrackerConfig(port_range_low=20000, port_range_high=20000)

    def test_blank_profile_is_none(self):
        assert TrackerConfig(profile="   ").profile is None

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            TrackerConfig(port_rang_low=1)

