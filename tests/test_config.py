"""Tests for router configuration."""
from __future__ import annotations

import pytest

from mcp_router.config import WORKER_BASE_ENV, Config


class TestConfig:
    """Tests for Config defaults, validation and loading."""

    def test_defaults(self):
        """Defaults match the documented values."""
        config = Config()
        assert config.max_concurrent_processes == 10
        assert config.request_timeout == 30.0
        assert config.idle_timeout == 60.0
        assert config.reap_interval == 30.0
        assert config.ready_grace_period == 1.0
        assert config.protocol_version == "2024-11-05"
        assert config.default_strategy == "persistent"
        assert config.is_valid() == (True, "")

    @pytest.mark.parametrize("overrides, fragment", [
        ({"max_concurrent_processes": 0}, "max_concurrent_processes"),
        ({"request_timeout": 0}, "request_timeout"),
        ({"idle_timeout": -1}, "idle_timeout"),
        ({"ready_grace_period": -0.5}, "ready_grace_period"),
        ({"http_port": 70000}, "Port"),
        ({"default_strategy": "sometimes"}, "strategy"),
    ])
    def test_invalid(self, overrides, fragment):
        """Out-of-range values are reported with a message."""
        valid, message = Config(**overrides).is_valid()
        assert not valid
        assert fragment in message

    def test_dict_round_trip(self):
        """to_dict output feeds back into from_dict; unknown keys are ignored."""
        config = Config(http_port=8080, worker_env={"A": "1"})
        data = config.to_dict()
        data["unknown_field"] = "ignored"
        assert Config.from_dict(data) == config

    def test_from_env(self):
        """Millisecond variables become seconds."""
        config = Config.from_env({
            "MAX_CONCURRENT_PROCESSES": "4",
            "REQUEST_TIMEOUT": "1500",
            "PROCESS_IDLE_TIMEOUT": "120000",
            "PROCESS_REAP_INTERVAL": "10000",
            "READY_GRACE_PERIOD": "250",
            "HOST": "0.0.0.0",
            "PORT": "8123",
            "MCP_SERVICES_FILE": "/etc/services.json",
        })
        assert config.max_concurrent_processes == 4
        assert config.request_timeout == 1.5
        assert config.idle_timeout == 120.0
        assert config.reap_interval == 10.0
        assert config.ready_grace_period == 0.25
        assert config.http_host == "0.0.0.0"
        assert config.http_port == 8123
        assert config.services_file == "/etc/services.json"

    def test_from_env_empty(self):
        """Missing variables leave the defaults alone."""
        assert Config.from_env({}) == Config()

    def test_from_env_rejects_garbage(self):
        """Non-numeric values raise ValueError."""
        with pytest.raises(ValueError):
            Config.from_env({"REQUEST_TIMEOUT": "soon"})

    def test_build_worker_env_layering(self, monkeypatch):
        """Service overrides beat worker_env, which beats the UTF-8 defaults."""
        monkeypatch.setenv("ROUTER_ONLY", "inherited")
        monkeypatch.setenv("LANG", "en_US.ISO-8859-1")
        config = Config(worker_env={"SHARED": "router", "LC_ALL": "C"})

        env = config.build_worker_env({"SHARED": "service", "PORT": 9})

        assert env["ROUTER_ONLY"] == "inherited"
        assert env["LANG"] == WORKER_BASE_ENV["LANG"]
        assert env["PYTHONIOENCODING"] == "utf-8"
        assert env["LC_ALL"] == "C"
        assert env["SHARED"] == "service"
        assert env["PORT"] == "9"
