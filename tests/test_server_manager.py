"""Tests for lifecycle orchestration and the command-line entry point."""
from __future__ import annotations

import json

import pytest

from mcp_router.__main__ import main
from mcp_router.config import Config
from mcp_router.server_manager import ServerManager

from .helpers import rpc


class TestServerManager:
    """ServerManager start/stop ordering and idempotency."""

    def test_loads_registry_from_config(self, tmp_path):
        """The services file named in the config is loaded."""
        path = tmp_path / "services.json"
        path.write_text(json.dumps({"git": {"command": "node"}}), encoding="utf-8")

        manager = ServerManager(Config(services_file=str(path)))

        assert not manager.is_running
        assert manager.router is None

    @pytest.mark.asyncio
    async def test_start_stop(self, registry, config):
        """start() creates the router, stop() shuts it down; both are idempotent."""
        manager = ServerManager(config, registry)
        manager.start()
        manager.start()
        router = manager.router

        assert manager.is_running
        assert router.reaper.is_running()
        envelope = await router.execute_mcp("echo", rpc("ping", 1))
        worker = router.persistent.worker("echo")
        assert envelope["result"]["method"] == "ping"

        await manager.stop()
        await manager.stop()

        assert not manager.is_running
        assert manager.router is None
        assert router.persistent.closed
        assert worker.exit_code is not None


class TestMain:
    """python -m mcp_router argument handling."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("MCP_SERVICES_FILE", "PORT", "HOST", "REQUEST_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

    def test_invalid_port(self):
        """An out-of-range port is rejected before anything starts."""
        assert main(["--port", "0"]) == 2

    def test_missing_services_file(self, tmp_path):
        """A services file that does not exist is reported."""
        assert main(["--services", str(tmp_path / "missing.json")]) == 1

    def test_invalid_services_file(self, tmp_path):
        """A malformed services file is reported."""
        path = tmp_path / "services.json"
        path.write_text("{broken", encoding="utf-8")
        assert main(["--services", str(path)]) == 1

    def test_invalid_environment(self, monkeypatch):
        """Garbage in the environment is a configuration error."""
        monkeypatch.setenv("REQUEST_TIMEOUT", "soon")
        assert main([]) == 2

    def test_version(self, capsys):
        """--version prints and exits."""
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])
        assert excinfo.value.code == 0
        assert "mcp_router" in capsys.readouterr().out
