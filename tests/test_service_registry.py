"""Tests for service definitions and the registry."""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from mcp_router.errors import METHOD_NOT_FOUND, UnknownServiceError
from mcp_router.service_registry import ServiceDefinition, ServiceRegistry


class TestServiceDefinition:
    """Tests for ServiceDefinition validation."""

    def test_defaults(self):
        """Only id and command are required."""
        definition = ServiceDefinition(id="git", command="node")
        assert definition.args == ()
        assert definition.env == {}
        assert definition.cwd is None
        assert definition.startup_timeout == 10.0
        assert definition.argv == ["node"]

    def test_argv(self):
        """argv is the command followed by its arguments."""
        definition = ServiceDefinition(id="git", command="node", args=["dist/index.js", "--stdio"])
        assert definition.argv == ["node", "dist/index.js", "--stdio"]

    def test_startup_timeout_in_milliseconds(self):
        """startupTimeout is read as milliseconds."""
        definition = ServiceDefinition.model_validate(
            {"id": "git", "command": "node", "startupTimeout": 2500}
        )
        assert definition.startup_timeout == 2.5

    def test_frozen(self):
        """Definitions cannot be changed after loading."""
        definition = ServiceDefinition(id="git", command="node")
        with pytest.raises(ValidationError):
            definition.command = "python"

    @pytest.mark.parametrize("data", [
        {"id": "", "command": "node"},
        {"id": "git", "command": ""},
        {"id": "git"},
        {"id": "git", "command": "node", "startup_timeout": 0},
    ])
    def test_invalid(self, data):
        """Empty ids/commands and non-positive timeouts are rejected."""
        with pytest.raises(ValidationError):
            ServiceDefinition.model_validate(data)


class TestServiceRegistry:
    """Tests for ServiceRegistry lookup and loading."""

    def test_lookup(self):
        """Registered ids resolve, unknown ids raise -32601."""
        registry = ServiceRegistry([ServiceDefinition(id="git", command="node")])

        assert registry.lookup("git").command == "node"
        with pytest.raises(UnknownServiceError) as excinfo:
            registry.lookup("nope")
        assert excinfo.value.code == METHOD_NOT_FOUND
        assert excinfo.value.data == {"service_id": "nope"}

    def test_accessors(self):
        """get/ids/definitions/len/contains/iter reflect the contents."""
        registry = ServiceRegistry([
            ServiceDefinition(id="a", command="x"),
            ServiceDefinition(id="b", command="y"),
        ])
        assert registry.get("missing") is None
        assert registry.ids() == ["a", "b"]
        assert [d.id for d in registry.definitions()] == ["a", "b"]
        assert [d.id for d in registry] == ["a", "b"]
        assert len(registry) == 2
        assert "a" in registry and "c" not in registry

    def test_duplicate_rejected(self):
        """The same id cannot be registered twice."""
        registry = ServiceRegistry([ServiceDefinition(id="a", command="x")])
        with pytest.raises(ValueError):
            registry.register(ServiceDefinition(id="a", command="y"))

    def test_from_mapping_keyed_by_id(self):
        """In an object mapping the key is the service id."""
        registry = ServiceRegistry.from_mapping({
            "github": {"command": "node", "args": ["gh.js"], "env": {"TOKEN": "t"}},
            "files": {"id": "ignored", "command": "python", "startupTimeout": 500},
        })
        assert registry.ids() == ["github", "files"]
        assert registry.lookup("github").env == {"TOKEN": "t"}
        assert registry.lookup("files").startup_timeout == 0.5

    def test_from_mapping_list(self):
        """A list of definitions uses their explicit ids."""
        registry = ServiceRegistry.from_mapping([{"id": "a", "command": "x"}])
        assert registry.ids() == ["a"]

    def test_from_mapping_rejects_other_types(self):
        """Anything but an object or list is an error."""
        with pytest.raises(ValueError):
            ServiceRegistry.from_mapping("nope")  # type: ignore[arg-type]

    def test_from_file(self, tmp_path):
        """Files may wrap the mapping in a "services" key."""
        path = tmp_path / "services.json"
        path.write_text(json.dumps({"services": {"git": {"command": "node"}}}), encoding="utf-8")

        registry = ServiceRegistry.from_file(path)

        assert registry.ids() == ["git"]

    def test_from_file_bare_mapping(self, tmp_path):
        """A bare mapping file works too."""
        path = tmp_path / "services.json"
        path.write_text(json.dumps({"git": {"command": "node", "cwd": "/srv/git"}}), encoding="utf-8")

        assert ServiceRegistry.from_file(str(path)).lookup("git").cwd == "/srv/git"
