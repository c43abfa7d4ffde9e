"""Central registry of worker service definitions.

The registry is loaded once at startup and is read-only while the router
runs. The Router uses it to resolve a service id into launch parameters;
an unknown id never spawns a process.
"""
import json
import logging
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import UnknownServiceError

logger = logging.getLogger(__name__)


class ServiceDefinition(BaseModel):
    """Launch parameters for one worker service. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1, description="Service identifier used in routes")
    command: str = Field(min_length=1, description="Executable to launch")
    args: tuple[str, ...] = Field(default=(), description="Command-line arguments")
    cwd: Optional[str] = Field(default=None, description="Working directory")
    env: dict[str, str] = Field(
        default_factory=dict, description="Environment overrides merged over router defaults"
    )
    startup_timeout: float = Field(
        default=10.0, gt=0, description="Seconds allowed for spawn + handshake"
    )
    capabilities: tuple[str, ...] = Field(default=(), description="Advertised MCP capabilities")
    description: str = Field(default="", description="Human-readable summary")

    @model_validator(mode="before")
    @classmethod
    def _accept_wire_names(cls, data: Any) -> Any:
        # startupTimeout arrives in milliseconds on the wire
        if isinstance(data, dict) and "startupTimeout" in data:
            data = dict(data)
            ms = data.pop("startupTimeout")
            data.setdefault("startup_timeout", float(ms) / 1000.0)
        return data

    @property
    def argv(self) -> list[str]:
        """Full argv: command followed by args."""
        return [self.command, *self.args]


class ServiceRegistry:
    """O(1) lookup from service id to ServiceDefinition."""

    def __init__(self, definitions: Optional[list[ServiceDefinition]] = None) -> None:
        self._services: dict[str, ServiceDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: ServiceDefinition) -> None:
        """Register a definition. Raises ValueError on duplicate ids."""
        if definition.id in self._services:
            raise ValueError(f"Service already registered: {definition.id}")
        self._services[definition.id] = definition
        logger.info("Loaded MCP service: %s", definition.id)

    def lookup(self, service_id: str) -> ServiceDefinition:
        """Get definition by id. Raises UnknownServiceError if not found."""
        definition = self._services.get(service_id)
        if definition is None:
            raise UnknownServiceError(service_id)
        return definition

    def get(self, service_id: str) -> Optional[ServiceDefinition]:
        return self._services.get(service_id)

    def ids(self) -> list[str]:
        return list(self._services)

    def definitions(self) -> list[ServiceDefinition]:
        return list(self._services.values())

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self) -> Iterator[ServiceDefinition]:
        return iter(self._services.values())

    @classmethod
    def from_mapping(cls, data: Union[dict[str, Any], list[dict[str, Any]]]) -> "ServiceRegistry":
        """Build a registry from parsed JSON.

        Accepts either an object keyed by service id (the key wins over any
        ``id`` inside the entry) or a list of definitions with explicit ids.
        """
        if isinstance(data, dict):
            entries = [{**entry, "id": service_id} for service_id, entry in data.items()]
        elif isinstance(data, list):
            entries = list(data)
        else:
            raise ValueError("Service registry must be a JSON object or array")
        return cls([ServiceDefinition.model_validate(entry) for entry in entries])

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ServiceRegistry":
        """Load a registry from a JSON file."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        # Allow {"services": {...}} wrappers alongside bare mappings
        if isinstance(raw, dict) and isinstance(raw.get("services"), (dict, list)):
            raw = raw["services"]
        return cls.from_mapping(raw)
