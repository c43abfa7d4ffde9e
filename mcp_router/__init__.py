"""Process-backed JSON-RPC router for MCP worker services.

Worker services are separate processes speaking JSON-RPC 2.0 over stdio.
The Router reaches them through one of two strategies:

    - persistent: one long-lived worker per service, reused across requests
    - transient: a fresh worker per request, bounded by a concurrency gate

Typical use:
    >>> registry = ServiceRegistry.from_file("services.json")
    >>> router = Router(registry, Config())
    >>> router.start()
    >>> envelope = await router.execute_mcp("git", {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    >>> result = await router.execute("git", "tools/list", {})
    >>> await router.stop()
"""

__version__ = "0.4.0"

from .config import Config
from .errors import (
    ProcessExitedError,
    ProcessSpawnError,
    RequestTimeoutError,
    RouterClosedError,
    RouterError,
    UnknownServiceError,
    WorkerResponseError,
)
from .router import Router
from .service_registry import ServiceDefinition, ServiceRegistry

__all__ = [
    "__version__",
    "Config",
    "ProcessExitedError",
    "ProcessSpawnError",
    "RequestTimeoutError",
    "RouterClosedError",
    "RouterError",
    "Router",
    "ServiceDefinition",
    "ServiceRegistry",
    "UnknownServiceError",
    "WorkerResponseError",
]
