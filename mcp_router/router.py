"""Router façade over the two worker strategies.

The Router resolves a service id through the ServiceRegistry and hands the
request to one of two supervisors. Each supervisor backs one caller-facing
contract:

    - execute(service_id, method, params) -> result
        Transient strategy. Raises a RouterError on any failure.

    - execute_mcp(service_id, request) -> envelope
        Persistent strategy. Never raises; the envelope echoes the request
        id and carries either ``result`` or ``error``.

Lifecycle:
    start() launches the IdleReaper. stop() performs the graceful shutdown
    sequence: refuse new submissions, terminate every owned worker, then wait
    for the transient queue to drain.

Example:
    >>> router = Router(ServiceRegistry.from_file("services.json"))
    >>> router.start()
    >>> await router.execute_mcp("git", {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    {'jsonrpc': '2.0', 'id': 1, 'result': {...}}
    >>> await router.stop()
"""

import asyncio
import logging
import time
from typing import Any, Optional, Protocol

from .config import Config
from .errors import RouterError, WorkerResponseError
from .persistent import PersistentSupervisor
from .reaper import IdleReaper
from .service_registry import ServiceRegistry
from .transient import TransientSupervisor

logger = logging.getLogger(__name__)


class WorkerStrategy(Protocol):
    """What the Router needs from a supervisor besides its call contract."""

    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...

    async def stop(self) -> None: ...

    def stats(self) -> dict[str, Any]: ...


class Router:
    """Routes JSON-RPC requests to worker processes.

    Attributes:
        registry: Service definitions, read-only while running.
        config: Router configuration.
        persistent: Supervisor backing the enveloped contract.
        transient: Supervisor backing the throwing contract.
        reaper: Idle eviction task for the persistent supervisor.
    """

    def __init__(self, registry: ServiceRegistry, config: Optional[Config] = None) -> None:
        self.registry = registry
        self.config = config or Config()
        self.persistent = PersistentSupervisor(registry, self.config)
        self.transient = TransientSupervisor(registry, self.config)
        self.reaper = IdleReaper(
            self.persistent,
            interval=self.config.reap_interval,
            idle_timeout=self.config.idle_timeout,
        )
        self._started_at = time.monotonic()
        self._stopped = False

    @property
    def strategies(self) -> dict[str, WorkerStrategy]:
        return {"persistent": self.persistent, "transient": self.transient}

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    def start(self) -> None:
        """Start background maintenance (idle eviction)."""
        self.reaper.start()
        logger.info(
            "Router started with %d service(s): %s",
            len(self.registry), ", ".join(self.registry.ids()) or "(none)",
        )

    async def execute(
        self,
        service_id: str,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run one request on a fresh worker and return its ``result``.

        Raises:
            RouterError: UnknownServiceError, ProcessSpawnError,
                ProcessExitedError, RequestTimeoutError, WorkerResponseError
                or RouterClosedError.
        """
        try:
            return await self.transient.submit(service_id, method, params, timeout)
        except RouterError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error executing %s.%s", service_id, method)
            raise RouterError(f"Internal error: {exc}") from exc

    async def execute_mcp(
        self,
        service_id: str,
        request: Any,
        *,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Route one JSON-RPC request to the service's long-lived worker.

        Never raises; failures come back as error envelopes.
        """
        return await self.persistent.execute_mcp(service_id, request, timeout)

    async def call(
        self,
        service_id: str,
        method: str,
        params: Any = None,
        *,
        strategy: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Return the ``result`` of one request through either strategy.

        With the persistent strategy, an error envelope is turned into a
        raised RouterError so both strategies fail the same way here.
        """
        strategy = strategy or self.config.default_strategy
        if strategy == "transient":
            return await self.execute(service_id, method, params, timeout=timeout)
        if strategy != "persistent":
            raise ValueError(f"Unknown strategy: {strategy}")

        request: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            request["params"] = params
        response = await self.execute_mcp(service_id, request, timeout=timeout)
        if "error" in response:
            raise WorkerResponseError(service_id, response["error"])
        return response.get("result")

    async def stop(self) -> None:
        """Graceful shutdown. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down router...")

        await self.reaper.stop()
        for strategy in self.strategies.values():
            strategy.close()
        # Both terminate their workers; the transient one then drains its queue
        await asyncio.gather(self.persistent.stop(), self.transient.stop())
        logger.info("Router shutdown complete")

    def stats(self) -> dict[str, Any]:
        return {
            "services": self.registry.ids(),
            "uptime": round(self.uptime, 3),
            "persistent": self.persistent.stats(),
            "transient": self.transient.stats(),
        }
