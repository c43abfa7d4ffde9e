"""Transient strategy: one fresh worker process per request.

Each submit() spawns a process for the target service, waits for it to look
ready, sends exactly one request, waits for the matching response and then
terminates the process whatever the outcome. How many of these processes
exist at once is bounded by a ConcurrencyGate shared across all services.

Ready probe:
    A worker counts as ready as soon as it writes any valid JSON line. A
    worker that stays silent is assumed ready after the grace period. A
    worker that exits during the probe fails the request right away, and
    one whose startup timeout is shorter than the grace period must show
    output within that timeout.

Caller contract:
    submit() returns the ``result`` member of the response, or raises a
    RouterError (WorkerResponseError when the worker answered with an
    ``error`` member).
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

from .concurrency_gate import ConcurrencyGate
from .config import Config
from .errors import (
    ProcessExitedError,
    ProcessSpawnError,
    RouterClosedError,
    WorkerResponseError,
)
from .service_registry import ServiceDefinition, ServiceRegistry
from .worker import WorkerProcess

logger = logging.getLogger(__name__)


class TransientSupervisor:
    """Spawns, uses and tears down one worker per request.

    Attributes:
        gate: Admission gate bounding concurrent processes.
        spawn_count: Number of worker processes spawned since creation.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        config: Optional[Config] = None,
        gate: Optional[ConcurrencyGate] = None,
    ) -> None:
        self._registry = registry
        self._config = config or Config()
        self.gate = gate or ConcurrencyGate(self._config.max_concurrent_processes)
        self._active: dict[str, WorkerProcess] = {}
        self._closed = False
        self.spawn_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def submit(
        self,
        service_id: str,
        method: str,
        params: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run one request on a fresh worker and return its result.

        Raises:
            UnknownServiceError: Before anything is queued or spawned.
            RouterClosedError: The supervisor is shutting down.
            ProcessSpawnError: The process could not be started.
            ProcessExitedError: The process exited before answering.
            RequestTimeoutError: No response within the request window.
            WorkerResponseError: The worker answered with an error.
        """
        if self._closed:
            raise RouterClosedError()
        definition = self._registry.lookup(service_id)
        request_id = str(uuid.uuid4())
        logger.info("Executing %s.%s [%s]", service_id, method, request_id)

        return await self.gate.submit(
            lambda: self._run_once(definition, request_id, method, params, timeout)
        )

    async def _run_once(
        self,
        definition: ServiceDefinition,
        request_id: str,
        method: str,
        params: Any,
        timeout: Optional[float],
    ) -> Any:
        # Queued before close(); admitted after every worker was terminated
        if self._closed:
            raise RouterClosedError()

        worker = await WorkerProcess.spawn(
            definition,
            self._config.build_worker_env(definition.env),
            kill_timeout=self._config.kill_timeout,
        )
        self.spawn_count += 1
        if self._closed:
            # stop() ran while the process was being created
            await worker.terminate()
            raise RouterClosedError()
        self._active[request_id] = worker

        request: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            request["params"] = params

        try:
            await self._wait_ready(worker)
            worker.mark_ready()
            response = await worker.send_and_await(
                request, self._config.request_timeout if timeout is None else timeout
            )
        finally:
            self._active.pop(request_id, None)
            await worker.terminate()

        if "error" in response:
            raise WorkerResponseError(definition.id, response["error"])
        return response.get("result")

    async def _wait_ready(self, worker: WorkerProcess) -> None:
        definition = worker.definition
        grace = self._config.ready_grace_period
        window = min(grace, definition.startup_timeout)

        ready = asyncio.ensure_future(worker.ready_signal.wait())
        exited = asyncio.ensure_future(worker.exited.wait())
        try:
            await asyncio.wait({ready, exited}, timeout=window, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
            exited.cancel()

        if worker.exited.is_set():
            raise ProcessExitedError(
                definition.id, worker.exit_code,
                reason=f"{definition.id} exited with code {worker.exit_code} during startup",
            )
        if worker.ready_signal.is_set():
            logger.debug("%s produced output, ready", definition.id)
            return
        if definition.startup_timeout < grace:
            raise ProcessSpawnError(
                f"Process {definition.id} failed to start within timeout",
                service_id=definition.id,
            )
        logger.debug("%s silent after %gs, assuming ready", definition.id, grace)

    def close(self) -> None:
        """Refuse new submissions."""
        self._closed = True
        self.gate.close()

    async def stop(self) -> None:
        """Close, terminate every in-flight worker, then wait for the queue to drain."""
        self.close()
        workers = list(self._active.values())
        await asyncio.gather(*(worker.terminate() for worker in workers))
        await self.gate.wait_idle()

    def stats(self) -> dict[str, Any]:
        return {
            "active_processes": len(self._active),
            "queue_size": self.gate.size,
            "queue_pending": self.gate.pending,
            "spawn_count": self.spawn_count,
        }
