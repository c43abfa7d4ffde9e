"""Persistent strategy: one long-lived worker per service.

The PersistentSupervisor keeps at most one worker process per service id
and reuses it for every request to that service. Requests to the same
worker are pipelined; responses are matched by id, in whatever order the
worker produces them.

Worker creation:
    The first acquire() for a service spawns the process, performs the
    ``initialize`` handshake and marks the worker READY. Concurrent
    acquire() calls that arrive before the worker is READY all await the
    same creation task, so one service never gets two processes.

    The handshake is lenient: if it fails or times out, the failure is
    logged and the worker is used anyway. Only a worker that dies during
    startup fails the acquire.

Eviction:
    A worker leaves the registry when it exits (crash, kill, or normal
    exit) or when the IdleReaper evicts it. Either way, the next acquire()
    spawns a fresh process.

Caller contract:
    execute_mcp() never raises. It always returns a JSON-RPC envelope that
    echoes the caller's id and holds either ``result`` or ``error``.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from . import __version__
from .config import Config
from .errors import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    ProcessExitedError,
    RouterClosedError,
    RouterError,
    UnknownServiceError,
    error_envelope,
    jsonrpc_error,
    jsonrpc_result,
)
from .service_registry import ServiceDefinition, ServiceRegistry
from .worker import WorkerProcess, WorkerState

logger = logging.getLogger(__name__)


class PersistentSupervisor:
    """Owns the long-lived worker of every service.

    Attributes:
        spawn_count: Number of worker processes spawned since creation.
    """

    def __init__(self, registry: ServiceRegistry, config: Optional[Config] = None) -> None:
        self._registry = registry
        self._config = config or Config()
        self._workers: dict[str, WorkerProcess] = {}
        self._creating: dict[str, asyncio.Task] = {}
        self._closed = False
        self.spawn_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def worker(self, service_id: str) -> Optional[WorkerProcess]:
        """Return the registered worker for a service, if any."""
        return self._workers.get(service_id)

    # ------------------------------------------------------------------
    # Enveloped contract
    # ------------------------------------------------------------------

    async def execute_mcp(
        self,
        service_id: str,
        request: Any,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Route one JSON-RPC request to the service's worker.

        Args:
            service_id: Registry id of the target service.
            request: JSON-RPC request object. A missing id is replaced by a
                router-assigned one.
            timeout: Response window in seconds (defaults to the config).

        Returns:
            The worker's response, or an error envelope. Never raises.
        """
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            req_id = request.get("id") if isinstance(request, dict) else None
            return jsonrpc_error(req_id, INVALID_REQUEST, "Invalid Request")

        req_id = request.get("id")
        if isinstance(req_id, bool) or (
            req_id is not None and not isinstance(req_id, (str, int, float))
        ):
            return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request: id must be a string or number")

        if service_id not in self._registry:
            return error_envelope(req_id, UnknownServiceError(service_id))

        method = request["method"]
        logger.info("Executing MCP %s.%s", service_id, method)

        # Most workers do not implement prompts; answer locally
        if method == "prompts/list":
            return jsonrpc_result(req_id, {"prompts": []})

        # The worker always sees a usable id. An explicit null is echoed back
        # as null; a missing id is echoed as the assigned one.
        wire_id = uuid.uuid4().hex if req_id is None else req_id
        if "id" not in request:
            req_id = wire_id
        message = {**request, "jsonrpc": "2.0", "id": wire_id}

        try:
            worker = await self.acquire(service_id)
            response = await worker.send_and_await(
                message, self._config.request_timeout if timeout is None else timeout
            )
            if req_id is None:
                response = {**response, "id": None}
            return response
        except RouterError as exc:
            logger.error("Error executing %s.%s: %s", service_id, method, exc.message)
            return error_envelope(req_id, exc)
        except Exception as exc:
            logger.exception("Unexpected error executing %s.%s", service_id, method)
            return jsonrpc_error(req_id, INTERNAL_ERROR, str(exc) or "Internal error")

    # ------------------------------------------------------------------
    # Worker acquisition
    # ------------------------------------------------------------------

    async def acquire(self, service_id: str) -> WorkerProcess:
        """Return the READY worker for a service, spawning it if needed.

        Raises:
            UnknownServiceError: Service id not in the registry.
            RouterClosedError: The supervisor is shutting down.
            ProcessSpawnError: The process could not be started.
            ProcessExitedError: The process died during startup.
        """
        if self._closed:
            raise RouterClosedError()
        definition = self._registry.lookup(service_id)

        worker = self._workers.get(service_id)
        if worker is not None and worker.state is WorkerState.READY:
            worker.touch()
            return worker

        task = self._creating.get(service_id)
        if task is None:
            task = asyncio.create_task(self._create(definition), name=f"{service_id}-create")
            self._creating[service_id] = task
            task.add_done_callback(lambda t, sid=service_id: self._creation_done(sid, t))

        # Cancelling one caller leaves the shared creation running
        worker = await asyncio.shield(task)
        worker.touch()
        return worker

    def _creation_done(self, service_id: str, task: asyncio.Task) -> None:
        if self._creating.get(service_id) is task:
            del self._creating[service_id]
        if not task.cancelled():
            # Mark retrieved; every awaiter already got the exception
            task.exception()

    async def _create(self, definition: ServiceDefinition) -> WorkerProcess:
        worker = await WorkerProcess.spawn(
            definition,
            self._config.build_worker_env(definition.env),
            kill_timeout=self._config.kill_timeout,
            on_exit=self._on_worker_exit,
        )
        self.spawn_count += 1
        if self._closed:
            await worker.terminate()
            raise RouterClosedError()
        self._workers[definition.id] = worker

        await self._handshake(worker)
        if not worker.accepting:
            raise ProcessExitedError(
                definition.id, worker.exit_code,
                reason=f"{definition.id} exited with code {worker.exit_code} during startup",
            )
        worker.mark_ready()

        if self._config.post_init_delay:
            await asyncio.sleep(self._config.post_init_delay)
        return worker

    async def _handshake(self, worker: WorkerProcess) -> None:
        request = {
            "jsonrpc": "2.0",
            "id": f"auto-init-{int(time.time() * 1000)}",
            "method": "initialize",
            "params": {
                "protocolVersion": self._config.protocol_version,
                "capabilities": {},
                "clientInfo": {"name": "mcp-router", "version": __version__},
            },
        }
        try:
            response = await worker.send_and_await(request, worker.definition.startup_timeout)
            if "error" in response:
                logger.warning(
                    "Failed to initialize %s: %s", worker.service_id, response["error"]
                )
                return
            await worker.notify({"jsonrpc": "2.0", "method": "notifications/initialized"})
            logger.info("Successfully initialized %s", worker.service_id)
        except RouterError as exc:
            logger.warning("Failed to initialize %s: %s", worker.service_id, exc.message)

    def _on_worker_exit(self, worker: WorkerProcess) -> None:
        # A replacement may already be registered; only drop this worker
        if self._workers.get(worker.service_id) is worker:
            del self._workers[worker.service_id]

    # ------------------------------------------------------------------
    # Eviction and shutdown
    # ------------------------------------------------------------------

    async def evict_idle(self, idle_timeout: float) -> list[str]:
        """Terminate and unregister READY workers idle beyond ``idle_timeout``.

        Workers are evicted even when requests are pending on them; those
        requests fail with ProcessExitedError once the process is gone.

        Returns:
            Service ids that were evicted.
        """
        now = time.monotonic()
        evicted: list[WorkerProcess] = []
        for service_id, worker in list(self._workers.items()):
            if worker.state is WorkerState.READY and worker.idle_for(now) > idle_timeout:
                logger.info("Cleaning up idle process: %s", service_id)
                del self._workers[service_id]
                evicted.append(worker)
        if evicted:
            await asyncio.gather(*(worker.terminate() for worker in evicted))
        return [worker.service_id for worker in evicted]

    def close(self) -> None:
        """Refuse new acquisitions."""
        self._closed = True

    async def stop(self) -> None:
        """Close, then terminate every owned worker."""
        self.close()
        workers = list(self._workers.values())
        self._workers.clear()
        for worker in workers:
            logger.info("Shutting down process: %s", worker.service_id)
        await asyncio.gather(*(worker.terminate() for worker in workers))

    def stats(self) -> dict[str, Any]:
        now = time.monotonic()
        return {
            "workers": {
                service_id: {
                    "pid": worker.pid,
                    "state": worker.state.value,
                    "pending": worker.pending_count,
                    "idle_seconds": round(worker.idle_for(now), 3),
                }
                for service_id, worker in self._workers.items()
            },
            "spawn_count": self.spawn_count,
        }
