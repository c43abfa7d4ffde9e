"""One worker process speaking JSON-RPC 2.0 over stdio.

A WorkerProcess wraps an ``asyncio.subprocess.Process`` together with the
state needed to talk to it: a LineFramer for its stdout, a RequestCorrelator
for in-flight requests and a lifecycle state.

Lifecycle:
    STARTING --> READY --> DRAINING --> DEAD
        \\__________\\___________________/^

    - STARTING: process spawned, readiness not yet established
    - READY: accepting requests
    - DRAINING: termination requested; new requests are refused
    - DEAD: process exited. Entered exactly once, from any state. On entry
      every pending request fails with ProcessExitedError and the owner's
      on_exit callback runs (the persistent supervisor uses it to drop the
      registry entry).

Tasks:
    Each worker runs two background tasks on the router's event loop:
    - stdout reader: feeds the framer, hands documents to the correlator,
      and performs the DEAD transition once stdout reaches EOF
    - stderr drain: logs worker stderr at DEBUG; never parsed as protocol

Ownership:
    The supervisor that spawned a worker owns it exclusively. Nothing else
    mutates its state or writes to its stdin.
"""

import asyncio
import enum
import json
import logging
import os
import signal
import time
from typing import Any, Callable, Mapping, Optional

from .correlator import RequestCorrelator
from .errors import (
    DuplicateRequestIdError,
    ProcessExitedError,
    ProcessSpawnError,
    RequestTimeoutError,
)
from .framing import LineFramer
from .service_registry import ServiceDefinition

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class WorkerState(str, enum.Enum):
    STARTING = "starting"
    READY = "ready"
    DRAINING = "draining"
    DEAD = "dead"


class WorkerProcess:
    """A spawned worker process and its request bookkeeping.

    Use :meth:`spawn` to create one; the constructor expects an already
    running process.

    Attributes:
        definition: Launch parameters of the service this worker serves.
        state: Current lifecycle state.
        spawned_at: ``time.monotonic()`` when the process was created.
        last_used: ``time.monotonic()`` of the last request sent or answered.
        exit_code: Process return code once DEAD (None while alive or if
            the process vanished without one).
        ready_signal: Set when the first valid JSON document is read from
            stdout.
        exited: Set on the DEAD transition.
    """

    def __init__(
        self,
        definition: ServiceDefinition,
        process: asyncio.subprocess.Process,
        *,
        kill_timeout: float = 5.0,
        on_exit: Optional[Callable[["WorkerProcess"], None]] = None,
    ) -> None:
        self.definition = definition
        self.state = WorkerState.STARTING
        self.spawned_at = time.monotonic()
        self.last_used = self.spawned_at
        self.exit_code: Optional[int] = None
        self.ready_signal = asyncio.Event()
        self.exited = asyncio.Event()

        self._process = process
        self._kill_timeout = kill_timeout
        self._on_exit = on_exit
        self._framer = LineFramer(definition.id)
        self._correlator = RequestCorrelator(definition.id)
        self._write_lock = asyncio.Lock()
        self._tasks = [
            asyncio.create_task(self._read_stdout(), name=f"{definition.id}-stdout"),
            asyncio.create_task(self._drain_stderr(), name=f"{definition.id}-stderr"),
        ]

    @classmethod
    async def spawn(
        cls,
        definition: ServiceDefinition,
        env: Mapping[str, str],
        *,
        kill_timeout: float = 5.0,
        on_exit: Optional[Callable[["WorkerProcess"], None]] = None,
    ) -> "WorkerProcess":
        """Start the worker process for ``definition``.

        Args:
            definition: Service launch parameters.
            env: Complete environment for the child process.
            kill_timeout: Seconds between SIGTERM and SIGKILL on terminate().
            on_exit: Called once, synchronously, on the DEAD transition.

        Raises:
            ProcessSpawnError: If the OS cannot create the process (missing
                executable, bad working directory, permissions).
        """
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *definition.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=definition.cwd,
                env=dict(env),
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as exc:
            logger.error("Failed to spawn %s: %s", definition.id, exc)
            raise ProcessSpawnError(
                f"Failed to start {definition.id}: {exc}", service_id=definition.id
            ) from exc

        worker = cls(definition, process, kill_timeout=kill_timeout, on_exit=on_exit)
        logger.info(
            "Spawned %s process (pid %s) in %dms",
            definition.id, process.pid, (time.monotonic() - started) * 1000,
        )
        return worker

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def service_id(self) -> str:
        return self.definition.id

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    @property
    def accepting(self) -> bool:
        """True while new requests may be sent (STARTING or READY)."""
        return self.state in (WorkerState.STARTING, WorkerState.READY)

    def idle_for(self, now: Optional[float] = None) -> float:
        """Seconds since the worker was last used."""
        return (time.monotonic() if now is None else now) - self.last_used

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def mark_ready(self) -> None:
        if self.state is WorkerState.STARTING:
            self.state = WorkerState.READY

    # ------------------------------------------------------------------
    # Request/response
    # ------------------------------------------------------------------

    async def send_and_await(self, request: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Write one request and wait for the response with the same id.

        Several calls may be in flight on one worker at once; each waits
        only for its own id.

        Args:
            request: JSON-RPC request object. Must carry an ``id``.
            timeout: Seconds to wait for the matching response.

        Returns:
            The worker's response document (may contain ``error``).

        Raises:
            DuplicateRequestIdError: The id is already pending here.
            RequestTimeoutError: No matching response in time. Only this
                request is affected; the worker keeps running.
            ProcessExitedError: The worker is not accepting requests, the
                write failed, or the worker died before answering.
        """
        if not self.accepting:
            raise ProcessExitedError(
                self.service_id, self.exit_code,
                reason=f"{self.service_id} worker is {self.state.value}",
                request_id=request.get("id"),
            )

        request_id = request["id"]
        try:
            future = self._correlator.register(request_id)
        except KeyError:
            raise DuplicateRequestIdError(self.service_id, request_id) from None

        self.touch()
        try:
            await self._write(request)
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._correlator.discard(request_id)
            await self._settle_exit()
            raise ProcessExitedError(
                self.service_id, self.exit_code,
                reason=f"Failed to write to {self.service_id}: {exc}",
                request_id=request_id,
            ) from exc

        try:
            response = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._correlator.discard(request_id)
            logger.warning(
                "Request %r to %s timed out after %gs", request_id, self.service_id, timeout
            )
            raise RequestTimeoutError(self.service_id, request_id, timeout) from None
        except asyncio.CancelledError:
            self._correlator.discard(request_id)
            raise

        self.touch()
        return response

    async def notify(self, message: dict[str, Any]) -> None:
        """Write a JSON-RPC notification (no id, no response expected)."""
        try:
            await self._write(message)
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self._settle_exit()
            raise ProcessExitedError(
                self.service_id, self.exit_code,
                reason=f"Failed to write to {self.service_id}: {exc}",
            ) from exc

    async def _write(self, message: dict[str, Any]) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError("stdin is closed")
        line = json.dumps(message, ensure_ascii=False).encode("utf-8") + b"\n"
        async with self._write_lock:
            stdin.write(line)
            await stdin.drain()

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def terminate(self) -> None:
        """Send SIGTERM, escalate to SIGKILL after ``kill_timeout``.

        Returns once the process has exited and the DEAD transition (with
        its pending-request failures) has happened. Safe to call repeatedly.
        """
        if self.state is WorkerState.DEAD:
            return
        if self.state is not WorkerState.DRAINING:
            self.state = WorkerState.DRAINING
            self._signal(kill=False)

        try:
            await asyncio.wait_for(self.exited.wait(), self._kill_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s (pid %s) ignored SIGTERM, killing", self.service_id, self.pid)
            self._signal(kill=True)
            await self.exited.wait()

    async def _settle_exit(self) -> None:
        # A closed stdin usually means the process is exiting; collect its code
        try:
            await asyncio.wait_for(self.exited.wait(), self._kill_timeout)
        except asyncio.TimeoutError:
            pass

    def _signal(self, kill: bool) -> None:
        # Workers lead their own process group, so wrapper scripts
        # (sh run.sh -> node ...) take their children down with them
        try:
            if os.name == "posix":
                os.killpg(self._process.pid, signal.SIGKILL if kill else signal.SIGTERM)
            elif kill:
                self._process.kill()
            else:
                self._process.terminate()
        except (ProcessLookupError, PermissionError):
            pass

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        assert stdout is not None
        try:
            while True:
                chunk = await stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                for document in self._framer.feed(chunk):
                    self._dispatch(document)
            for document in self._framer.flush():
                self._dispatch(document)
        except (OSError, ValueError) as exc:
            logger.error("Read error on %s stdout: %s", self.service_id, exc)
            self._signal(kill=True)

        exit_code = await self._process.wait()
        self._mark_dead(exit_code)

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        assert stderr is not None
        pending = b""
        while True:
            chunk = await stderr.read(_READ_CHUNK)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            for line in lines:
                self._log_stderr(line)
        self._log_stderr(pending)

    def _log_stderr(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            logger.debug("%s stderr: %s", self.service_id, text)

    def _dispatch(self, document: Any) -> None:
        # Any valid JSON line counts as a sign of life for the ready probe
        self.ready_signal.set()
        if self._correlator.resolve(document):
            self.touch()

    def _mark_dead(self, exit_code: Optional[int]) -> None:
        if self.state is WorkerState.DEAD:
            return
        was_draining = self.state is WorkerState.DRAINING
        self.state = WorkerState.DEAD
        self.exit_code = exit_code

        failed = self._correlator.fail_all(
            lambda request_id: ProcessExitedError(
                self.service_id, exit_code, request_id=request_id
            )
        )
        if failed and not was_draining:
            logger.error(
                "%s process exited with code %s with %d request(s) pending",
                self.service_id, exit_code, failed,
            )
        else:
            logger.info("%s process exited with code %s", self.service_id, exit_code)

        self.exited.set()
        if self._on_exit is not None:
            self._on_exit(self)
