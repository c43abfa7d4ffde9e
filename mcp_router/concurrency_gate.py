"""Capacity-bounded admission gate for transient worker processes.

The gate limits how many per-request worker processes exist at the same
time across *all* services. Work that arrives while the gate is full waits
in a FIFO queue and is admitted as earlier units finish.

Architecture:
    - submit(): enqueues a unit, waits for admission, runs it, releases
    - Admission: a unit is admitted when fewer than ``capacity`` units are
      running; waiters are admitted strictly in arrival order
    - Release: finishing a unit hands its slot directly to the oldest waiter

Shutdown Handling:
    - close() rejects new submissions with RouterClosedError
    - Units already queued when close() is called are still admitted; the
      transient supervisor fails them without spawning a process
    - wait_idle() returns once nothing is queued or running

Concurrency:
    All state is mutated from coroutines on a single event loop, so the
    queue needs no locking.
"""

import asyncio
import collections
import logging
from typing import Awaitable, Callable, Deque, TypeVar

from .errors import RouterClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyGate:
    """FIFO gate admitting at most ``capacity`` concurrent units.

    Usage:
        >>> gate = ConcurrencyGate(capacity=2)
        >>> result = await gate.submit(lambda: run_one_request())
        >>> gate.size, gate.pending
        (0, 0)
        >>> gate.close()
        >>> await gate.wait_idle()

    Attributes:
        capacity: Maximum number of units running at once.
    """

    def __init__(self, capacity: int = 10) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._running = 0
        self._waiters: Deque[asyncio.Future] = collections.deque()
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def size(self) -> int:
        """Number of units queued and not yet admitted."""
        return len(self._waiters)

    @property
    def pending(self) -> int:
        """Number of units admitted and currently running."""
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, unit: Callable[[], Awaitable[T]]) -> T:
        """Run ``unit()`` once a slot is free.

        Args:
            unit: Zero-argument callable returning the awaitable to run.
                It is only invoked after admission.

        Returns:
            Whatever the unit returns. Exceptions propagate unchanged.

        Raises:
            RouterClosedError: If the gate has been closed.
        """
        if self._closed:
            raise RouterClosedError()
        await self._acquire()
        try:
            return await unit()
        finally:
            self._release()

    def close(self) -> None:
        """Stop accepting new submissions. Queued units still run."""
        self._closed = True

    async def wait_idle(self) -> None:
        """Wait until the queue is empty and nothing is running."""
        await self._idle.wait()

    async def _acquire(self) -> None:
        self._idle.clear()
        if self._running < self.capacity and not self._waiters:
            self._running += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("Gate full (%d running), %d queued", self._running, len(self._waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was already handed over; pass it on
                self._release()
            else:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                self._update_idle()
            raise

    def _release(self) -> None:
        # Hand the slot straight to the oldest live waiter
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._running -= 1
        self._update_idle()

    def _update_idle(self) -> None:
        if self._running == 0 and not self._waiters:
            self._idle.set()
