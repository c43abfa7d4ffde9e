"""Request/response correlation for a single worker process.

This module pairs JSON-RPC responses read from a worker's stdout with the
callers waiting for them. It plays the same role a request/response queue
pair plays between two threads, except that everything here runs on one
asyncio event loop, so no locks are needed.

Architecture:
    - Caller: registers its request id and receives a one-shot Future,
      writes the request, then awaits the Future (with a timeout)
    - Worker read loop: hands every decoded JSON document to resolve();
      a document whose ``id`` is pending completes that Future
    - Worker exit: fail_all() completes every remaining Future with an error

Ordering:
    Responses are paired strictly by id, never by send order. A worker may
    answer pipelined requests in any order.

Identifier scope:
    Ids only need to be unique among the requests currently pending on the
    same worker. The same id may be reused once its response has arrived,
    and different workers may use overlapping ids freely.
"""

import asyncio
import logging
from typing import Any, Callable, Hashable

from .errors import RouterError

logger = logging.getLogger(__name__)


class RequestCorrelator:
    """Per-worker table mapping pending request ids to continuations.

    Usage Pattern:
        1. Caller (Router coroutine):
           - future = correlator.register(request_id)
           - write the request line to the worker
           - response = await asyncio.wait_for(future, timeout)
           - on timeout: correlator.discard(request_id)

        2. Read loop (per-worker task):
           - for each decoded document: correlator.resolve(document)

        3. Exit handling (per-worker task):
           - correlator.fail_all(lambda request_id: SomeRouterError(...))

    Attributes:
        label: Name used in log messages (usually the service id).
    """

    def __init__(self, label: str = "worker") -> None:
        self.label = label
        self._pending: dict[Hashable, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[Hashable]:
        """Return the ids currently awaiting a response."""
        return list(self._pending)

    def register(self, request_id: Hashable) -> asyncio.Future:
        """Create the continuation for a request about to be sent.

        Args:
            request_id: JSON-RPC id of the outgoing request.

        Returns:
            Future resolved with the full response document.

        Raises:
            KeyError: If the id is already pending on this worker.
        """
        if request_id in self._pending:
            raise KeyError(request_id)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        return future

    def discard(self, request_id: Hashable) -> None:
        """Forget a pending request (used after a local timeout)."""
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()

    def resolve(self, document: Any) -> bool:
        """Complete the continuation matching ``document['id']``.

        Non-object documents, documents without an id, and ids nobody is
        waiting for (late answers after a timeout, server notifications)
        are dropped at DEBUG level.

        Returns:
            True if a pending request was completed.
        """
        if not isinstance(document, dict) or "id" not in document:
            logger.debug("%s: ignoring message without id: %.200r", self.label, document)
            return False
        request_id = document["id"]
        try:
            future = self._pending.pop(request_id, None)
        except TypeError:
            # Unhashable id (object/array) can never match a pending request
            future = None
        if future is None:
            logger.debug("%s: no pending request for id %r", self.label, request_id)
            return False
        if not future.done():
            future.set_result(document)
        return True

    def fail_all(self, make_error: Callable[[Hashable], RouterError]) -> int:
        """Complete every pending continuation with an error.

        Args:
            make_error: Builds the exception for a given request id.

        Returns:
            Number of requests that were failed.
        """
        pending, self._pending = self._pending, {}
        for request_id, future in pending.items():
            if not future.done():
                future.set_exception(make_error(request_id))
        return len(pending)
