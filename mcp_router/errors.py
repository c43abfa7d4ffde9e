"""Error taxonomy for the MCP router.

Every failure the router can report is a RouterError carrying a JSON-RPC
error code, a human-readable message and optional context data. Supervisors
raise these internally; the Router normalizes them into one of the two
caller-facing contracts:

    - Enveloped contract: ``to_error()`` is placed in a JSON-RPC envelope
      that echoes the caller's request id.
    - Throwing contract: the RouterError itself is raised to the caller.

No raw OSError or asyncio exception ever crosses the router boundary;
supervisors wrap them into one of the classes below.
"""

from typing import Any, Optional

# Standard JSON-RPC codes reused by the router
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
PARSE_ERROR = -32700


class RouterError(Exception):
    """Base class for all router failures.

    Args:
        message: Description of what went wrong
        code: JSON-RPC error code reported to the caller
        **data: Extra context (service_id, exit_code, ...) included as the
            ``data`` member of the JSON-RPC error object

    Example:
        >>> err = RouterError("Worker gave up", service_id="github")
        >>> err.to_error()
        {'code': -32603, 'message': 'Worker gave up', 'data': {'service_id': 'github'}}
    """

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[int] = None, **data: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.data = data

    def to_error(self) -> dict[str, Any]:
        """Return the JSON-RPC ``error`` object for this failure."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            error["data"] = dict(self.data)
        return error


class UnknownServiceError(RouterError):
    """Service id is absent from the registry. No process is spawned."""

    code = METHOD_NOT_FOUND

    def __init__(self, service_id: str):
        super().__init__(f"Unknown service: {service_id}", service_id=service_id)
        self.service_id = service_id


class ProcessSpawnError(RouterError):
    """The OS failed to create the worker process, or it never became ready."""


class ProcessExitedError(RouterError):
    """Worker exited (or crashed) before answering a pending request."""

    def __init__(
        self,
        service_id: str,
        exit_code: Optional[int],
        reason: Optional[str] = None,
        request_id: Any = None,
    ):
        message = reason or f"Process exited with code {exit_code} without responding"
        extra: dict[str, Any] = {"service_id": service_id, "exit_code": exit_code}
        if request_id is not None:
            extra["request_id"] = request_id
        super().__init__(message, **extra)
        self.service_id = service_id
        self.exit_code = exit_code


class RequestTimeoutError(RouterError):
    """No matching response arrived within the request window."""

    def __init__(self, service_id: str, request_id: Any, timeout: float):
        super().__init__(
            f"Request timeout: {service_id} did not answer within {timeout:g}s",
            service_id=service_id,
            request_id=request_id,
        )
        self.service_id = service_id
        self.request_id = request_id
        self.timeout = timeout


class DuplicateRequestIdError(RouterError):
    """A request with the same id is already pending on the worker."""

    def __init__(self, service_id: str, request_id: Any):
        super().__init__(
            f"Request id {request_id!r} is already pending on {service_id}",
            service_id=service_id,
            request_id=request_id,
        )


class RouterClosedError(RouterError):
    """Submission arrived after the router started shutting down."""

    def __init__(self) -> None:
        super().__init__("Router is shutting down")


class WorkerResponseError(RouterError):
    """The worker answered, but with a JSON-RPC error object.

    Only raised by the throwing contract; the enveloped contract passes the
    worker's error through untouched.
    """

    def __init__(self, service_id: str, error: Any):
        error = normalize_error(error)
        message = str(error.get("message") or "Worker returned an error")
        code = error.get("code")
        extra = {"service_id": service_id}
        if error.get("data") is not None:
            extra["worker_data"] = error["data"]
        super().__init__(message, code if isinstance(code, int) else INTERNAL_ERROR, **extra)
        self.service_id = service_id


def jsonrpc_result(req_id: Any, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 success envelope."""
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(
    req_id: Any, code: int, message: str, data: Optional[Any] = None
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": error}


def normalize_error(error: Any) -> dict[str, Any]:
    """Coerce a worker's ``error`` member into a ``{code, message[, data]}`` dict.

    Workers are not guaranteed to send an object; a bare string or number
    becomes the message of an internal error.
    """
    if isinstance(error, dict):
        return error
    message = str(error) if error is not None else "Worker returned an error"
    return {"code": INTERNAL_ERROR, "message": message}


def error_envelope(req_id: Any, exc: RouterError) -> dict[str, Any]:
    """Wrap a RouterError into an envelope echoing ``req_id``."""
    return {"jsonrpc": "2.0", "id": req_id, "error": exc.to_error()}
