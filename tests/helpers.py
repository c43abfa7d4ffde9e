"""Helpers for building services backed by the worker stub."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable

from mcp_router.service_registry import ServiceDefinition

STUB_PATH = Path(__file__).parent / "stubs" / "worker_stub.py"


def stub_service(
    service_id: str,
    mode: str = "echo",
    *,
    startup_timeout: float = 10.0,
    **env: Any,
) -> ServiceDefinition:
    """Return a definition that launches the worker stub in ``mode``.

    Extra keyword arguments become environment variables of the worker
    (``crash_after=2`` -> ``STUB_CRASH_AFTER=2``).
    """
    worker_env = {"STUB_MODE": mode}
    worker_env.update({f"STUB_{key.upper()}": str(value) for key, value in env.items()})
    return ServiceDefinition(
        id=service_id,
        command=sys.executable,
        args=[str(STUB_PATH)],
        env=worker_env,
        startup_timeout=startup_timeout,
        description=f"stub worker ({mode})",
    )


def rpc(method: str, req_id: Any = 1, params: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC request."""
    request: dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
    if params is not None:
        request["params"] = params
    return request


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
